from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from enum import Enum


class DetectionState(str, Enum):
    AWAITING_START = "awaiting_start"
    GENERATING = "generating"
    STABILIZING = "stabilizing"
    DONE = "done"
    ERROR = "error"
    TIMEOUT = "timeout"

    @property
    def terminal(self) -> bool:
        return self in (DetectionState.DONE, DetectionState.ERROR, DetectionState.TIMEOUT)


@dataclass(frozen=True)
class Request:
    id: str
    prompt: str
    timeout_ms: int
    new_chat: bool = False

    @classmethod
    def create(cls, prompt: str, timeout_ms: int, new_chat: bool = False) -> "Request":
        return cls(id=uuid.uuid4().hex[:8], prompt=prompt, timeout_ms=timeout_ms, new_chat=new_chat)


@dataclass
class QueueEntry:
    request: Request
    future: asyncio.Future = field(default_factory=lambda: asyncio.get_running_loop().create_future())


@dataclass(frozen=True)
class DetectionResult:
    state: DetectionState
    text: str
    partial: bool = False
