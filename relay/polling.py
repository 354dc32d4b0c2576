"""Timed polling shared by submission and completion detection.

Every wait in the relay is a loop of "check, sleep one interval" bounded by a
:class:`Deadline`. Clock and sleep are injectable so tests can drive the loop
on virtual time.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from typing import Awaitable, Callable, Union

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]
Predicate = Callable[[], Union[bool, Awaitable[bool]]]


class Deadline:
    def __init__(self, timeout_ms: float, clock: Clock = time.monotonic) -> None:
        self._clock = clock
        self.timeout_ms = timeout_ms
        self.started_at = clock()
        self.expires_at = self.started_at + timeout_ms / 1000

    def remaining_ms(self) -> float:
        return max(0.0, (self.expires_at - self._clock()) * 1000)

    def expired(self) -> bool:
        return self._clock() >= self.expires_at

    def earliest(self, other: "Deadline") -> "Deadline":
        return self if self.expires_at <= other.expires_at else other


class Poller:
    def __init__(self, interval_ms: int, clock: Clock = time.monotonic, sleep: Sleep = asyncio.sleep) -> None:
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        self.interval_ms = interval_ms
        self.clock = clock
        self._sleep = sleep

    def deadline(self, timeout_ms: float) -> Deadline:
        return Deadline(timeout_ms, clock=self.clock)

    def now_ms(self) -> float:
        return round(self.clock() * 1000, 3)

    async def tick(self, deadline: Deadline | None = None) -> None:
        """Sleep one interval, or less if the deadline is closer."""
        interval_ms = self.interval_ms
        if deadline is not None:
            interval_ms = min(interval_ms, deadline.remaining_ms())
        if interval_ms > 0:
            await self._sleep(interval_ms / 1000)

    async def until(self, predicate: Predicate, deadline: Deadline) -> bool:
        """Poll ``predicate`` until it holds (True) or the deadline passes (False)."""
        while True:
            result = predicate()
            if inspect.isawaitable(result):
                result = await result
            if result:
                return True
            if deadline.expired():
                return False
            await self.tick(deadline)
