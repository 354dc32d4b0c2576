from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

MAX_TIMEOUT_MS = 600_000
DEFAULT_TIMEOUT_MS = 120_000
DEFAULT_PORT = 3033
DEFAULT_HOST = "127.0.0.1"
DEFAULT_CHATGPT_URL = "https://chatgpt.com/"
DEFAULT_STORAGE_STATE_FILE = Path.home() / ".chatgpt-relay" / "storage-state.json"


@dataclass(frozen=True)
class DetectorSettings:
    poll_interval_ms: int = 500
    stable_polls: int = 2
    start_fraction: float = 0.08
    start_timeout_cap_ms: int = 10_000
    read_timeout_ms: int = 1_000
    track_by_index: bool = True

    def __post_init__(self) -> None:
        if self.poll_interval_ms <= 0:
            raise ValueError("poll_interval_ms must be positive")
        if self.stable_polls < 1:
            raise ValueError("stable_polls must be at least 1")
        if not 0 < self.start_fraction < 1:
            raise ValueError("start_fraction must be between 0 and 1")
        if self.start_timeout_cap_ms <= 0:
            raise ValueError("start_timeout_cap_ms must be positive")

    @property
    def stable_threshold_ms(self) -> int:
        return self.stable_polls * self.poll_interval_ms

    def start_timeout_ms(self, timeout_ms: int) -> int:
        return int(min(timeout_ms * self.start_fraction, self.start_timeout_cap_ms))


@dataclass(frozen=True)
class RelayConfig:
    port: int = DEFAULT_PORT
    host: str = DEFAULT_HOST
    storage_state_path: Path = DEFAULT_STORAGE_STATE_FILE
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    max_timeout_ms: int = MAX_TIMEOUT_MS
    chatgpt_url: str = DEFAULT_CHATGPT_URL
    headless: bool = True
    composer_timeout_ms: int = 15_000
    send_ready_timeout_ms: int = 5_000
    selectors_path: Path | None = None
    log_level: str = "INFO"
    detector: DetectorSettings = field(default_factory=DetectorSettings)

    def clamp_timeout(self, timeout_ms: int | None) -> int:
        if timeout_ms is None:
            timeout_ms = self.timeout_ms
        return max(1, min(int(timeout_ms), self.max_timeout_ms))


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() not in ("0", "false", "no", "off")


def relay_config_from_env() -> RelayConfig:
    raw_timeout_ms = _env_int("ASK_QUESTION_TIMEOUT_MS", DEFAULT_TIMEOUT_MS)
    timeout_ms = max(1, min(raw_timeout_ms, MAX_TIMEOUT_MS))
    storage_state_path = Path(
        os.getenv("ASK_QUESTION_STORAGE_STATE_FILE", str(DEFAULT_STORAGE_STATE_FILE))
    ).expanduser()
    selectors_file = os.getenv("RELAY_SELECTORS_FILE")

    detector = DetectorSettings(
        poll_interval_ms=_env_int("RELAY_POLL_INTERVAL_MS", 500),
        stable_polls=_env_int("RELAY_STABLE_POLLS", 2),
    )

    return RelayConfig(
        port=_env_int("ASK_QUESTION_PORT", DEFAULT_PORT),
        host=os.getenv("ASK_QUESTION_HOST", DEFAULT_HOST),
        storage_state_path=storage_state_path,
        timeout_ms=timeout_ms,
        chatgpt_url=os.getenv("CHATGPT_URL", DEFAULT_CHATGPT_URL),
        headless=_env_bool("RELAY_HEADLESS", True),
        selectors_path=Path(selectors_file).expanduser() if selectors_file else None,
        log_level=os.getenv("RELAY_LOG_LEVEL", "INFO").upper(),
        detector=detector,
    )
