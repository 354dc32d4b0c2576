from __future__ import annotations


class RelayError(RuntimeError):
    """Base class for failures of a single relayed request."""

    kind = "relay_error"


class ComposerNotFound(RelayError):
    kind = "composer_not_found"


class SubmissionFailed(RelayError):
    kind = "submission_failed"


class SessionExpired(RelayError):
    kind = "session_expired"

    def __init__(self, message: str = "Session expired. Run the login script to log in again.") -> None:
        super().__init__(message)


class UpstreamError(RelayError):
    kind = "upstream_error"

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"ChatGPT error: {detail}")


class ResponseTimeoutError(RelayError, TimeoutError):
    kind = "timeout"

    def __init__(self, timeout_ms: int) -> None:
        self.timeout_ms = timeout_ms
        super().__init__(f"Timeout waiting for ChatGPT response after {timeout_ms / 1000:.1f}s")


class SessionStateMissing(RelayError):
    kind = "session_state_missing"

    def __init__(self, path) -> None:
        self.path = path
        super().__init__(
            f"No session found at {path}. "
            "Run `python3 scripts/login.py` first to log into ChatGPT."
        )
