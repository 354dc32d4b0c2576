from relay.config import DetectorSettings, RelayConfig, relay_config_from_env
from relay.detector import CompletionDetector, check_error_states
from relay.errors import (
    ComposerNotFound,
    RelayError,
    ResponseTimeoutError,
    SessionExpired,
    SessionStateMissing,
    SubmissionFailed,
    UpstreamError,
)
from relay.locators import DEFAULT_CANDIDATES, LocatorResolver, LocatorStrategy, Role
from relay.models import DetectionResult, DetectionState, QueueEntry, Request
from relay.polling import Deadline, Poller
from relay.request_queue import RequestQueue
from relay.service import ChatRelay
from relay.session import BrowserSession
from relay.submission import submit_prompt

__all__ = [
    "BrowserSession",
    "ChatRelay",
    "CompletionDetector",
    "ComposerNotFound",
    "DEFAULT_CANDIDATES",
    "Deadline",
    "DetectionResult",
    "DetectionState",
    "DetectorSettings",
    "LocatorResolver",
    "LocatorStrategy",
    "Poller",
    "QueueEntry",
    "RelayConfig",
    "RelayError",
    "Request",
    "RequestQueue",
    "ResponseTimeoutError",
    "Role",
    "SessionExpired",
    "SessionStateMissing",
    "SubmissionFailed",
    "UpstreamError",
    "check_error_states",
    "relay_config_from_env",
    "submit_prompt",
]
