"""
Error Codes and Exceptions for tts-relay.

Every rejection or failure that can leave the service carries a stable
error code, a human-readable message and optional details, and converts
to the standardized API error shape with to_dict():

    {"ok": false, "error": "<CODE>", "message": "...", "details": {...}}

Taxonomy:
    - ValidationError: Empty text after trimming/filtering, bad input
    - PermissionDeniedError: User not authorized (reason attached)
    - RateLimitExceededError: User exceeded the sliding window
    - QueueFullError: Queue at capacity
    - ServiceDisabledError: Global kill switch is off
    - EngineUnavailableError: Engine lacks credentials (never a failure)
    - EngineFailure: Classified provider error, only inside the dispatcher
    - AggregateFailure: Every considered engine failed

Validation, permission and rate-limit rejections happen before any
provider call. EngineFailure never leaves the dispatcher; callers see
either a result or an AggregateFailure.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from tts_relay.tts.dispatcher import AttemptRecord
    from tts_relay.tts.engine import ErrorKind


class ErrorCode:
    """
    Standardized error codes for API responses.

    These codes are used in RelayError exceptions and returned in API
    error responses for consistent client handling.
    """
    INVALID_INPUT = "INVALID_INPUT"             # Bad request data
    EMPTY_TEXT = "EMPTY_TEXT"                   # Nothing left to speak
    PERMISSION_DENIED = "PERMISSION_DENIED"     # Permission check failed
    RATE_LIMITED = "RATE_LIMITED"               # Sliding window exceeded
    QUEUE_FULL = "QUEUE_FULL"                   # Queue at capacity
    PROFANITY_BLOCKED = "PROFANITY_BLOCKED"     # Strict filter dropped text
    TTS_DISABLED = "TTS_DISABLED"               # Kill switch
    ENGINE_UNAVAILABLE = "ENGINE_UNAVAILABLE"   # Missing credentials
    ENGINE_FAILED = "ENGINE_FAILED"             # Single provider failure
    ALL_ENGINES_FAILED = "ALL_ENGINES_FAILED"   # Aggregate failure
    NOT_FOUND = "NOT_FOUND"                     # Unknown user / item
    CONFIG_INVALID = "CONFIG_INVALID"           # Rejected config update
    INTERNAL_ERROR = "INTERNAL_ERROR"           # Unexpected error


class RelayError(Exception):
    """
    Base exception for tts-relay errors.

    Provides standardized error format for API responses with
    error code, message, and optional details.

    Attributes:
        message: Human-readable error message.
        code: Error code from ErrorCode class.
        details: Optional dictionary with additional context.
    """
    def __init__(self, message: str, code: str = ErrorCode.INTERNAL_ERROR, details: Optional[Dict] = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to standardized error response dict for API."""
        result = {
            "ok": False,
            "error": self.code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


class ValidationError(RelayError):
    """Raised when input is unusable (e.g. empty after trimming or filtering)."""
    def __init__(self, message: str, code: str = ErrorCode.INVALID_INPUT, details: Optional[Dict] = None):
        super().__init__(message, code, details)


class PermissionDeniedError(RelayError):
    """Raised when the permission hierarchy denies a user."""
    def __init__(self, reason: str, details: Optional[Dict] = None):
        self.reason = reason
        super().__init__(f"Permission denied: {reason}", ErrorCode.PERMISSION_DENIED,
                         {"reason": reason, **(details or {})})


class RateLimitExceededError(RelayError):
    """Raised when a user exceeds the sliding-window request budget."""
    def __init__(self, user_id: str, retry_after_s: float, details: Optional[Dict] = None):
        self.user_id = user_id
        self.retry_after_s = retry_after_s
        super().__init__(
            f"Rate limit exceeded for {user_id}",
            ErrorCode.RATE_LIMITED,
            {"user_id": user_id, "retry_after_s": round(retry_after_s, 3), **(details or {})},
        )


class QueueFullError(RelayError):
    """Raised when the queue is at capacity and cannot accept more items."""
    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.QUEUE_FULL, details)


class ProfanityBlockedError(RelayError):
    """Raised when the strict profanity filter drops a message."""
    def __init__(self, matches: List[Dict[str, str]]):
        super().__init__("Message blocked by profanity filter", ErrorCode.PROFANITY_BLOCKED,
                         {"matches": matches})


class ServiceDisabledError(RelayError):
    """Raised for every submit while the global kill switch is off."""
    def __init__(self):
        super().__init__("Speech relay is disabled", ErrorCode.TTS_DISABLED, {"reason": "tts_disabled"})


class NotFoundError(RelayError):
    """Raised when a user or queue item does not exist."""
    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.NOT_FOUND, details)


class EngineUnavailableError(RelayError):
    """
    Raised when an engine cannot run (missing credentials).

    The dispatcher records this as skipped-unavailable; it is never
    counted as a failure.
    """
    def __init__(self, engine_id: str):
        self.engine_id = engine_id
        super().__init__(f"Engine {engine_id} is unavailable", ErrorCode.ENGINE_UNAVAILABLE,
                         {"engine": engine_id})


class EngineFailure(RelayError):
    """
    A classified provider failure raised by engine adapters.

    Attributes:
        engine_id: Engine that failed.
        kind: ErrorKind classification (network, timeout, auth, ...).
        status_code: HTTP status when the failure came from a response.
    """
    def __init__(
        self,
        engine_id: str,
        kind: "ErrorKind",
        message: str,
        status_code: Optional[int] = None,
    ):
        self.engine_id = engine_id
        self.kind = kind
        self.status_code = status_code
        details: Dict[str, Any] = {"engine": engine_id, "kind": kind.value}
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message, ErrorCode.ENGINE_FAILED, details)


class AggregateFailure(RelayError):
    """
    Raised when every considered engine failed or was unavailable.

    Attributes:
        attempts: Ordered AttemptRecord list (skipped entries included).
        failures: Only the non-skipped failures, in chain order.
        recommendation: Operator hint derived from the failure kinds.
    """
    def __init__(self, attempts: List["AttemptRecord"], recommendation: str):
        from tts_relay.tts.dispatcher import AttemptOutcome

        self.attempts = list(attempts)
        self.failures = [a for a in self.attempts if a.outcome == AttemptOutcome.FAILED]
        self.recommendation = recommendation
        super().__init__(
            f"All engines failed ({len(self.failures)} failures)",
            ErrorCode.ALL_ENGINES_FAILED,
            {
                "attempts": [a.to_dict() for a in self.attempts],
                "recommendation": recommendation,
            },
        )
