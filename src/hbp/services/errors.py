"""Media generation service errors and failure classification."""

from enum import Enum
from typing import Any, Optional

from google.api_core import exceptions as google_exceptions

RATE_LIMIT_PHRASE = "daily task limit"
BAD_OUTPUT_CODE = "INTERNAL.BAD_OUTPUT.CODE01"

# google.rpc.Code.RESOURCE_EXHAUSTED
_RESOURCE_EXHAUSTED = 8


class GenerationServiceError(Exception):
    """Raised when an image or video generation request fails."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        failure_code: Optional[str] = None,
        payload: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.failure_code = failure_code
        self.payload = payload or {}


class RateLimitError(GenerationServiceError):
    """The service refused the task because the caller's quota is spent."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("status_code", 429)
        super().__init__(message, **kwargs)


class BadOutputError(GenerationServiceError):
    """The service produced no usable output, typically after content filtering."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("failure_code", BAD_OUTPUT_CODE)
        super().__init__(message, **kwargs)


class FailureKind(str, Enum):
    """How the pipeline reacts to a failed generation call."""
    RATE_LIMIT = "rate_limit"
    BAD_OUTPUT = "bad_output"
    GENERIC = "generic"


def _payload_message(payload: dict[str, Any]) -> str:
    error = payload.get("error")
    if isinstance(error, dict):
        return str(error.get("message", ""))
    if isinstance(error, str):
        return error
    return str(payload.get("message", ""))


def _has_exhausted_code(payload: dict[str, Any]) -> bool:
    error = payload.get("error")
    if isinstance(error, dict):
        return error.get("code") in (429, _RESOURCE_EXHAUSTED) or (
            error.get("status") == "RESOURCE_EXHAUSTED"
        )
    return False


def is_rate_limit(exc: BaseException) -> bool:
    """Return True for quota exhaustion, however the service reported it."""
    if isinstance(exc, (RateLimitError, google_exceptions.TooManyRequests,
                        google_exceptions.ResourceExhausted)):
        return True

    status = getattr(exc, "status_code", None) or getattr(exc, "code", None)
    if status == 429:
        return True

    payload = getattr(exc, "payload", None)
    if isinstance(payload, dict):
        if _has_exhausted_code(payload):
            return True
        if RATE_LIMIT_PHRASE in _payload_message(payload).lower():
            return True

    return RATE_LIMIT_PHRASE in str(exc).lower()


def is_bad_output(exc: BaseException) -> bool:
    """Return True for failures worth one retry with a simpler prompt."""
    if isinstance(exc, BadOutputError):
        return True
    code = getattr(exc, "failure_code", None)
    return bool(code) and str(code).startswith("INTERNAL.BAD_OUTPUT")


def classify_failure(exc: BaseException) -> FailureKind:
    """Classify a generation failure. Rate limits take precedence."""
    if is_rate_limit(exc):
        return FailureKind.RATE_LIMIT
    if is_bad_output(exc):
        return FailureKind.BAD_OUTPUT
    return FailureKind.GENERIC
