"""Custom exceptions for the admission service."""

from typing import Mapping, Optional

from starlette.responses import Response


class AdmissionError(Exception):
    """Base class for admission service exceptions with HTTP status code.

    All custom exceptions should inherit from this class and define
    their specific status_code for consistent HTTP response handling.
    """
    status_code: int = 500

    def __init__(self, message: str = "Admission control error"):
        self.message = message
        super().__init__(message)


class InvalidConfiguration(AdmissionError):
    """Raised when a rate limit configuration is invalid.

    Raised at startup and never caught: a zero or negative window or
    request limit must abort the process instead of disabling limiting.
    """
    status_code = 500


class StoreUnavailable(AdmissionError):
    """Raised when the shared counter store cannot be reached.

    Covers timeouts, refused connections and protocol errors. Recoverable;
    the interception layer fails open on it.
    Maps to HTTP 503 Service Unavailable where it is surfaced at all.
    """
    status_code = 503

    def __init__(self, message: str = "Rate limit store unavailable", operation: Optional[str] = None):
        self.operation = operation
        super().__init__(message)


class DecisionComputationError(StoreUnavailable):
    """Raised when the store returns data a decision cannot be built from.

    For example a non-numeric counter or a script reply of the wrong shape.
    Handled as StoreUnavailable for degradation purposes.
    """


class RateLimitExceeded(AdmissionError):
    """Raised by the per-route dependency when a request is blocked.

    Maps to HTTP 429 Too Many Requests. When an on-limit-reached callback
    produced its own response, it is carried in ``response`` and sent as-is.
    """
    status_code = 429

    def __init__(
        self,
        retry_after: int,
        headers: Optional[Mapping[str, str]] = None,
        response: Optional[Response] = None,
        detail: Optional[str] = None,
    ):
        self.retry_after = retry_after
        self.headers = dict(headers or {})
        self.response = response
        message = detail or (
            f"Too many requests. Try again in {retry_after} seconds."
        )
        super().__init__(message)

    def to_response(self) -> dict:
        """Convert to API response body."""
        return {
            "error": "rate_limit_exceeded",
            "message": self.message,
            "retryAfter": self.retry_after,
        }
