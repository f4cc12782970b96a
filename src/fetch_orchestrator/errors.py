"""
Error taxonomy for fetch_orchestrator.

Every error a caller can receive derives from RequestError and carries the
application envelope fields (code, msg, data). Silent errors are never shown
to the user; they only reject the caller.
"""
from typing import Any, Dict, Optional

from .types import TransportFailureReason

GENERIC_NETWORK_MESSAGE = "Network request failed"
NETWORK_UNAVAILABLE_MESSAGE = "Network connection failed, please check network settings"
TIMEOUT_MESSAGE = "Request timed out"
UNAUTHORIZED_MESSAGE = "Unauthorized, please log in again"
SESSION_EXPIRED_MESSAGE = "Session expired, please log in again"
RETRY_EXHAUSTED_MESSAGE = "Retry limit exceeded"
CANCELLED_MESSAGE = "Request cancelled"
INTERCEPTOR_MESSAGE = "Request interceptor error"

HTTP_ERROR_MESSAGES: Dict[int, str] = {
    401: UNAUTHORIZED_MESSAGE,
    403: "Access denied",
    404: "Request address not found",
    500: "Internal server error",
    502: "Bad gateway",
    503: "Service unavailable",
    504: "Gateway timeout",
}


def get_http_error_message(status_code: int) -> str:
    """Canned message for an HTTP status, generic fallback otherwise."""
    return HTTP_ERROR_MESSAGES.get(status_code, GENERIC_NETWORK_MESSAGE)


class RequestError(Exception):
    """Base class for every error surfaced by the dispatcher."""

    default_code: Any = -1
    default_silent: bool = False

    def __init__(
        self,
        message: str,
        code: Any = None,
        data: Any = None,
        silent: Optional[bool] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = self.default_code if code is None else code
        self.data = data
        self.silent = self.default_silent if silent is None else silent

    @property
    def msg(self) -> str:
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Envelope representation."""
        return {"code": self.code, "msg": self.message, "data": self.data}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class NetworkError(RequestError):
    """Transport failed and produced no response."""

    def __init__(
        self,
        message: str = NETWORK_UNAVAILABLE_MESSAGE,
        reason: TransportFailureReason = TransportFailureReason.NETWORK,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.reason = reason


class HttpError(RequestError):
    """Transport returned a non-2xx status."""

    def __init__(self, status: int, message: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message or get_http_error_message(status), code=status, **kwargs)
        self.status = status


class BusinessError(RequestError):
    """2xx transport status with a non-zero envelope code."""


class AuthError(RequestError):
    """401 escalation that could not be recovered by refresh/retry."""

    default_code = 401
    default_silent = True


class TokenRefreshError(AuthError):
    """The token refresh call itself failed."""


class RetryExhaustedError(AuthError):
    """A request hit 401 again after its single post-refresh retry."""

    default_silent = False

    def __init__(self, message: str = RETRY_EXHAUSTED_MESSAGE, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class CancellationError(RequestError):
    """Request aborted by a cancellation policy."""

    default_code = "REQUEST_CANCELLED"
    default_silent = True

    def __init__(self, message: str = CANCELLED_MESSAGE, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class DuplicateRequestError(RequestError):
    """An identical request is already in flight."""

    default_code = "REQUEST_DUPLICATE"
    default_silent = True


class InterceptorError(RequestError):
    """The outbound pipeline raised unexpectedly."""

    def __init__(self, message: str = INTERCEPTOR_MESSAGE, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class TransportError(Exception):
    """Transport-level failure with a typed reason. Never reaches callers."""

    def __init__(
        self,
        reason: TransportFailureReason,
        message: str = "",
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message or reason.value)
        self.reason = reason
        self.cause = cause

    @property
    def is_abort(self) -> bool:
        return self.reason == TransportFailureReason.ABORTED
