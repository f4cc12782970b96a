"""
Types for fetch_orchestrator package.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Literal,
    Optional,
    Protocol,
    Union,
)
import asyncio

# HTTP methods
HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


@dataclass(frozen=True)
class RequestDescriptor:
    """Outbound request description. Immutable once dispatched."""

    url: str
    """Absolute URL or path relative to the configured base URL."""

    method: Optional[str] = None
    """HTTP method. Defaults to GET in the outbound pipeline."""

    data: Any = None
    """Query params for GET/DELETE, JSON body otherwise."""

    header: Dict[str, str] = field(default_factory=dict)
    """Caller headers; override pipeline defaults."""

    loading: bool = True
    """Whether this request counts towards the loading indicator."""

    loading_text: Optional[str] = None
    """Text shown with the loading indicator."""

    show_error: bool = True
    """Whether failures are surfaced through the error notifier."""

    cancel_previous: bool = False
    """Abort an identical in-flight request before issuing this one."""

    timeout: Optional[float] = None
    """Transport timeout in seconds."""

    token_refreshed: bool = False
    """Set only on the copy re-issued after a token refresh."""

    def with_token_refreshed(self) -> "RequestDescriptor":
        """Copy of this descriptor marked as a post-refresh retry."""
        return replace(self, token_refreshed=True)

    def evolve(self, **changes: Any) -> "RequestDescriptor":
        """Copy of this descriptor with the given fields replaced."""
        return replace(self, **changes)


@dataclass
class RawResponse:
    """Raw transport response before classification."""

    status_code: int
    data: Any = None
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class UploadProgress:
    """Bytes of a multipart upload handed to the connection so far."""

    progress: int
    """Percentage of the request body sent, 0-100."""

    total_bytes_sent: int
    total_bytes_expected: int


UploadProgressCallback = Callable[[UploadProgress], None]


class TransportFailureReason(str, Enum):
    """Why a transport operation produced no response."""

    ABORTED = "aborted"
    TIMEOUT = "timeout"
    NETWORK = "network"


class InboundKind(str, Enum):
    """Classification of an inbound response."""

    SUCCESS = "success"
    REFRESH = "refresh"
    FAILURE = "failure"


@dataclass
class InboundResult:
    """Outcome of the inbound pipeline."""

    kind: InboundKind
    data: Any = None
    error: Optional[Exception] = None


class TokenStatus(str, Enum):
    """Token lifecycle state as seen by the token manager."""

    VALID = "valid"
    EXPIRING_SOON = "expiring_soon"
    REFRESHING = "refreshing"
    EXPIRED = "expired"


@dataclass
class TokenState:
    """Persisted authentication state."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[float] = None
    """Expiry as Unix timestamp (seconds). None means already expired."""

    user_id: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Union["TokenState", Dict[str, Any]]) -> "TokenState":
        """
        Build a TokenState from a login/refresh response payload.

        The server sends ``{accessToken, refreshToken, expiresTime, userId}``
        with ``expiresTime`` in epoch milliseconds.
        """
        if isinstance(payload, TokenState):
            return payload
        if not isinstance(payload, dict) or not payload.get("accessToken"):
            raise ValueError("Token payload must contain accessToken")

        expires_time = payload.get("expiresTime")
        user_id = payload.get("userId")
        return cls(
            access_token=payload["accessToken"],
            refresh_token=payload.get("refreshToken"),
            expires_at=float(expires_time) / 1000.0 if expires_time else None,
            user_id=str(user_id) if user_id is not None else None,
        )


@dataclass
class RefreshWaiter:
    """A request parked until the in-flight refresh completes."""

    descriptor: RequestDescriptor
    future: "asyncio.Future[RequestDescriptor]"


class TokenEventType(str, Enum):
    """Event types emitted by the token manager."""

    REFRESH_START = "refresh:start"
    REFRESH_SUCCESS = "refresh:success"
    REFRESH_FAILURE = "refresh:failure"
    REDIRECT = "redirect"


@dataclass
class TokenEvent:
    """Token manager event."""

    type: TokenEventType
    timestamp: float
    metadata: Optional[Dict[str, Any]] = None


TokenEventListener = Callable[[TokenEvent], None]
"""Event listener type."""

RefreshHandler = Callable[[str], Awaitable[Union[TokenState, Dict[str, Any]]]]
"""Async callable exchanging a refresh token for a new TokenState/payload."""


class TokenStore(ABC):
    """Durable key/value holder for token state. No logic."""

    @abstractmethod
    def get(self, key: str) -> Any:
        """Get a stored value, or None."""
        pass

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """Store a value."""
        pass

    @abstractmethod
    def remove(self, key: str) -> None:
        """Remove a value if present."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Remove all values."""
        pass


class TransportHandleProtocol(Protocol):
    """Cancellable in-flight transport operation."""

    def abort(self) -> None:
        """Signal the transport to abort the operation."""
        ...

    @property
    def aborted(self) -> bool:
        """Whether abort() has been called."""
        ...

    def __await__(self):
        """Await the RawResponse; raises TransportError on failure."""
        ...


class Transport(Protocol):
    """Transport collaborator contract."""

    def issue(self, descriptor: RequestDescriptor) -> TransportHandleProtocol:
        """Start the request described by a fully processed descriptor."""
        ...


class Feedback(Protocol):
    """User-facing feedback renderer."""

    def show_loading(self, text: str) -> None:
        ...

    def hide_loading(self) -> None:
        ...

    def show_error(self, message: str) -> None:
        ...
