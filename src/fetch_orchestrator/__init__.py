"""
Client-side HTTP request orchestration.

Dedup of identical in-flight requests, cooperative cancellation, and
transparent single-flight token refresh with bounded retry.
"""
from .types import (
    HttpMethod,
    RequestDescriptor,
    RawResponse,
    UploadProgress,
    TransportFailureReason,
    InboundKind,
    InboundResult,
    TokenStatus,
    TokenState,
    RefreshWaiter,
    TokenEventType,
    TokenEvent,
    TokenEventListener,
    TokenStore,
    Transport,
    Feedback,
)
from .errors import (
    RequestError,
    NetworkError,
    HttpError,
    BusinessError,
    AuthError,
    TokenRefreshError,
    RetryExhaustedError,
    CancellationError,
    DuplicateRequestError,
    InterceptorError,
    TransportError,
    HTTP_ERROR_MESSAGES,
    get_http_error_message,
)
from .config import (
    DuplicatePolicy,
    TokenConfig,
    ClientConfig,
    DEFAULT_TOKEN_CONFIG,
    DEFAULT_CLIENT_CONFIG,
    merge_token_config,
    merge_client_config,
)
from .settings import Settings, get_settings
from .identity import generate_request_id, canonicalize_body
from .stores import MemoryTokenStore, FileTokenStore, create_memory_token_store
from .auth import TokenManager
from .core import (
    RequestDispatcher,
    InterceptorPipeline,
    RequestRegistry,
    LoadingTracker,
    ErrorThrottle,
    ConsoleFeedback,
    NullFeedback,
)
from .transport import HttpxTransport, TransportHandle
from .uploads import FileUploader, BatchUploadResult, UploadOutcome
from .api import UserApi, create_refresh_handler
from .factory import create_client, create_uploader


__all__ = [
    # Types
    "HttpMethod",
    "RequestDescriptor",
    "RawResponse",
    "UploadProgress",
    "TransportFailureReason",
    "InboundKind",
    "InboundResult",
    "TokenStatus",
    "TokenState",
    "RefreshWaiter",
    "TokenEventType",
    "TokenEvent",
    "TokenEventListener",
    "TokenStore",
    "Transport",
    "Feedback",
    # Errors
    "RequestError",
    "NetworkError",
    "HttpError",
    "BusinessError",
    "AuthError",
    "TokenRefreshError",
    "RetryExhaustedError",
    "CancellationError",
    "DuplicateRequestError",
    "InterceptorError",
    "TransportError",
    "HTTP_ERROR_MESSAGES",
    "get_http_error_message",
    # Config
    "DuplicatePolicy",
    "TokenConfig",
    "ClientConfig",
    "DEFAULT_TOKEN_CONFIG",
    "DEFAULT_CLIENT_CONFIG",
    "merge_token_config",
    "merge_client_config",
    "Settings",
    "get_settings",
    # Identity
    "generate_request_id",
    "canonicalize_body",
    # Stores
    "MemoryTokenStore",
    "FileTokenStore",
    "create_memory_token_store",
    # Auth
    "TokenManager",
    # Core
    "RequestDispatcher",
    "InterceptorPipeline",
    "RequestRegistry",
    "LoadingTracker",
    "ErrorThrottle",
    "ConsoleFeedback",
    "NullFeedback",
    # Transport
    "HttpxTransport",
    "TransportHandle",
    # Uploads
    "FileUploader",
    "BatchUploadResult",
    "UploadOutcome",
    # API
    "UserApi",
    "create_refresh_handler",
    # Factory
    "create_client",
    "create_uploader",
]

__version__ = "1.0.0"
