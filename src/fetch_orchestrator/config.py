"""
Configuration for fetch_orchestrator.
"""
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, List, Optional
from urllib.parse import urlparse


class DuplicatePolicy(str, Enum):
    """What happens to a call whose identity is already in flight."""

    SHARE = "share"
    """Join the in-flight call and settle with its outcome."""

    REJECT = "reject"
    """Reject immediately with DuplicateRequestError."""


@dataclass
class TokenConfig:
    """Token refresh configuration."""

    enable_auto_refresh: bool = False
    """Whether expiring tokens are refreshed automatically. Default: False"""

    buffer_seconds: float = 300.0
    """Refresh lead time before actual expiry (seconds). Default: 5 minutes"""

    redirect_delay: float = 3.0
    """Redirect-to-login debounce window (seconds). Default: 3.0"""


@dataclass
class ClientConfig:
    """Dispatcher and pipeline configuration."""

    base_url: str = ""
    """Prefix for relative request URLs."""

    tenant_id: str = "1"
    login_user_type: str = "3"
    content_type: str = "application/json"

    skip_token_urls: List[str] = field(
        default_factory=lambda: ["/login", "/refresh-token"]
    )
    """URL fragments that never receive an Authorization header."""

    refresh_token_url: str = "/api/auth/refresh-token"
    """Endpoint used by the default refresh handler."""

    max_retry_count: int = 1
    """Automatic retries after a token refresh. Default: 1"""

    retry_delay: float = 0.1
    """Pause before re-issuing a refreshed request (seconds). Default: 0.1"""

    error_throttle_seconds: float = 1.5
    """Window in which an identical error message is shown once."""

    default_loading_text: str = "Loading..."

    timeout: Optional[float] = 30.0
    """Default transport timeout (seconds) when a request sets none."""

    duplicate_policy: DuplicatePolicy = DuplicatePolicy.SHARE


DEFAULT_TOKEN_CONFIG = TokenConfig()
DEFAULT_CLIENT_CONFIG = ClientConfig()


def merge_token_config(config: Optional[TokenConfig] = None, **overrides: Any) -> TokenConfig:
    """Merge user config and keyword overrides with defaults."""
    base = config if config is not None else DEFAULT_TOKEN_CONFIG
    unknown = set(overrides) - set(TokenConfig.__dataclass_fields__)
    if unknown:
        raise ValueError(f"Unknown token options: {sorted(unknown)}")
    return replace(base, **overrides)


def merge_client_config(config: Optional[ClientConfig] = None, **overrides: Any) -> ClientConfig:
    """Merge user config and keyword overrides with defaults."""
    base = config if config is not None else DEFAULT_CLIENT_CONFIG
    unknown = set(overrides) - set(ClientConfig.__dataclass_fields__)
    if unknown:
        raise ValueError(f"Unknown client options: {sorted(unknown)}")
    merged = replace(base, **overrides)
    merged.skip_token_urls = list(merged.skip_token_urls)
    validate_client_config(merged)
    return merged


def validate_client_config(config: ClientConfig) -> None:
    """Validate client configuration."""
    if config.base_url:
        parsed = urlparse(config.base_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"Invalid base_url: {config.base_url}")

    if config.max_retry_count < 0:
        raise ValueError("max_retry_count must be >= 0")

    if config.retry_delay < 0:
        raise ValueError("retry_delay must be >= 0")

    if config.error_throttle_seconds < 0:
        raise ValueError("error_throttle_seconds must be >= 0")
