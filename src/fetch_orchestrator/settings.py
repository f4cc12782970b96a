"""Application settings using Pydantic Settings."""

import logging
from functools import lru_cache
from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .config import ClientConfig, DuplicatePolicy, TokenConfig

logger = logging.getLogger(__name__)

EnvType = Literal["dev", "prod", "local"]

ENV_NAMES = {
    "dev": "Test environment",
    "prod": "Production environment",
    "local": "Local environment",
}


class Settings(BaseSettings):
    """Settings loaded from FETCH_ORCHESTRATOR_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="FETCH_ORCHESTRATOR_",
        env_file=None,
        extra="ignore",
    )

    # Environment
    ENV_TYPE: EnvType = "dev"
    DEV_API_BASE_URL: Optional[str] = None
    PROD_API_BASE_URL: Optional[str] = None
    LOCAL_API_BASE_URL: Optional[str] = None

    # Tenant headers
    TENANT_ID: str = "1"
    LOGIN_USER_TYPE: str = "3"

    # Token
    AUTO_REFRESH_ENABLED: bool = False
    BUFFER_SECONDS: float = 300.0
    REDIRECT_DELAY: float = 3.0
    REFRESH_TOKEN_URL: str = "/api/auth/refresh-token"

    # Requests
    TIMEOUT: float = 30.0
    MAX_RETRY_COUNT: int = 1
    RETRY_DELAY: float = 0.1
    ERROR_THROTTLE_SECONDS: float = 1.5
    DUPLICATE_POLICY: DuplicatePolicy = DuplicatePolicy.SHARE

    @field_validator("ENV_TYPE", mode="before")
    @classmethod
    def _normalize_env_type(cls, value):
        return value.lower() if isinstance(value, str) else value

    @property
    def api_base_url(self) -> str:
        """Base URL for the active environment."""
        url = getattr(self, f"{self.ENV_TYPE.upper()}_API_BASE_URL")
        if not url:
            logger.warning(f"No API base URL configured for env_type={self.ENV_TYPE}")
            return ""
        return url

    @property
    def env_info(self) -> dict:
        """Describe the active environment."""
        return {
            "type": self.ENV_TYPE,
            "name": ENV_NAMES.get(self.ENV_TYPE, "Unknown environment"),
            "is_dev": self.ENV_TYPE == "dev",
            "is_prod": self.ENV_TYPE == "prod",
            "is_local": self.ENV_TYPE == "local",
        }

    def to_client_config(self) -> ClientConfig:
        return ClientConfig(
            base_url=self.api_base_url,
            tenant_id=self.TENANT_ID,
            login_user_type=self.LOGIN_USER_TYPE,
            refresh_token_url=self.REFRESH_TOKEN_URL,
            max_retry_count=self.MAX_RETRY_COUNT,
            retry_delay=self.RETRY_DELAY,
            error_throttle_seconds=self.ERROR_THROTTLE_SECONDS,
            timeout=self.TIMEOUT,
            duplicate_policy=self.DUPLICATE_POLICY,
        )

    def to_token_config(self) -> TokenConfig:
        return TokenConfig(
            enable_auto_refresh=self.AUTO_REFRESH_ENABLED,
            buffer_seconds=self.BUFFER_SECONDS,
            redirect_delay=self.REDIRECT_DELAY,
        )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
