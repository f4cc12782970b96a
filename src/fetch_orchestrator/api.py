"""
Endpoint helpers built on the dispatcher, and the default refresh handler.
"""
import logging
from typing import Any, Dict, Optional

from .core.dispatcher import RequestDispatcher
from .core.interceptors import InterceptorPipeline
from .errors import TokenRefreshError, TransportError
from .types import RefreshHandler, RequestDescriptor, TokenState, Transport

logger = logging.getLogger(__name__)


def create_refresh_handler(
    transport: Transport,
    pipeline: InterceptorPipeline,
) -> RefreshHandler:
    """
    Build a refresh handler that calls the refresh-token endpoint directly.

    The call bypasses the dispatcher so a 401 from the refresh endpoint can
    never re-enter the refresh protocol.
    """

    async def refresh(refresh_token: str) -> TokenState:
        descriptor = await pipeline.process_request(
            RequestDescriptor(
                url=pipeline.config.refresh_token_url,
                method="POST",
                data={"refreshToken": refresh_token},
            )
        )
        try:
            raw = await transport.issue(descriptor)
        except TransportError as e:
            raise TokenRefreshError(f"Refresh request failed: {e}") from e

        body = raw.data
        if not 200 <= raw.status_code < 300:
            raise TokenRefreshError(f"Refresh request returned HTTP {raw.status_code}")
        if not isinstance(body, dict) or body.get("code") != 0:
            message = body.get("msg") if isinstance(body, dict) else None
            raise TokenRefreshError(message or "Refresh request rejected", data=body)

        try:
            return TokenState.from_payload(body.get("data"))
        except ValueError as e:
            raise TokenRefreshError(str(e)) from e

    return refresh


class UserApi:
    """User endpoints."""

    def __init__(self, http: RequestDispatcher) -> None:
        self._http = http

    async def get_user_info(self, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self._http.get("/api/user/info", params)

    async def update_user_info(self, data: Dict[str, Any]) -> Any:
        return await self._http.post("/api/user/update", data)

    async def login(self, data: Dict[str, Any]) -> Any:
        """Log in and persist the returned token payload."""
        result = await self._http.post("/api/user/login", data)
        payload = result.get("data") if isinstance(result, dict) else None
        if payload:
            self._http.token_manager.save_token(payload)
            logger.info("UserApi.login: token saved")
        return result

    async def logout(self) -> Any:
        """Log out; local token state is cleared even if the call fails."""
        try:
            return await self._http.post("/api/user/logout")
        finally:
            self._http.token_manager.clear_token()
