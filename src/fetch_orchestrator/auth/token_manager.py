"""
Token manager: single authority over token validity and refresh.

Refresh is single-flight. While a refresh is in flight every other caller
awaits the same task, and requests that raced the expired token park in
a waiter queue that is settled, in enqueue order, by that same refresh.
"""
import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Set, Union

from ..config import TokenConfig, merge_token_config
from ..errors import AuthError, TokenRefreshError
from ..stores.memory import MemoryTokenStore
from ..types import (
    RefreshHandler,
    RefreshWaiter,
    RequestDescriptor,
    TokenEvent,
    TokenEventListener,
    TokenEventType,
    TokenState,
    TokenStatus,
    TokenStore,
)

logger = logging.getLogger(__name__)

TOKEN_KEY = "token"
REFRESH_TOKEN_KEY = "refreshToken"
EXPIRES_KEY = "expiresAt"
USER_ID_KEY = "userId"


def _mask_sensitive(value: Optional[str], visible_chars: int = 10) -> str:
    """Mask sensitive value for safe logging."""
    if value is None:
        return "<None>"
    if len(value) <= visible_chars:
        return "*" * len(value)
    return value[:visible_chars] + "*" * (len(value) - visible_chars)


def _consume_refresh_outcome(task: "asyncio.Task[TokenState]") -> None:
    # Callers re-raise the failure themselves; the task may outlive all of them.
    if not task.cancelled():
        task.exception()


class TokenManager:
    """
    Owns token state and refresh coordination.

    Example:
        manager = TokenManager(
            store=FileTokenStore("~/.app/token.json"),
            config=TokenConfig(enable_auto_refresh=True),
            refresh_handler=call_refresh_endpoint,
            redirect_handler=lambda: router.go("/login"),
        )
        token = await manager.get_valid_token()
    """

    def __init__(
        self,
        store: Optional[TokenStore] = None,
        config: Optional[TokenConfig] = None,
        refresh_handler: Optional[RefreshHandler] = None,
        redirect_handler: Optional[Callable[[], Any]] = None,
        login_surface_check: Optional[Callable[[], bool]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store or MemoryTokenStore()
        self._config = merge_token_config(config)
        self._refresh_handler = refresh_handler
        self._redirect_handler = redirect_handler
        self._login_surface_check = login_surface_check
        self._clock = clock

        self._refresh_task: Optional["asyncio.Task[TokenState]"] = None
        self._pending_queue: List[RefreshWaiter] = []
        self._redirecting = False
        self._redirect_until = 0.0
        self._listeners: Set[TokenEventListener] = set()

    # === Configuration ===

    @property
    def config(self) -> TokenConfig:
        return self._config

    def configure(self, **options: Any) -> "TokenManager":
        """Override configuration values, e.g. ``configure(buffer_seconds=60)``."""
        self._config = merge_token_config(self._config, **options)
        return self

    def set_auto_refresh(self, enabled: bool) -> "TokenManager":
        self._config = merge_token_config(self._config, enable_auto_refresh=enabled)
        return self

    def set_refresh_handler(self, handler: Optional[RefreshHandler]) -> "TokenManager":
        self._refresh_handler = handler
        return self

    # === Storage access ===

    def get_token(self) -> Optional[str]:
        return self._store.get(TOKEN_KEY) or None

    def get_refresh_token(self) -> Optional[str]:
        return self._store.get(REFRESH_TOKEN_KEY) or None

    def get_expires_at(self) -> Optional[float]:
        value = self._store.get(EXPIRES_KEY)
        return float(value) if value else None

    def get_user_id(self) -> Optional[str]:
        return self._store.get(USER_ID_KEY)

    def save_token(self, token: Union[TokenState, Dict[str, Any]]) -> TokenState:
        """Persist new token state. A non-future expiry is stored as absent."""
        state = TokenState.from_payload(token)
        expires_at = state.expires_at
        if expires_at is not None and expires_at <= self._clock():
            logger.warning(
                f"TokenManager.save_token: expiry {expires_at} is not in the future, "
                f"treating token as already expired"
            )
            expires_at = None

        self._store.set(TOKEN_KEY, state.access_token)
        self._store.set(REFRESH_TOKEN_KEY, state.refresh_token)
        self._store.set(EXPIRES_KEY, expires_at)
        self._store.set(USER_ID_KEY, state.user_id)
        logger.debug(
            f"TokenManager.save_token: access_token={_mask_sensitive(state.access_token)}, "
            f"expires_at={expires_at}"
        )
        return TokenState(
            access_token=state.access_token,
            refresh_token=state.refresh_token,
            expires_at=expires_at,
            user_id=state.user_id,
        )

    def clear_token(self) -> None:
        for key in (TOKEN_KEY, REFRESH_TOKEN_KEY, EXPIRES_KEY, USER_ID_KEY):
            self._store.remove(key)
        logger.debug("TokenManager.clear_token: token state cleared")

    # === Expiry evaluation ===

    def is_token_expired(self) -> bool:
        expires_at = self.get_expires_at()
        if not expires_at:
            return True
        return self._clock() >= expires_at

    def is_token_expiring_soon(self, buffer_seconds: Optional[float] = None) -> bool:
        expires_at = self.get_expires_at()
        if not expires_at:
            return True
        buffer = self._config.buffer_seconds if buffer_seconds is None else buffer_seconds
        return self._clock() >= expires_at - buffer

    def is_on_login_surface(self) -> bool:
        if self._login_surface_check is None:
            return False
        return bool(self._login_surface_check())

    @property
    def is_refreshing(self) -> bool:
        return self._refresh_task is not None

    @property
    def status(self) -> TokenStatus:
        if self.is_refreshing:
            return TokenStatus.REFRESHING
        if not self.get_token() or self.is_token_expired():
            return TokenStatus.EXPIRED
        if self.is_token_expiring_soon():
            return TokenStatus.EXPIRING_SOON
        return TokenStatus.VALID

    def is_logged_in(self) -> bool:
        return bool(self.get_token()) and not self.is_token_expired()

    # === Token access ===

    async def get_valid_token(self) -> Optional[str]:
        """
        Return a usable access token, refreshing first when it is about to expire.

        Returns None when no token is stored, when the token is expired and
        refreshing is not allowed, or when the refresh fails.
        """
        token = self.get_token()
        if not token:
            return None

        if self.is_on_login_surface() or not self._config.enable_auto_refresh:
            return None if self.is_token_expired() else token

        if self.is_token_expiring_soon():
            try:
                await self.refresh_token()
            except Exception as e:
                logger.debug(f"TokenManager.get_valid_token: refresh failed: {e}")
                return None
            return self.get_token()

        return token

    # === Refresh ===

    async def refresh_token(self) -> TokenState:
        """
        Refresh the access token, single-flight.

        The refresh runs in a task owned by the manager. Every caller awaits
        it through a shield, so cancelling one caller never cancels the
        refresh or the other callers.
        """
        task = self._refresh_task
        if task is None:
            task = asyncio.ensure_future(self._run_refresh())
            task.add_done_callback(_consume_refresh_outcome)
            self._refresh_task = task
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            # Only destroy() cancels the refresh itself.
            if task.cancelled():
                raise AuthError("Token refresh cancelled") from None
            raise

    async def _run_refresh(self) -> TokenState:
        self._emit(TokenEventType.REFRESH_START)
        try:
            state = await self._perform_refresh()
        except asyncio.CancelledError:
            self._process_pending_queue(AuthError("Token refresh cancelled"))
            raise
        except Exception as error:
            self._emit(TokenEventType.REFRESH_FAILURE, {"error": str(error)})
            self._process_pending_queue(error)
            raise
        else:
            self._emit(TokenEventType.REFRESH_SUCCESS)
            self._process_pending_queue(None)
            return state
        finally:
            if self._refresh_task is asyncio.current_task():
                self._refresh_task = None

    async def _perform_refresh(self) -> TokenState:
        refresh_token = self.get_refresh_token()
        try:
            if not refresh_token:
                raise TokenRefreshError("No refresh token available")
            if self._refresh_handler is None:
                raise TokenRefreshError("No refresh handler configured")

            payload = await self._refresh_handler(refresh_token)
            state = self.save_token(payload)
            logger.info("TokenManager: token refresh succeeded")
            return state
        except Exception as error:
            logger.error(f"TokenManager: token refresh failed: {error}")
            self.clear_token()
            self.safe_redirect_to_login()
            if isinstance(error, AuthError):
                raise
            raise TokenRefreshError(f"Token refresh failed: {error}") from error

    def add_to_queue(self, descriptor: RequestDescriptor) -> "asyncio.Future[RequestDescriptor]":
        """Park a request until the in-flight refresh settles."""
        future: "asyncio.Future[RequestDescriptor]" = asyncio.get_running_loop().create_future()
        self._pending_queue.append(RefreshWaiter(descriptor=descriptor, future=future))
        logger.debug(
            f"TokenManager.add_to_queue: {descriptor.method} {descriptor.url} "
            f"(queue size={len(self._pending_queue)})"
        )
        return future

    @property
    def queue_size(self) -> int:
        return len(self._pending_queue)

    def _process_pending_queue(self, error: Optional[BaseException]) -> None:
        queue, self._pending_queue = self._pending_queue, []
        for waiter in queue:
            if waiter.future.done():
                continue
            if error is not None:
                waiter.future.set_exception(error)
            else:
                waiter.future.set_result(waiter.descriptor.with_token_refreshed())

    # === Redirect ===

    def safe_redirect_to_login(self) -> bool:
        """
        Redirect to the login entry point at most once per redirect_delay.

        Returns True if this call started a redirect window.
        """
        now = self._clock()
        if self._redirecting and now < self._redirect_until:
            return False

        self._redirecting = True
        self._redirect_until = now + self._config.redirect_delay

        if self.is_on_login_surface() or self._redirect_handler is None:
            return True

        logger.info("TokenManager: redirecting to login")
        self._emit(TokenEventType.REDIRECT)
        try:
            self._redirect_handler()
        except Exception as e:
            logger.error(f"TokenManager: redirect to login failed: {e}")
            self._redirecting = False
        return True

    # === Lifecycle ===

    async def check_on_app_resume(self) -> bool:
        """Refresh on resume if the token is expired or about to expire."""
        if self.is_on_login_surface() or not self.get_token():
            return True

        needs_refresh = self.is_token_expired() or self.is_token_expiring_soon()
        if needs_refresh and self._config.enable_auto_refresh:
            try:
                await self.refresh_token()
            except Exception:
                return False
        return True

    def destroy(self) -> None:
        """Cancel any running refresh, reject outstanding waiters and reset state."""
        self._process_pending_queue(AuthError("Token manager destroyed"))
        if self._refresh_task is not None:
            self._refresh_task.cancel()
            self._refresh_task = None
        self._redirecting = False
        self._redirect_until = 0.0

    # === Events ===

    def on(self, listener: TokenEventListener) -> Callable[[], None]:
        """Add event listener."""
        self._listeners.add(listener)
        return lambda: self._listeners.discard(listener)

    def off(self, listener: TokenEventListener) -> None:
        """Remove event listener."""
        self._listeners.discard(listener)

    def _emit(self, event_type: TokenEventType, metadata: Optional[Dict[str, Any]] = None) -> None:
        event = TokenEvent(type=event_type, timestamp=self._clock(), metadata=metadata)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.debug(f"TokenManager: listener error ignored: {e}")
