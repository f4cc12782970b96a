"""
Tests for TokenManager.

Coverage includes:
- Expiry evaluation with an injected clock
- get_valid_token decision table
- Single-flight refresh (success and failure)
- Waiter queue ordering and rejection
- Debounced redirect to login
- Lifecycle: app resume, destroy, events
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import NOW, drain, token_payload
from fetch_orchestrator.auth.token_manager import TokenManager
from fetch_orchestrator.config import TokenConfig
from fetch_orchestrator.errors import AuthError, TokenRefreshError
from fetch_orchestrator.stores.memory import MemoryTokenStore
from fetch_orchestrator.types import RequestDescriptor, TokenEventType, TokenStatus


class TestExpiry:
    """Tests for expiry evaluation."""

    def test_fresh_token_is_valid(self, token_manager) -> None:
        assert token_manager.is_token_expired() is False
        assert token_manager.is_token_expiring_soon() is False
        assert token_manager.status == TokenStatus.VALID
        assert token_manager.is_logged_in() is True

    def test_expiring_soon_inside_buffer(self, token_manager, clock) -> None:
        """Token expiring in 10s with a 5 minute buffer is expiring soon."""
        clock.advance(3600 - 10)

        assert token_manager.is_token_expired() is False
        assert token_manager.is_token_expiring_soon() is True
        assert token_manager.status == TokenStatus.EXPIRING_SOON

    def test_custom_buffer(self, token_manager, clock) -> None:
        clock.advance(3600 - 10)

        assert token_manager.is_token_expiring_soon(buffer_seconds=5) is False

    def test_expired_at_boundary(self, token_manager, clock) -> None:
        """Expiry instant itself counts as expired."""
        clock.advance(3600)

        assert token_manager.is_token_expired() is True
        assert token_manager.status == TokenStatus.EXPIRED
        assert token_manager.is_logged_in() is False

    def test_missing_expiry_is_expired(self, clock) -> None:
        manager = TokenManager(store=MemoryTokenStore({"token": "t"}), clock=clock)

        assert manager.is_token_expired() is True
        assert manager.is_token_expiring_soon() is True


class TestSaveToken:
    """Tests for save_token and clear_token."""

    def test_save_converts_milliseconds(self, token_manager, token_store) -> None:
        state = token_manager.save_token(token_payload(access="a", refresh="r", ttl=60))

        assert state.access_token == "a"
        assert state.expires_at == NOW + 60
        assert token_manager.get_token() == "a"
        assert token_manager.get_refresh_token() == "r"
        assert token_manager.get_expires_at() == NOW + 60
        assert token_manager.get_user_id() == "42"

    def test_past_expiry_stored_as_absent(self, token_manager) -> None:
        """An expiry that is not in the future is dropped."""
        state = token_manager.save_token(token_payload(ttl=-10))

        assert state.expires_at is None
        assert token_manager.get_expires_at() is None
        assert token_manager.is_token_expired() is True

    def test_payload_without_access_token_rejected(self, token_manager) -> None:
        with pytest.raises(ValueError):
            token_manager.save_token({"refreshToken": "r"})

    def test_clear_token(self, token_manager) -> None:
        token_manager.clear_token()

        assert token_manager.get_token() is None
        assert token_manager.get_refresh_token() is None
        assert token_manager.get_expires_at() is None


class TestGetValidToken:
    """Tests for get_valid_token."""

    @pytest.mark.asyncio
    async def test_returns_current_token(self, token_manager, refresh_handler) -> None:
        assert await token_manager.get_valid_token() == "old-token"
        refresh_handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_token(self, refresh_handler, clock) -> None:
        manager = TokenManager(refresh_handler=refresh_handler, clock=clock)

        assert await manager.get_valid_token() is None
        refresh_handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_refreshes_when_expiring(self, token_manager, clock, refresh_handler) -> None:
        """A token inside the buffer is refreshed first."""
        refresh_handler.return_value = token_payload(ttl=7200)
        clock.advance(3600 - 10)

        assert await token_manager.get_valid_token() == "new-token"
        refresh_handler.assert_awaited_once_with("refresh-1")

    @pytest.mark.asyncio
    async def test_auto_refresh_disabled(self, token_manager, clock, refresh_handler) -> None:
        """Without auto refresh an expiring token is returned until it expires."""
        token_manager.set_auto_refresh(False)
        clock.advance(3600 - 10)
        assert await token_manager.get_valid_token() == "old-token"

        clock.advance(10)
        assert await token_manager.get_valid_token() is None
        refresh_handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_login_surface_never_refreshes(
        self, token_store, clock, refresh_handler
    ) -> None:
        manager = TokenManager(
            store=token_store,
            config=TokenConfig(enable_auto_refresh=True),
            refresh_handler=refresh_handler,
            login_surface_check=lambda: True,
            clock=clock,
        )
        clock.advance(3600 - 10)

        assert await manager.get_valid_token() == "old-token"
        refresh_handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_refresh_failure_returns_none(
        self, token_manager, clock, refresh_handler
    ) -> None:
        refresh_handler.side_effect = RuntimeError("down")
        clock.advance(3600 - 10)

        assert await token_manager.get_valid_token() is None


class TestSingleFlightRefresh:
    """Tests for refresh_token."""

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_refresh(self, token_manager) -> None:
        """N concurrent callers trigger exactly one refresh and get the same state."""
        gate = asyncio.Event()
        handler = AsyncMock(return_value=token_payload())

        async def gated(refresh_token):
            await gate.wait()
            return await handler(refresh_token)

        token_manager.set_refresh_handler(gated)

        tasks = [asyncio.create_task(token_manager.refresh_token()) for _ in range(5)]
        await drain()
        assert token_manager.is_refreshing is True
        assert token_manager.status == TokenStatus.REFRESHING

        gate.set()
        states = await asyncio.gather(*tasks)

        handler.assert_awaited_once_with("refresh-1")
        assert {state.access_token for state in states} == {"new-token"}
        assert token_manager.is_refreshing is False

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_failure(
        self, token_manager, redirect_handler
    ) -> None:
        """All callers see the failure; token cleared and redirect fires once."""
        gate = asyncio.Event()
        calls = []

        async def failing(refresh_token):
            calls.append(refresh_token)
            await gate.wait()
            raise RuntimeError("refresh endpoint down")

        token_manager.set_refresh_handler(failing)

        tasks = [asyncio.create_task(token_manager.refresh_token()) for _ in range(3)]
        await drain()
        gate.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert len(calls) == 1
        assert all(isinstance(r, TokenRefreshError) for r in results)
        assert token_manager.get_token() is None
        redirect_handler.assert_called_once()
        assert token_manager.is_refreshing is False

    @pytest.mark.asyncio
    async def test_new_refresh_after_settle(self, token_manager, refresh_handler) -> None:
        """A refresh after the previous one settled starts a new flight."""
        await token_manager.refresh_token()
        refresh_handler.return_value = token_payload(access="newer-token")
        await token_manager.refresh_token()

        assert refresh_handler.await_count == 2
        assert token_manager.get_token() == "newer-token"

    @pytest.mark.asyncio
    async def test_missing_refresh_token(self, token_manager, token_store, refresh_handler) -> None:
        token_store.remove("refreshToken")

        with pytest.raises(TokenRefreshError):
            await token_manager.refresh_token()

        refresh_handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_handler(self, token_store, clock) -> None:
        manager = TokenManager(store=token_store, clock=clock)

        with pytest.raises(TokenRefreshError):
            await manager.refresh_token()

    @pytest.mark.asyncio
    async def test_auth_error_from_handler_kept(self, token_manager, refresh_handler) -> None:
        """AuthError subclasses raised by the handler propagate unchanged."""
        original = TokenRefreshError("rejected")
        refresh_handler.side_effect = original

        with pytest.raises(TokenRefreshError) as exc_info:
            await token_manager.refresh_token()

        assert exc_info.value is original

    @pytest.mark.asyncio
    async def test_cancelled_caller_leaves_refresh_running(self, token_manager) -> None:
        """Cancelling the caller that started the refresh must not cancel it for others."""
        gate = asyncio.Event()
        handler = AsyncMock(return_value=token_payload())

        async def gated(refresh_token):
            await gate.wait()
            return await handler(refresh_token)

        token_manager.set_refresh_handler(gated)

        first = asyncio.create_task(token_manager.refresh_token())
        await drain()
        second = asyncio.create_task(token_manager.refresh_token())
        await drain()

        first.cancel()
        with pytest.raises(asyncio.CancelledError):
            await first
        assert token_manager.is_refreshing is True

        gate.set()
        state = await second

        assert state.access_token == "new-token"
        handler.assert_awaited_once_with("refresh-1")
        assert token_manager.is_refreshing is False

    @pytest.mark.asyncio
    async def test_destroy_during_refresh_rejects_callers(self, token_manager) -> None:
        """destroy() should cancel the refresh and reject its callers with AuthError."""
        gate = asyncio.Event()

        async def gated(refresh_token):
            await gate.wait()
            return token_payload()

        token_manager.set_refresh_handler(gated)
        callers = [asyncio.create_task(token_manager.refresh_token()) for _ in range(2)]
        await drain()
        waiter = token_manager.add_to_queue(RequestDescriptor(url="/a"))

        token_manager.destroy()

        for caller in callers:
            with pytest.raises(AuthError):
                await caller
        with pytest.raises(AuthError):
            await waiter
        assert token_manager.is_refreshing is False
        assert token_manager.get_token() == "old-token"


class TestWaiterQueue:
    """Tests for add_to_queue and queue settlement."""

    @pytest.mark.asyncio
    async def test_waiters_resolved_in_order(self, token_manager) -> None:
        gate = asyncio.Event()

        async def gated(refresh_token):
            await gate.wait()
            return token_payload()

        token_manager.set_refresh_handler(gated)
        refresh = asyncio.create_task(token_manager.refresh_token())
        await drain()

        order = []
        waiters = []
        for url in ("/a", "/b", "/c"):
            future = token_manager.add_to_queue(RequestDescriptor(url=url))
            future.add_done_callback(lambda f: order.append(f.result().url))
            waiters.append(future)
        assert token_manager.queue_size == 3

        gate.set()
        await refresh
        descriptors = await asyncio.gather(*waiters)
        await drain()

        assert order == ["/a", "/b", "/c"]
        assert all(d.token_refreshed for d in descriptors)
        assert token_manager.queue_size == 0

    @pytest.mark.asyncio
    async def test_waiters_rejected_on_failure(self, token_manager, refresh_handler) -> None:
        gate = asyncio.Event()

        async def gated(refresh_token):
            await gate.wait()
            raise RuntimeError("down")

        token_manager.set_refresh_handler(gated)
        refresh = asyncio.create_task(token_manager.refresh_token())
        await drain()
        waiter = token_manager.add_to_queue(RequestDescriptor(url="/a"))

        gate.set()
        with pytest.raises(TokenRefreshError):
            await refresh
        with pytest.raises(TokenRefreshError):
            await waiter

    @pytest.mark.asyncio
    async def test_destroy_rejects_waiters(self, token_manager) -> None:
        waiter = token_manager.add_to_queue(RequestDescriptor(url="/a"))

        token_manager.destroy()

        with pytest.raises(AuthError):
            await waiter
        assert token_manager.queue_size == 0


class TestRedirect:
    """Tests for safe_redirect_to_login."""

    def test_debounced_within_window(self, token_manager, redirect_handler, clock) -> None:
        assert token_manager.safe_redirect_to_login() is True
        clock.advance(1)
        assert token_manager.safe_redirect_to_login() is False

        redirect_handler.assert_called_once()

    def test_allowed_again_after_window(self, token_manager, redirect_handler, clock) -> None:
        token_manager.safe_redirect_to_login()
        clock.advance(3.0)
        token_manager.safe_redirect_to_login()

        assert redirect_handler.call_count == 2

    def test_failing_handler_releases_guard(self, token_manager, redirect_handler) -> None:
        """A redirect that raises should not block the next attempt."""
        redirect_handler.side_effect = [RuntimeError("navigation failed"), None]

        assert token_manager.safe_redirect_to_login() is True
        assert token_manager.safe_redirect_to_login() is True
        assert redirect_handler.call_count == 2

    def test_skipped_on_login_surface(self, token_store, clock) -> None:
        redirect = MagicMock()
        manager = TokenManager(
            store=token_store,
            redirect_handler=redirect,
            login_surface_check=lambda: True,
            clock=clock,
        )

        manager.safe_redirect_to_login()

        redirect.assert_not_called()


class TestLifecycle:
    """Tests for app resume, destroy and events."""

    @pytest.mark.asyncio
    async def test_resume_refreshes_expiring_token(
        self, token_manager, clock, refresh_handler
    ) -> None:
        clock.advance(3600 - 10)

        assert await token_manager.check_on_app_resume() is True
        refresh_handler.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_resume_with_valid_token(self, token_manager, refresh_handler) -> None:
        assert await token_manager.check_on_app_resume() is True
        refresh_handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_resume_refresh_failure(self, token_manager, clock, refresh_handler) -> None:
        refresh_handler.side_effect = RuntimeError("down")
        clock.advance(4000)

        assert await token_manager.check_on_app_resume() is False

    def test_destroy_resets_redirect_guard(self, token_manager, redirect_handler) -> None:
        token_manager.safe_redirect_to_login()
        token_manager.destroy()
        token_manager.safe_redirect_to_login()

        assert redirect_handler.call_count == 2

    @pytest.mark.asyncio
    async def test_events_emitted(self, token_manager) -> None:
        events = []
        unsubscribe = token_manager.on(lambda event: events.append(event.type))

        await token_manager.refresh_token()
        unsubscribe()
        await token_manager.refresh_token()

        assert events == [TokenEventType.REFRESH_START, TokenEventType.REFRESH_SUCCESS]

    @pytest.mark.asyncio
    async def test_failure_and_redirect_events(self, token_manager, refresh_handler) -> None:
        events = []
        token_manager.on(lambda event: events.append(event.type))
        refresh_handler.side_effect = RuntimeError("down")

        with pytest.raises(TokenRefreshError):
            await token_manager.refresh_token()

        assert events == [
            TokenEventType.REFRESH_START,
            TokenEventType.REDIRECT,
            TokenEventType.REFRESH_FAILURE,
        ]

    def test_listener_errors_ignored(self, token_manager, redirect_handler) -> None:
        def broken(event):
            raise RuntimeError("listener bug")

        token_manager.on(broken)
        token_manager.safe_redirect_to_login()

        redirect_handler.assert_called_once()
