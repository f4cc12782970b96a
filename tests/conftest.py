"""
Shared fixtures for fetch_orchestrator tests.
"""
import asyncio
from typing import Any, List, Optional, Union
from unittest.mock import AsyncMock, MagicMock

import pytest

from fetch_orchestrator.auth.token_manager import TokenManager
from fetch_orchestrator.config import ClientConfig, TokenConfig
from fetch_orchestrator.core.dispatcher import RequestDispatcher
from fetch_orchestrator.errors import TransportError
from fetch_orchestrator.stores.memory import MemoryTokenStore
from fetch_orchestrator.types import RawResponse, RequestDescriptor, TransportFailureReason

BASE_URL = "https://api.example.com"
NOW = 1_700_000_000.0


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: float = NOW) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeHandle:
    """Transport handle settled by the test."""

    def __init__(self, descriptor: Any) -> None:
        self.descriptor = descriptor
        self.aborted = False
        self._future: "asyncio.Future[RawResponse]" = asyncio.get_running_loop().create_future()

    def abort(self) -> None:
        if self.aborted:
            return
        self.aborted = True
        if not self._future.done():
            self._future.set_exception(TransportError(TransportFailureReason.ABORTED))

    def succeed(self, status_code: int = 200, data: Any = None) -> None:
        self.respond(RawResponse(status_code=status_code, data=data))

    def fail(self, reason: TransportFailureReason = TransportFailureReason.NETWORK) -> None:
        self.respond(TransportError(reason))

    def respond(self, response: Union[RawResponse, TransportError]) -> None:
        if self._future.done():
            return
        if isinstance(response, TransportError):
            self._future.set_exception(response)
        else:
            self._future.set_result(response)

    async def _wait(self) -> RawResponse:
        result = await self._future
        if self.aborted:
            raise TransportError(TransportFailureReason.ABORTED)
        return result

    def __await__(self):
        return self._wait().__await__()


class FakeTransport:
    """
    Records issued requests. Queued responses are delivered in issue order;
    with an empty queue the handle stays pending until the test settles it.
    """

    def __init__(self, responses: Optional[List[Any]] = None) -> None:
        self.calls: List[RequestDescriptor] = []
        self.handles: List[FakeHandle] = []
        self.uploads: List[dict] = []
        self.upload_handles: List[FakeHandle] = []
        self._responses: List[Any] = list(responses or [])

    def queue(self, *responses: Any) -> None:
        self._responses.extend(responses)

    def issue(self, descriptor: RequestDescriptor) -> FakeHandle:
        handle = FakeHandle(descriptor)
        self.calls.append(descriptor)
        self.handles.append(handle)
        if self._responses:
            handle.respond(self._responses.pop(0))
        return handle

    def issue_upload(
        self,
        url,
        file_path,
        name="file",
        form_data=None,
        headers=None,
        timeout=None,
        on_progress=None,
    ):
        self.uploads.append(
            {
                "url": url,
                "file_path": file_path,
                "name": name,
                "form_data": form_data,
                "headers": headers,
                "timeout": timeout,
                "on_progress": on_progress,
            }
        )
        handle = FakeHandle(url)
        self.upload_handles.append(handle)
        if self._responses:
            handle.respond(self._responses.pop(0))
        return handle


def ok(data: Any = None, status_code: int = 200) -> RawResponse:
    return RawResponse(status_code=status_code, data=data)


def token_payload(access: str = "new-token", refresh: str = "refresh-2", ttl: float = 3600) -> dict:
    return {
        "accessToken": access,
        "refreshToken": refresh,
        "expiresTime": (NOW + ttl) * 1000,
        "userId": 42,
    }


async def drain(times: int = 20) -> None:
    """Let pending callbacks run."""
    for _ in range(times):
        await asyncio.sleep(0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def token_store() -> MemoryTokenStore:
    return MemoryTokenStore(
        {
            "token": "old-token",
            "refreshToken": "refresh-1",
            "expiresAt": NOW + 3600,
        }
    )


@pytest.fixture
def refresh_handler() -> AsyncMock:
    return AsyncMock(return_value=token_payload())


@pytest.fixture
def redirect_handler() -> MagicMock:
    return MagicMock()


@pytest.fixture
def token_manager(token_store, clock, refresh_handler, redirect_handler) -> TokenManager:
    return TokenManager(
        store=token_store,
        config=TokenConfig(enable_auto_refresh=True, buffer_seconds=300, redirect_delay=3.0),
        refresh_handler=refresh_handler,
        redirect_handler=redirect_handler,
        clock=clock,
    )


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def feedback() -> MagicMock:
    return MagicMock()


@pytest.fixture
def client_config() -> ClientConfig:
    return ClientConfig(base_url=BASE_URL, retry_delay=0)


@pytest.fixture
def dispatcher(transport, token_manager, client_config, feedback) -> RequestDispatcher:
    return RequestDispatcher(transport, token_manager, client_config, feedback=feedback)
