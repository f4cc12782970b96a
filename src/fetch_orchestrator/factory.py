"""
Factory functions wiring a complete client.
"""
from typing import Any, Callable, Optional

import httpx

from .api import create_refresh_handler
from .auth.token_manager import TokenManager
from .core.dispatcher import RequestDispatcher
from .core.feedback import ConsoleFeedback
from .core.interceptors import InterceptorPipeline
from .settings import Settings, get_settings
from .stores.memory import MemoryTokenStore
from .transport.httpx_transport import HttpxTransport
from .types import Feedback, TokenStore, Transport
from .uploads import FileUploader


def create_client(
    settings: Optional[Settings] = None,
    *,
    transport: Optional[Transport] = None,
    httpx_client: Optional[httpx.AsyncClient] = None,
    token_store: Optional[TokenStore] = None,
    feedback: Optional[Feedback] = None,
    redirect_handler: Optional[Callable[[], Any]] = None,
    login_surface_check: Optional[Callable[[], bool]] = None,
) -> RequestDispatcher:
    """
    Create a dispatcher with a token manager, pipeline and default refresh handler.

    Args:
        settings: Settings to use (default: from environment)
        transport: Transport to use (default: HttpxTransport)
        httpx_client: httpx client for the default transport
        token_store: Token storage (default: in-memory)
        feedback: Loading/error renderer (default: Rich console)
        redirect_handler: Called to send the user to the login entry point
        login_surface_check: Returns True while the user is on the login surface

    Example:
        http = create_client(token_store=FileTokenStore("token.json"))
        info = await http.get("/api/user/info")
    """
    settings = settings or get_settings()
    client_config = settings.to_client_config()

    if transport is None:
        transport = HttpxTransport(httpx_client=httpx_client, timeout=settings.TIMEOUT)

    token_manager = TokenManager(
        store=token_store or MemoryTokenStore(),
        config=settings.to_token_config(),
        redirect_handler=redirect_handler,
        login_surface_check=login_surface_check,
    )
    pipeline = InterceptorPipeline(token_manager, client_config)
    token_manager.set_refresh_handler(create_refresh_handler(transport, pipeline))

    return RequestDispatcher(
        transport,
        token_manager,
        client_config,
        feedback=feedback if feedback is not None else ConsoleFeedback(),
        pipeline=pipeline,
    )


def create_uploader(
    http: RequestDispatcher,
    feedback: Optional[Feedback] = None,
) -> FileUploader:
    """Create a FileUploader sharing the dispatcher's pipeline and transport."""
    return FileUploader(
        http.pipeline,
        http.transport,
        feedback=feedback,
        error_throttle_seconds=http.config.error_throttle_seconds,
    )
