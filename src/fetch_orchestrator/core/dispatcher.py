"""
Request dispatcher: the orchestrator.

Per call: BUILDING -> IN_FLIGHT -> SETTLED, or
BUILDING -> IN_FLIGHT -> REFRESH_PENDING -> RETRYING -> SETTLED.
Every call settles exactly once.
"""
import asyncio
import logging
from typing import Any, List, Optional

from ..auth.token_manager import TokenManager
from ..config import ClientConfig, DuplicatePolicy, merge_client_config
from ..errors import (
    AuthError,
    CancellationError,
    DuplicateRequestError,
    InterceptorError,
    NetworkError,
    RequestError,
    RetryExhaustedError,
    SESSION_EXPIRED_MESSAGE,
    TIMEOUT_MESSAGE,
    TransportError,
    UNAUTHORIZED_MESSAGE,
)
from ..identity import generate_request_id
from ..types import (
    Feedback,
    InboundKind,
    RequestDescriptor,
    Transport,
    TransportFailureReason,
)
from .feedback import ErrorThrottle, LoadingTracker, NullFeedback
from .interceptors import InterceptorPipeline
from .registry import InFlightEntry, RequestRegistry

logger = logging.getLogger(__name__)


class RequestDispatcher:
    """
    Issues requests with dedup, cancellation and transparent token refresh.

    Example:
        async with RequestDispatcher(transport, token_manager, config) as http:
            info = await http.get("/api/user/info")
            await http.post("/api/user/update", {"nickname": "kit"})
    """

    def __init__(
        self,
        transport: Transport,
        token_manager: TokenManager,
        config: Optional[ClientConfig] = None,
        feedback: Optional[Feedback] = None,
        registry: Optional[RequestRegistry] = None,
        pipeline: Optional[InterceptorPipeline] = None,
    ) -> None:
        self._config = merge_client_config(config)
        self._transport = transport
        self._token_manager = token_manager
        self._pipeline = pipeline or InterceptorPipeline(token_manager, self._config)
        self._registry = registry or RequestRegistry()

        feedback = feedback or NullFeedback()
        self._feedback = feedback
        self._loading = LoadingTracker(
            feedback.show_loading,
            feedback.hide_loading,
            default_text=self._config.default_loading_text,
        )
        self._errors = ErrorThrottle(
            feedback.show_error,
            window_seconds=self._config.error_throttle_seconds,
        )
        self._closed = False

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def registry(self) -> RequestRegistry:
        return self._registry

    @property
    def token_manager(self) -> TokenManager:
        return self._token_manager

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def pipeline(self) -> InterceptorPipeline:
        return self._pipeline

    @property
    def loading_count(self) -> int:
        return self._loading.count

    # === Public API ===

    async def request(
        self,
        descriptor: Optional[RequestDescriptor] = None,
        **fields: Any,
    ) -> Any:
        """
        Dispatch a request and return the normalized body.

        Accepts either a RequestDescriptor or its fields as keywords.
        Raises a RequestError subclass on failure.
        """
        if self._closed:
            raise RuntimeError("Dispatcher has been closed")
        if descriptor is None:
            descriptor = RequestDescriptor(**fields)
        elif fields:
            descriptor = descriptor.evolve(**fields)

        try:
            return await self._dispatch(descriptor, retry_count=0)
        except RequestError as error:
            if descriptor.show_error and not error.silent:
                self._errors.show(error.message)
            raise

    async def get(self, url: str, data: Any = None, **options: Any) -> Any:
        """GET request."""
        return await self.request(url=url, method="GET", data=data, **options)

    async def post(self, url: str, data: Any = None, **options: Any) -> Any:
        """POST request."""
        return await self.request(url=url, method="POST", data=data, **options)

    async def put(self, url: str, data: Any = None, **options: Any) -> Any:
        """PUT request."""
        return await self.request(url=url, method="PUT", data=data, **options)

    async def delete(self, url: str, data: Any = None, **options: Any) -> Any:
        """DELETE request."""
        return await self.request(url=url, method="DELETE", data=data, **options)

    def cancel_request(self, identity: str) -> bool:
        """Abort the in-flight request with this identity."""
        return self._registry.cancel(identity)

    def cancel_all_requests(self) -> List[str]:
        return self._registry.cancel_all()

    def cancel_requests_by_url_fragment(self, fragment: str) -> List[str]:
        return self._registry.cancel_by_url_substring(fragment)

    async def generate_request_id(self, descriptor: RequestDescriptor) -> str:
        """Identity of a descriptor after the outbound pipeline has run."""
        processed = await self._pipeline.process_request(descriptor)
        return generate_request_id(processed)

    async def close(self) -> None:
        """Abort everything in flight and close the transport if it supports it."""
        self._closed = True
        self._registry.cancel_all()
        aclose = getattr(self._transport, "aclose", None)
        if aclose is not None:
            await aclose()

    async def __aenter__(self) -> "RequestDispatcher":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # === Dispatch ===

    async def _dispatch(self, descriptor: RequestDescriptor, retry_count: int) -> Any:
        try:
            processed = await self._pipeline.process_request(descriptor)
        except RequestError:
            raise
        except Exception as e:
            logger.error(f"RequestDispatcher: outbound pipeline failed: {e}")
            raise InterceptorError(data={"error": str(e)}) from e

        identity = generate_request_id(processed)

        if descriptor.cancel_previous and not descriptor.token_refreshed:
            self._registry.cancel(identity)

        if self._registry.is_pending(identity):
            if descriptor.token_refreshed:
                # A newer identical call went out while the token was refreshed.
                logger.debug(f"RequestDispatcher: retry joining in-flight {identity}")
                return await self._registry.join(identity)
            return await self._handle_duplicate(identity)

        entry = self._registry.mark_pending(identity)
        try:
            result = await self._send(descriptor, processed, entry, retry_count)
        except BaseException as error:
            self._fan_out(entry, error=error)
            raise
        self._fan_out(entry, result=result)
        return result

    async def _handle_duplicate(self, identity: str) -> Any:
        if self._config.duplicate_policy == DuplicatePolicy.REJECT:
            logger.debug(f"RequestDispatcher: rejecting duplicate {identity}")
            raise DuplicateRequestError(f"Duplicate request in flight: {identity}")
        logger.debug(f"RequestDispatcher: joining in-flight {identity}")
        return await self._registry.join(identity)

    async def _send(
        self,
        descriptor: RequestDescriptor,
        processed: RequestDescriptor,
        entry: InFlightEntry,
        retry_count: int,
    ) -> Any:
        if descriptor.loading:
            self._loading.acquire(descriptor.loading_text)
        handle = None
        try:
            try:
                handle = self._transport.issue(processed)
                self._registry.register_handle(entry, handle)
                raw = await handle
            except asyncio.CancelledError:
                if handle is not None:
                    handle.abort()
                raise
            finally:
                self._registry.settle(entry)
        except TransportError as error:
            raise self._transport_failure(entry.identity, error) from error
        finally:
            if descriptor.loading:
                self._loading.release()

        outcome = self._pipeline.process_response(raw)
        if outcome.kind == InboundKind.SUCCESS:
            return outcome.data
        if outcome.kind == InboundKind.REFRESH:
            return await self._refresh_and_retry(descriptor, retry_count)
        raise outcome.error

    def _transport_failure(self, identity: str, error: TransportError) -> RequestError:
        if error.reason == TransportFailureReason.ABORTED:
            logger.debug(f"RequestDispatcher: request cancelled {identity}")
            return CancellationError()
        if error.reason == TransportFailureReason.TIMEOUT:
            return NetworkError(TIMEOUT_MESSAGE, reason=error.reason, data={"error": str(error)})
        return NetworkError(reason=error.reason, data={"error": str(error)})

    async def _refresh_and_retry(self, descriptor: RequestDescriptor, retry_count: int) -> Any:
        manager = self._token_manager

        if retry_count >= self._config.max_retry_count:
            logger.warning(f"RequestDispatcher: retry limit reached for {descriptor.url}")
            raise RetryExhaustedError()

        if not manager.get_refresh_token() or not manager.config.enable_auto_refresh:
            manager.safe_redirect_to_login()
            raise AuthError(UNAUTHORIZED_MESSAGE)

        try:
            if manager.is_refreshing:
                retry_descriptor = await manager.add_to_queue(descriptor)
            else:
                await manager.refresh_token()
                retry_descriptor = descriptor.with_token_refreshed()
        except Exception as e:
            manager.safe_redirect_to_login()
            raise AuthError(SESSION_EXPIRED_MESSAGE, data={"error": str(e)}) from e

        await asyncio.sleep(self._config.retry_delay)
        return await self._dispatch(retry_descriptor, retry_count + 1)

    def _fan_out(
        self,
        entry: InFlightEntry,
        result: Any = None,
        error: Optional[BaseException] = None,
    ) -> None:
        for future in entry.joiners:
            if future.done():
                continue
            if error is None:
                future.set_result(result)
            elif isinstance(error, asyncio.CancelledError):
                # The leader's caller was cancelled, not the joiners.
                future.set_exception(CancellationError())
            else:
                future.set_exception(error)
        entry.joiners.clear()
