"""
Default transport using httpx.

Each issued request runs as an asyncio task wrapped in a TransportHandle.
Aborting a handle cancels the task, and awaiting an aborted handle always
raises TransportError(ABORTED), even when the response arrived first.
"""
import asyncio
import json
import logging
import mimetypes
import os
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Dict, Optional, Union

import httpx

from ..errors import TransportError
from ..types import (
    RawResponse,
    RequestDescriptor,
    TransportFailureReason,
    UploadProgress,
    UploadProgressCallback,
)

logger = logging.getLogger(__name__)

QUERY_METHODS = ("GET", "DELETE", "HEAD", "OPTIONS")


def _is_ssl_verify_disabled_by_env() -> bool:
    """
    Check if SSL verification is disabled via environment variables.

    Returns True if any of these are set:
    - NODE_TLS_REJECT_UNAUTHORIZED=0
    - SSL_CERT_VERIFY=0
    """
    node_tls = os.environ.get("NODE_TLS_REJECT_UNAUTHORIZED", "")
    ssl_cert_verify = os.environ.get("SSL_CERT_VERIFY", "")
    return node_tls == "0" or ssl_cert_verify == "0"


def _decode_body(response: httpx.Response) -> Any:
    text = response.text
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text


class _ProgressStream(httpx.AsyncByteStream):
    """Request body stream reporting bytes sent to a callback."""

    def __init__(
        self,
        stream: httpx.AsyncByteStream,
        total: int,
        on_progress: UploadProgressCallback,
    ) -> None:
        self._stream = stream
        self._total = total
        self._on_progress = on_progress

    async def __aiter__(self) -> AsyncIterator[bytes]:
        sent = 0
        async for chunk in self._stream:
            sent += len(chunk)
            self._report(sent)
            yield chunk
        if not self._total:
            # Unknown length: report completion once the body is exhausted.
            self._total = sent
            self._report(sent)

    def _report(self, sent: int) -> None:
        percent = min(100, sent * 100 // self._total) if self._total else 0
        progress = UploadProgress(
            progress=percent,
            total_bytes_sent=sent,
            total_bytes_expected=self._total,
        )
        try:
            self._on_progress(progress)
        except Exception as e:
            logger.debug(f"HttpxTransport: upload progress callback error ignored: {e}")


class TransportHandle:
    """Awaitable, cancellable in-flight transport operation."""

    def __init__(self, operation: Awaitable[RawResponse], label: str = "") -> None:
        self._task: "asyncio.Task[RawResponse]" = asyncio.ensure_future(operation)
        self._aborted = False
        self._label = label

    @property
    def aborted(self) -> bool:
        return self._aborted

    def abort(self) -> None:
        if self._aborted:
            return
        self._aborted = True
        self._task.cancel()
        logger.debug(f"TransportHandle: abort {self._label}")

    async def _wait(self) -> RawResponse:
        try:
            result = await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if self._aborted or self._task.cancelled():
                raise TransportError(TransportFailureReason.ABORTED, "request:fail abort")
            # The awaiting caller was cancelled; the request goes down with it.
            self.abort()
            raise
        if self._aborted:
            raise TransportError(TransportFailureReason.ABORTED, "request:fail abort")
        return result

    def __await__(self):
        return self._wait().__await__()


class HttpxTransport:
    """Transport backed by an httpx.AsyncClient."""

    def __init__(
        self,
        httpx_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ) -> None:
        self._owns_client = httpx_client is None
        if httpx_client is not None:
            self._client = httpx_client
        else:
            # NODE_TLS_REJECT_UNAUTHORIZED=0 or SSL_CERT_VERIFY=0 disables verification
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(timeout),
                verify=not _is_ssl_verify_disabled_by_env(),
            )

    def issue(self, descriptor: RequestDescriptor) -> TransportHandle:
        """Start the request and return its handle."""
        label = f"{descriptor.method} {descriptor.url}"
        return TransportHandle(self._perform(descriptor), label=label)

    def issue_upload(
        self,
        url: str,
        file_path: Union[str, Path],
        name: str = "file",
        form_data: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        on_progress: Optional[UploadProgressCallback] = None,
    ) -> TransportHandle:
        """
        Start a multipart file upload and return its handle.

        ``on_progress`` receives an UploadProgress each time a chunk of the
        request body is handed to the connection.
        """
        return TransportHandle(
            self._perform_upload(
                url, Path(file_path), name, form_data, headers, timeout, on_progress
            ),
            label=f"UPLOAD {url}",
        )

    async def _perform(self, descriptor: RequestDescriptor) -> RawResponse:
        method = (descriptor.method or "GET").upper()
        kwargs: Dict[str, Any] = {}
        if descriptor.data is not None:
            if method in QUERY_METHODS and isinstance(descriptor.data, dict):
                kwargs["params"] = descriptor.data
            else:
                kwargs["json"] = descriptor.data

        logger.debug(f"HttpxTransport: {method} {descriptor.url}")
        response = await self._send(
            self._client.request(
                method,
                descriptor.url,
                headers=descriptor.header,
                timeout=self._timeout_for(descriptor.timeout),
                **kwargs,
            )
        )
        return RawResponse(
            status_code=response.status_code,
            data=_decode_body(response),
            headers=dict(response.headers),
        )

    async def _perform_upload(
        self,
        url: str,
        file_path: Path,
        name: str,
        form_data: Optional[Dict[str, Any]],
        headers: Optional[Dict[str, str]],
        timeout: Optional[float],
        on_progress: Optional[UploadProgressCallback] = None,
    ) -> RawResponse:
        # httpx sets the multipart boundary itself.
        upload_headers = {
            k: v for k, v in (headers or {}).items() if k.lower() != "content-type"
        }
        content_type = mimetypes.guess_type(file_path.name)[0] or "application/octet-stream"
        try:
            content = file_path.read_bytes()
        except OSError as e:
            raise TransportError(TransportFailureReason.NETWORK, str(e), cause=e) from e

        request = self._client.build_request(
            "POST",
            url,
            headers=upload_headers,
            data={k: str(v) for k, v in (form_data or {}).items()},
            files={name: (file_path.name, content, content_type)},
            timeout=self._timeout_for(timeout),
        )
        if on_progress is not None:
            total = int(request.headers.get("Content-Length", 0))
            request.stream = _ProgressStream(request.stream, total, on_progress)

        response = await self._send(self._client.send(request))
        return RawResponse(
            status_code=response.status_code,
            data=response.text,
            headers=dict(response.headers),
        )

    async def _send(self, pending: Awaitable[httpx.Response]) -> httpx.Response:
        try:
            return await pending
        except httpx.TimeoutException as e:
            raise TransportError(TransportFailureReason.TIMEOUT, "request:fail timeout", cause=e) from e
        except httpx.HTTPError as e:
            raise TransportError(TransportFailureReason.NETWORK, f"request:fail {e}", cause=e) from e

    def _timeout_for(self, timeout: Optional[float]) -> Any:
        if timeout is None:
            return httpx.USE_CLIENT_DEFAULT
        return httpx.Timeout(timeout)

    async def aclose(self) -> None:
        """Close the underlying client if this transport created it."""
        if self._owns_client:
            await self._client.aclose()
