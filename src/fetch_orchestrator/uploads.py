"""
File uploads through the outbound interceptor pipeline.

Supports single uploads and batched uploads with bounded concurrency.
"""
import asyncio
import functools
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from .core.feedback import ErrorThrottle, LoadingTracker, NullFeedback
from .core.interceptors import InterceptorPipeline
from .errors import (
    BusinessError,
    CancellationError,
    HttpError,
    InterceptorError,
    NetworkError,
    RequestError,
    TransportError,
)
from .types import (
    Feedback,
    RequestDescriptor,
    TransportFailureReason,
    UploadProgress,
    UploadProgressCallback,
)

logger = logging.getLogger(__name__)

UPLOAD_SUCCESS_CODES = (0, 200)
DEFAULT_UPLOAD_URL = "/api/upload"
DEFAULT_UPLOAD_TIMEOUT = 30.0


@dataclass
class UploadOutcome:
    """Result for one file of a batch."""

    index: int
    file: Any
    result: Optional[Dict[str, Any]] = None
    error: Optional[Exception] = None


@dataclass
class BatchUploadResult:
    """Aggregate result of upload_batch."""

    success: List[UploadOutcome] = field(default_factory=list)
    failed: List[UploadOutcome] = field(default_factory=list)
    total: int = 0

    @property
    def success_count(self) -> int:
        return len(self.success)

    @property
    def failed_count(self) -> int:
        return len(self.failed)


class FileUploader:
    """Multipart uploads sharing the request pipeline's URL and header rules."""

    def __init__(
        self,
        pipeline: InterceptorPipeline,
        transport: Any,
        feedback: Optional[Feedback] = None,
        error_throttle_seconds: float = 1.5,
    ) -> None:
        if not hasattr(transport, "issue_upload"):
            raise TypeError("transport does not support uploads (missing issue_upload)")
        self._pipeline = pipeline
        self._transport = transport
        feedback = feedback or NullFeedback()
        self._loading = LoadingTracker(
            feedback.show_loading, feedback.hide_loading, default_text="Uploading..."
        )
        self._errors = ErrorThrottle(feedback.show_error, window_seconds=error_throttle_seconds)

    async def upload(
        self,
        file_path: Union[str, Path],
        url: str = DEFAULT_UPLOAD_URL,
        name: str = "file",
        form_data: Optional[Dict[str, Any]] = None,
        loading: bool = True,
        loading_text: Optional[str] = None,
        show_error: bool = True,
        timeout: float = DEFAULT_UPLOAD_TIMEOUT,
        on_progress: Optional[UploadProgressCallback] = None,
    ) -> Dict[str, Any]:
        """
        Upload a single file.

        ``on_progress`` is called with an UploadProgress as the body is sent.

        Returns ``{"code": 0, "data": ..., "msg": "success"}`` where data is
        the envelope's ``data`` or ``url`` field.
        """
        try:
            processed = await self._pipeline.process_request(
                RequestDescriptor(url=url, method="POST")
            )
        except Exception as e:
            error = InterceptorError("Upload request configuration error", data={"error": str(e)})
            if show_error:
                self._errors.show(error.message)
            raise error from e

        if loading:
            self._loading.acquire(loading_text)
        try:
            handle = self._transport.issue_upload(
                processed.url,
                file_path,
                name=name,
                form_data=form_data,
                headers=processed.header,
                timeout=timeout,
                on_progress=on_progress,
            )
            try:
                raw = await handle
            except TransportError as e:
                raise _upload_transport_error(e) from e
            return _normalize_upload_response(raw.status_code, raw.data)
        except RequestError as error:
            if show_error and not error.silent:
                self._errors.show(error.message)
            raise
        finally:
            if loading:
                self._loading.release()

    async def upload_batch(
        self,
        files: Sequence[Any],
        concurrency: int = 3,
        on_file_complete: Optional[Callable[[int, Dict[str, Any]], None]] = None,
        on_progress: Optional[Callable[[int, UploadProgress], None]] = None,
        **options: Any,
    ) -> BatchUploadResult:
        """
        Upload files in chunks of ``concurrency``; failures do not stop the batch.

        Each item is a path or a mapping with a ``file_path`` (or ``url``) key.
        ``on_progress`` receives the file index with each UploadProgress.
        """
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")

        result = BatchUploadResult(total=len(files))

        async def _one(index: int, file: Any) -> UploadOutcome:
            if isinstance(file, dict):
                path = file.get("file_path") or file.get("url")
            else:
                path = file
            opts = {"loading_text": f"Uploading {index + 1}/{len(files)}", **options}
            if on_progress is not None:
                opts["on_progress"] = functools.partial(on_progress, index)
            try:
                uploaded = await self.upload(path, **opts)
            except Exception as e:
                if on_file_complete:
                    on_file_complete(index, {"success": False, "error": e})
                return UploadOutcome(index=index, file=file, error=e)
            if on_file_complete:
                on_file_complete(index, {"success": True, "result": uploaded})
            return UploadOutcome(index=index, file=file, result=uploaded)

        for start in range(0, len(files), concurrency):
            batch = files[start:start + concurrency]
            outcomes = await asyncio.gather(
                *(_one(start + offset, file) for offset, file in enumerate(batch))
            )
            for outcome in outcomes:
                if outcome.error is None:
                    result.success.append(outcome)
                else:
                    result.failed.append(outcome)

        logger.debug(
            f"FileUploader.upload_batch: {result.success_count}/{result.total} succeeded"
        )
        return result


def _upload_transport_error(error: TransportError) -> RequestError:
    if error.reason == TransportFailureReason.ABORTED:
        return CancellationError("Upload cancelled")
    if error.reason == TransportFailureReason.TIMEOUT:
        return NetworkError("Upload timed out", reason=error.reason)
    return NetworkError("Network error", reason=error.reason)


def _normalize_upload_response(status_code: int, body: Any) -> Dict[str, Any]:
    if status_code != 200:
        raise HttpError(status_code, f"HTTP status error: {status_code}")

    if isinstance(body, (str, bytes)):
        try:
            body = json.loads(body)
        except ValueError as e:
            raise BusinessError("Response is not valid JSON", data={"error": str(e)}) from e

    code = body.get("code") if isinstance(body, dict) else None
    if code in UPLOAD_SUCCESS_CODES:
        return {
            "code": 0,
            "data": body.get("data") or body.get("url"),
            "msg": "success",
        }

    message = (body.get("msg") if isinstance(body, dict) else None) or f"Business error: {code}"
    raise BusinessError(message, code=code, data=body)
