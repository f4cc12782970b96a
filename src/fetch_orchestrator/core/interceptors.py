"""
Interceptor pipeline: outbound descriptor transform and inbound response
classification.
"""
import logging
from typing import Any, Dict, Optional

from ..auth.token_manager import TokenManager
from ..config import ClientConfig, merge_client_config
from ..errors import BusinessError, HttpError
from ..types import InboundKind, InboundResult, RawResponse, RequestDescriptor

logger = logging.getLogger(__name__)

ENVELOPE_SUCCESS_CODE = 0
ENVELOPE_UNAUTHORIZED_CODE = 401


def build_url(base_url: str, url: str) -> str:
    """Prefix relative URLs with the base URL."""
    if url.startswith("http") or not base_url:
        return url
    if url.startswith("/"):
        return base_url.rstrip("/") + url
    return f"{base_url.rstrip('/')}/{url}"


class InterceptorPipeline:
    """Outbound and inbound request transforms."""

    def __init__(
        self,
        token_manager: TokenManager,
        config: Optional[ClientConfig] = None,
    ) -> None:
        self._token_manager = token_manager
        self._config = merge_client_config(config)

    @property
    def config(self) -> ClientConfig:
        return self._config

    def is_skip_token_check(self, url: str) -> bool:
        return any(fragment in url for fragment in self._config.skip_token_urls)

    def build_headers(self, header: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        """Default tenant and content headers; caller headers win."""
        result = {
            "tenant-id": self._config.tenant_id or "1",
            "login_user_type": self._config.login_user_type or "3",
            "Content-Type": self._config.content_type,
        }
        if header:
            result.update(header)
        return result

    async def process_request(self, descriptor: RequestDescriptor) -> RequestDescriptor:
        """
        Produce the final descriptor for the transport.

        Only adds and defaults fields. A missing or failing token lookup is
        not fatal: the request proceeds unauthenticated.
        """
        url = build_url(self._config.base_url, descriptor.url)
        headers = self.build_headers(descriptor.header)

        if not self.is_skip_token_check(url):
            try:
                token = await self._token_manager.get_valid_token()
            except Exception as e:
                logger.warning(f"InterceptorPipeline: token lookup failed: {e}")
                token = None
            if token:
                headers["Authorization"] = f"Bearer {token}"

        return descriptor.evolve(
            url=url,
            method=(descriptor.method or "GET").upper(),
            header=headers,
            timeout=descriptor.timeout if descriptor.timeout is not None else self._config.timeout,
        )

    def process_response(self, response: RawResponse) -> InboundResult:
        """Classify a raw transport response."""
        status = response.status_code
        data = response.data

        if status < 200 or status >= 300:
            if status == 401:
                return InboundResult(kind=InboundKind.REFRESH)
            return InboundResult(kind=InboundKind.FAILURE, error=HttpError(status))

        if isinstance(data, dict) and "code" in data:
            code = data["code"]
            if code == ENVELOPE_SUCCESS_CODE:
                return InboundResult(kind=InboundKind.SUCCESS, data=data)
            if code == ENVELOPE_UNAUTHORIZED_CODE:
                return InboundResult(kind=InboundKind.REFRESH)
            return InboundResult(
                kind=InboundKind.FAILURE,
                error=_business_error(data),
            )

        return InboundResult(kind=InboundKind.SUCCESS, data=data)


def _business_error(body: Dict[str, Any]) -> BusinessError:
    message = body.get("msg") or body.get("message") or "Request failed"
    return BusinessError(message, code=body["code"], data=body.get("data"))
