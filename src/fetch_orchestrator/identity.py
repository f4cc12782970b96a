"""
Request identity (fingerprint) generation.

Two descriptors with the same method, URL and semantically equal body map
to the same identity regardless of key order.
"""
import json
from typing import Any, Optional

from .types import RequestDescriptor


def _json_default(value: Any) -> str:
    return str(value)


def _with_string_keys(value: Any) -> Any:
    # Keys are compared as their JSON object form, so 1 and "1" coincide.
    if isinstance(value, dict):
        return {str(k): _with_string_keys(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_with_string_keys(v) for v in value]
    return value


def canonicalize_body(data: Any) -> str:
    """Serialize a body with object keys sorted at every level."""
    if not isinstance(data, (dict, list, tuple)):
        return str(data)
    return json.dumps(
        _with_string_keys(data),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=_json_default,
    )


def generate_request_id(
    descriptor: Optional[RequestDescriptor] = None,
    *,
    url: Optional[str] = None,
    method: Optional[str] = None,
    data: Any = None,
) -> str:
    """
    Build the identity string ``METHOD_URL_canonicalBody``.

    Example:
        generate_request_id(url="/api/user/info")
        # 'GET_/api/user/info_None'
    """
    if descriptor is not None:
        url, method, data = descriptor.url, descriptor.method, descriptor.data
    safe_method = (method or "GET").upper()
    return f"{safe_method}_{url}_{canonicalize_body(data)}"
