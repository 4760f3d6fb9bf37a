"""
Request builder utilities for callapi.
"""
import logging
from typing import Any, Dict, Mapping, Optional, Union
from urllib.parse import urlencode, urljoin, urlparse

from ..config import ResolvedOptions
from ..errors import SerializationError
from ..types import RequestDescriptor, TransportRequest

logger = logging.getLogger("callapi.request_builder")


def build_url(
    base_url: str,
    path: str,
    query: Optional[Mapping[str, Any]] = None,
) -> str:
    """Build full URL from base and path."""
    if path.startswith(("http://", "https://")):
        url = path
    elif not base_url:
        url = path
    elif path.startswith("/"):
        # Keep the base path; only scheme and host come from urlparse
        parsed = urlparse(base_url)
        base_path = parsed.path.rstrip("/")
        url = f"{parsed.scheme}://{parsed.netloc}{base_path}{path}"
    elif path:
        # urljoin replaces the last segment unless the base ends with /
        if not base_url.endswith("/"):
            base_url = base_url + "/"
        url = urljoin(base_url, path)
    else:
        url = base_url

    if query:
        query_str = urlencode({k: _query_value(v) for k, v in query.items() if v is not None})
        if query_str:
            separator = "&" if "?" in url else "?"
            url = f"{url}{separator}{query_str}"

    return url


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def build_headers(
    base_headers: Optional[Mapping[str, str]] = None,
    headers: Optional[Mapping[str, str]] = None,
    body: Any = None,
) -> Dict[str, str]:
    """Build request headers: client headers, then call headers, then defaults."""
    result: Dict[str, str] = dict(base_headers or {})

    if headers:
        lowered = {k.lower() for k in headers}
        result = {k: v for k, v in result.items() if k.lower() not in lowered}
        result.update(headers)

    present = {k.lower() for k in result}

    # Set content-type for structured bodies
    if isinstance(body, (dict, list)) and "content-type" not in present:
        result["content-type"] = "application/json"

    if "accept" not in present:
        result["accept"] = "application/json"

    return result


def serialize_body(body: Any, options: Optional[ResolvedOptions] = None) -> Optional[bytes]:
    """
    Turn the descriptor body into wire bytes.

    ``str`` and ``bytes`` pass through; anything else goes through the
    configured body serializer (JSON by default).

    Raises:
        SerializationError: When the serializer fails
    """
    if body is None:
        return None
    if isinstance(body, (bytes, bytearray)):
        return bytes(body)
    if isinstance(body, str):
        return body.encode("utf-8")

    serializer = options.body_serializer if options is not None else None
    if serializer is None:
        raise SerializationError(f"No body serializer for {type(body).__name__}")

    try:
        serialized = serializer(body)
    except Exception as e:
        raise SerializationError(f"Failed to serialize request body: {e}", cause=e) from e

    if isinstance(serialized, str):
        return serialized.encode("utf-8")
    return bytes(serialized)


def to_transport_request(request: RequestDescriptor) -> TransportRequest:
    """Build the wire-ready request for one attempt."""
    return TransportRequest(
        method=request.method,
        url=request.url,
        headers=dict(request.headers),
        content=serialize_body(request.body, request.options),
    )


def create_descriptor(
    base_url: str,
    path: str,
    options: ResolvedOptions,
    base_headers: Optional[Mapping[str, str]] = None,
    headers: Optional[Mapping[str, str]] = None,
    query: Optional[Mapping[str, Any]] = None,
    body: Any = None,
    signal: Any = None,
) -> RequestDescriptor:
    """Create the request descriptor of one call."""
    url = build_url(base_url, path, query)
    logger.debug(f"create_descriptor: method={options.method}, path={path}, url={url}")

    return RequestDescriptor(
        url=url,
        method=options.method,
        headers=build_headers(base_headers, headers, body),
        body=body,
        signal=signal,
        options=options,
    )


def parse_body(content: bytes, text: str, options: ResolvedOptions) -> Union[Any, str, bytes]:
    """
    Parse a response body according to ``response_type``.

    An empty JSON body parses to None.

    Raises:
        SerializationError: When the parser fails
    """
    if options.response_type == "bytes":
        return content
    if options.response_type == "text":
        return text
    if not text.strip():
        return None

    try:
        return options.response_parser(text)
    except Exception as e:
        raise SerializationError(f"Failed to parse response body: {e}", cause=e) from e
