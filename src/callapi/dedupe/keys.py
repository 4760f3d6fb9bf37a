"""
Deduplication key generation.

The default key is built from a normalized view of the request:

- method, upper-cased
- URL with its query parameters sorted
- headers with lower-cased names, sorted (optionally restricted to
  ``dedupe_header_keys``)
- body (bytes are hashed, everything else must be JSON serializable)
- response type

The normalized view is serialized with sorted keys and hashed with SHA-256,
so header insertion order and query order never change the key.
"""
import hashlib
import json
import logging
from typing import Any, Dict, Mapping, Optional, Sequence
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from ..types import RequestDescriptor

logger = logging.getLogger("callapi.dedupe.keys")


def normalize_url(url: str) -> str:
    """Return ``url`` with its query parameters sorted; unparseable URLs are returned as is."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    if not parts.query:
        return url
    query = urlencode(sorted(parse_qsl(parts.query, keep_blank_values=True)))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


def normalize_headers(
    headers: Optional[Mapping[str, str]],
    header_keys: Optional[Sequence[str]] = None,
) -> Dict[str, str]:
    """Lower-case header names, optionally keeping only ``header_keys``."""
    if not headers:
        return {}

    normalized = {str(k).lower(): str(v) for k, v in headers.items()}
    if header_keys is None:
        return dict(sorted(normalized.items()))

    wanted = {k.lower() for k in header_keys}
    return dict(sorted((k, v) for k, v in normalized.items() if k in wanted))


def _encode_body(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return {"__bytes_sha256__": hashlib.sha256(bytes(value)).hexdigest()}
    raise TypeError(f"Object of type {type(value).__name__} is not serializable for dedupe keys")


def target_key(request: RequestDescriptor) -> str:
    """Best-effort identity: method and target only."""
    return f"{request.method} {request.url}"


def generate_dedupe_key(
    request: RequestDescriptor,
    header_keys: Optional[Sequence[str]] = None,
) -> str:
    """
    Generate the default dedupe key for a request.

    Never raises: unserializable inputs fall back to ``target_key``.

    Args:
        request: The request descriptor
        header_keys: Restrict the headers taking part in the key

    Returns:
        Key string of the form ``"{METHOD} {url} {sha256}"``
    """
    options = request.options
    normalized = {
        "method": request.method,
        "url": normalize_url(request.url),
        "headers": normalize_headers(request.headers, header_keys),
        "body": request.body,
        "response_type": options.response_type if options is not None else "json",
    }

    try:
        payload = json.dumps(normalized, sort_keys=True, separators=(",", ":"), default=_encode_body)
    except (TypeError, ValueError) as e:
        logger.debug(f"generate_dedupe_key: falling back to target-only key ({e})")
        return target_key(request)

    digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()
    return f"{request.method} {normalized['url']} {digest}"


def resolve_dedupe_key(request: RequestDescriptor) -> str:
    """
    Resolve the dedupe key of a request, honouring an explicit override.

    A string override is used verbatim. A callable override receives the
    request; if it fails, the default key is used instead.
    """
    options = request.options
    override = options.dedupe_key if options is not None else None
    header_keys = options.dedupe_header_keys if options is not None else None

    if isinstance(override, str):
        return override

    if callable(override):
        try:
            return str(override(request))
        except Exception:
            logger.warning("resolve_dedupe_key: dedupe_key callable failed, using default key", exc_info=True)

    return generate_dedupe_key(request, header_keys)
