"""
Configuration for callapi.

Options are layered: built-in defaults < environment settings < client-level
``ClientConfig`` < per-call ``CallOptions``. ``resolve_options`` collapses the
layers into one frozen ``ResolvedOptions`` carried by the request descriptor.
"""
import json
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union
from urllib.parse import urlparse

from .cancellation import AbortSignal
from .errors import CallApiError
from .hooks.pipeline import Hooks
from .hooks.plugins import Plugin, validate_plugins
from .retry import RetryConfig, merge_config as merge_retry_config, validate_retry_config
from .settings import CallApiSettings, get_settings
from .types import DedupeStrategy, HooksMode, HooksOrder, ResponseType, ResultMode

Validator = Union[Callable[[Any], Any], type]
"""Callable ``(parsed) -> validated`` or a pydantic ``BaseModel`` subclass."""

ThrowOnError = Union[bool, Callable[[CallApiError], bool]]

DedupeKey = Union[str, Callable[[Any], str]]

RESPONSE_TYPES = ("json", "text", "bytes")


@dataclass
class CallOptions:
    """Per-call options. ``None`` means inherit from the client."""

    method: Optional[str] = None
    headers: Optional[Mapping[str, str]] = None
    query: Optional[Mapping[str, Any]] = None
    body: Any = None
    timeout: Optional[float] = None
    signal: Optional[AbortSignal] = None
    dedupe_strategy: Union[DedupeStrategy, str, None] = None
    dedupe_key: Optional[DedupeKey] = None
    dedupe_header_keys: Optional[Sequence[str]] = None
    retry: Union[RetryConfig, int, None] = None
    result_mode: Union[ResultMode, str, None] = None
    throw_on_error: Optional[ThrowOnError] = None
    response_type: Optional[ResponseType] = None
    body_serializer: Optional[Callable[[Any], Union[str, bytes]]] = None
    response_parser: Optional[Callable[[str], Any]] = None
    response_validator: Optional[Validator] = None
    error_validator: Optional[Validator] = None
    hooks: Optional[Hooks] = None
    meta: Optional[Mapping[str, Any]] = None


@dataclass
class ClientConfig(CallOptions):
    """Client configuration: call defaults plus client-only settings."""

    base_url: str = ""
    transport: Optional[Any] = None
    httpx_client: Optional[Any] = None
    plugins: List[Plugin] = field(default_factory=list)
    hooks_order: Union[HooksOrder, str] = HooksOrder.PLUGINS_FIRST
    hooks_mode: Union[HooksMode, str] = HooksMode.SEQUENTIAL
    debug: Optional[bool] = None


@dataclass(frozen=True)
class ResolvedOptions:
    """Effective options of one call, after all layers are merged."""

    method: str = "GET"
    timeout: Optional[float] = None
    dedupe_strategy: DedupeStrategy = DedupeStrategy.CANCEL
    dedupe_key: Optional[DedupeKey] = None
    dedupe_header_keys: Optional[Tuple[str, ...]] = None
    retry: RetryConfig = field(default_factory=RetryConfig)
    result_mode: ResultMode = ResultMode.ALL
    throw_on_error: ThrowOnError = False
    response_type: str = "json"
    body_serializer: Optional[Callable[[Any], Union[str, bytes]]] = None
    response_parser: Optional[Callable[[str], Any]] = None
    response_validator: Optional[Validator] = None
    error_validator: Optional[Validator] = None
    hooks: Tuple[Hooks, ...] = ()
    meta: Mapping[str, Any] = field(default_factory=dict)
    debug: bool = False


class DefaultSerializer:
    """Default JSON serializer."""

    def serialize(self, data: Any) -> str:
        """Serialize data to JSON string."""
        return json.dumps(data)

    def deserialize(self, text: str) -> Any:
        """Deserialize JSON string to data."""
        return json.loads(text)


default_serializer = DefaultSerializer()


def _first(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def normalize_dedupe_strategy(value: Union[DedupeStrategy, str]) -> DedupeStrategy:
    """Normalize a dedupe strategy name."""
    try:
        return DedupeStrategy(value)
    except ValueError as e:
        valid = [s.value for s in DedupeStrategy]
        raise ValueError(f"Invalid dedupe_strategy: {value!r}. Must be one of: {valid}") from e


def normalize_result_mode(value: Union[ResultMode, str]) -> ResultMode:
    """Normalize a result mode name."""
    try:
        return ResultMode(value)
    except ValueError as e:
        valid = [m.value for m in ResultMode]
        raise ValueError(f"Invalid result_mode: {value!r}. Must be one of: {valid}") from e


def validate_config(config: ClientConfig) -> None:
    """Validate client configuration."""
    if config.base_url:
        parsed = urlparse(config.base_url)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError(f"Invalid base_url: {config.base_url}")

    try:
        HooksOrder(config.hooks_order)
        HooksMode(config.hooks_mode)
    except ValueError as e:
        raise ValueError(f"Invalid hooks configuration: {e}") from e

    validate_plugins(config.plugins)
    validate_options(config)


def validate_options(options: CallOptions) -> None:
    """Validate the option fields shared by client and call level."""
    if options.timeout is not None and options.timeout <= 0:
        raise ValueError(f"timeout must be > 0 seconds, got {options.timeout}")

    if options.dedupe_strategy is not None:
        normalize_dedupe_strategy(options.dedupe_strategy)

    if options.result_mode is not None:
        normalize_result_mode(options.result_mode)

    if options.response_type is not None and options.response_type not in RESPONSE_TYPES:
        raise ValueError(f"Invalid response_type: {options.response_type!r}. Must be one of: {list(RESPONSE_TYPES)}")

    if options.retry is not None:
        validate_retry_config(merge_retry_config(options.retry))


def resolve_options(
    client: ClientConfig,
    call: Optional[CallOptions] = None,
    settings: Optional[CallApiSettings] = None,
) -> ResolvedOptions:
    """
    Merge call-level options over client defaults and environment settings.

    Args:
        client: Client-level configuration
        call: Per-call options
        settings: Environment settings. Default: get_settings()

    Returns:
        ResolvedOptions
    """
    call = call or CallOptions()
    settings = settings or get_settings()
    validate_options(call)

    retry = _first(call.retry, client.retry)
    if retry is None:
        retry = RetryConfig(attempts=settings.retry_attempts)

    header_keys = _first(call.dedupe_header_keys, client.dedupe_header_keys)

    meta: Dict[str, Any] = dict(client.meta or {})
    meta.update(call.meta or {})

    return ResolvedOptions(
        method=(_first(call.method, client.method) or "GET").upper(),
        timeout=_first(call.timeout, client.timeout, settings.timeout),
        dedupe_strategy=normalize_dedupe_strategy(
            _first(call.dedupe_strategy, client.dedupe_strategy, settings.dedupe_strategy)
        ),
        dedupe_key=_first(call.dedupe_key, client.dedupe_key),
        dedupe_header_keys=tuple(header_keys) if header_keys is not None else None,
        retry=merge_retry_config(retry),
        result_mode=normalize_result_mode(
            _first(call.result_mode, client.result_mode, settings.result_mode)
        ),
        throw_on_error=_first(call.throw_on_error, client.throw_on_error, False),
        response_type=_first(call.response_type, client.response_type, "json"),
        body_serializer=_first(call.body_serializer, client.body_serializer, default_serializer.serialize),
        response_parser=_first(call.response_parser, client.response_parser, default_serializer.deserialize),
        response_validator=_first(call.response_validator, client.response_validator),
        error_validator=_first(call.error_validator, client.error_validator),
        hooks=tuple(h for h in (client.hooks, call.hooks) if h is not None),
        meta=MappingProxyType(meta),
        debug=bool(_first(client.debug, settings.debug)),
    )
