"""
callapi - async HTTP call coordinator with request deduplication, retries,
composed cancellation and a hook pipeline.

All outcomes resolve to a uniform CallApiResult(data, error, response).
"""

__version__ = "0.1.0"

from .types import (
    ApiResponse,
    AttemptState,
    CallApiResult,
    DedupeStrategy,
    Hook,
    HookContext,
    HookStage,
    HooksMode,
    HooksOrder,
    HttpMethod,
    RequestDescriptor,
    ResponseType,
    ResultMode,
    StreamProgressEvent,
    Transport,
    TransportRequest,
)
from .errors import (
    ErrorKind,
    CallApiError,
    NetworkError,
    RequestTimeoutError,
    AbortError,
    HTTPError,
    ValidationError,
    SerializationError,
    HookError,
    classify_exception,
)
from .cancellation import (
    AbortController,
    AbortSignal,
    any_signal,
)
from .config import (
    CallOptions,
    ClientConfig,
    ResolvedOptions,
    resolve_options,
    validate_config,
)
from .settings import CallApiSettings, get_settings
from .retry import RetryConfig, RetryPolicy, BackoffStrategy
from .hooks import Hooks, HookPipeline, Plugin
from .dedupe import (
    InFlightRegistry,
    DedupeEvent,
    DedupeEventType,
    generate_dedupe_key,
    resolve_dedupe_key,
)
from .transport import HttpxTransport
from .core import AsyncCallApiClient, LifecycleCoordinator
from .factory import create_fetch_client

__all__ = [
    # Version
    "__version__",
    # Types
    "ApiResponse",
    "AttemptState",
    "CallApiResult",
    "DedupeStrategy",
    "Hook",
    "HookContext",
    "HookStage",
    "HooksMode",
    "HooksOrder",
    "HttpMethod",
    "RequestDescriptor",
    "ResponseType",
    "ResultMode",
    "StreamProgressEvent",
    "Transport",
    "TransportRequest",
    # Errors
    "ErrorKind",
    "CallApiError",
    "NetworkError",
    "RequestTimeoutError",
    "AbortError",
    "HTTPError",
    "ValidationError",
    "SerializationError",
    "HookError",
    "classify_exception",
    # Cancellation
    "AbortController",
    "AbortSignal",
    "any_signal",
    # Config
    "CallOptions",
    "ClientConfig",
    "ResolvedOptions",
    "resolve_options",
    "validate_config",
    "CallApiSettings",
    "get_settings",
    # Retry
    "RetryConfig",
    "RetryPolicy",
    "BackoffStrategy",
    # Hooks
    "Hooks",
    "HookPipeline",
    "Plugin",
    # Dedupe
    "InFlightRegistry",
    "DedupeEvent",
    "DedupeEventType",
    "generate_dedupe_key",
    "resolve_dedupe_key",
    # Client
    "HttpxTransport",
    "AsyncCallApiClient",
    "LifecycleCoordinator",
    "create_fetch_client",
]
