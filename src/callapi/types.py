"""
Type definitions for callapi.
"""
import json
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Dict,
    Generic,
    Literal,
    Mapping,
    Optional,
    Protocol,
    TypeVar,
    Union,
)

from .cancellation import AbortSignal
from .errors import AbortError, CallApiError, ErrorKind

if TYPE_CHECKING:
    from .config import ResolvedOptions

T = TypeVar("T")

# HTTP methods
HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]

# How the success body is parsed
ResponseType = Literal["json", "text", "bytes"]


class DedupeStrategy(str, Enum):
    """How a call treats an in-flight call with the same dedupe key."""

    CANCEL = "cancel"
    DEFER = "defer"
    NONE = "none"


class ResultMode(str, Enum):
    """Shape of the value a call resolves to."""

    ALL = "all"
    ONLY_SUCCESS = "only_success"
    ONLY_ERROR = "only_error"


class HookStage(str, Enum):
    """Named interception points, in lifecycle order."""

    REQUEST = "on_request"
    RETRY = "on_retry"
    SUCCESS = "on_success"
    ERROR = "on_error"
    RESPONSE_STREAM = "on_response_stream"
    FINALLY = "on_finally"


class HooksOrder(str, Enum):
    """Relative order of plugin hooks and user hooks within a stage."""

    PLUGINS_FIRST = "plugins_first"
    MAIN_FIRST = "main_first"


class HooksMode(str, Enum):
    """Whether the hooks of one stage are awaited one by one or gathered."""

    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"


def _freeze_headers(headers: Optional[Mapping[str, str]]) -> Mapping[str, str]:
    return MappingProxyType(dict(headers or {}))


@dataclass(frozen=True)
class RequestDescriptor:
    """Immutable description of one logical call.

    Hooks that need a different request build a new one with ``replace`` or
    ``with_headers`` and assign it to ``HookContext.request``.
    """

    url: str
    method: str = "GET"
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Any = None
    signal: Optional[AbortSignal] = None
    options: Optional["ResolvedOptions"] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", self.method.upper())
        object.__setattr__(self, "headers", _freeze_headers(self.headers))

    def replace(self, **changes: Any) -> "RequestDescriptor":
        """Return a copy with ``changes`` applied."""
        return replace(self, **changes)

    def with_headers(self, headers: Mapping[str, str]) -> "RequestDescriptor":
        """Return a copy with ``headers`` merged over the current ones."""
        merged = dict(self.headers)
        lowered = {k.lower() for k in headers}
        for key in list(merged):
            if key.lower() in lowered:
                del merged[key]
        merged.update(headers)
        return replace(self, headers=merged)


@dataclass(frozen=True)
class TransportRequest:
    """Wire-ready request handed to the transport: body already serialized."""

    method: str
    url: str
    headers: Mapping[str, str]
    content: Optional[bytes] = None


@dataclass(frozen=True)
class ApiResponse:
    """Response received from the transport."""

    status: int
    status_text: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)
    content: bytes = b""
    url: str = ""

    def __post_init__(self) -> None:
        lowered = {k.lower(): v for k, v in (self.headers or {}).items()}
        object.__setattr__(self, "headers", MappingProxyType(lowered))

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.text)


@dataclass(frozen=True)
class StreamProgressEvent:
    """Progress of a response body being read."""

    chunk: bytes
    transferred_bytes: int
    total_bytes: Optional[int] = None

    @property
    def progress(self) -> Optional[float]:
        """Fraction in [0, 1], or None when the total size is unknown."""
        if not self.total_bytes:
            return None
        return min(1.0, self.transferred_bytes / self.total_bytes)


@dataclass(frozen=True)
class CallApiResult(Generic[T]):
    """Uniform terminal value of a call."""

    data: Optional[T] = None
    error: Optional[CallApiError] = None
    response: Optional[ApiResponse] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class AttemptState:
    """State of one attempt within a call's retry loop."""

    index: int
    request: RequestDescriptor
    started_at: float = field(default_factory=time.monotonic)
    outcome: Optional[ErrorKind] = None

    @property
    def elapsed_seconds(self) -> float:
        return time.monotonic() - self.started_at


@dataclass
class HookContext:
    """Read/write bag passed through every hook stage of one call.

    Mutation slots:
    - ``request``: replaceable in ``on_request`` and ``on_retry``
    - ``data``: replaceable in ``on_success``
    - ``cancel_retry``: set in ``on_retry`` to give up instead of retrying
    - ``abort()``: callable from ``on_request`` and ``on_response_stream``
    """

    request: RequestDescriptor
    options: Optional["ResolvedOptions"] = None
    dedupe_key: Optional[str] = None
    attempt: Optional[AttemptState] = None
    response: Optional[ApiResponse] = None
    data: Any = None
    error: Optional[CallApiError] = None
    progress: Optional[StreamProgressEvent] = None
    signal: Optional[AbortSignal] = None
    cancel_retry: bool = False
    meta: Dict[str, Any] = field(default_factory=dict)
    _abort_callback: Optional[Callable[[BaseException], Any]] = field(default=None, repr=False)

    def abort(self, message: str = "Request aborted by hook") -> None:
        """Abort the whole call (all remaining attempts)."""
        if self._abort_callback is not None:
            self._abort_callback(AbortError(message))


Hook = Callable[[HookContext], Union[None, Awaitable[None]]]
"""A hook: plain function or coroutine function receiving the HookContext."""

ProgressCallback = Callable[[StreamProgressEvent], Awaitable[None]]


class Transport(Protocol):
    """Fetch-like primitive the coordinator sends requests through."""

    async def send(
        self,
        request: TransportRequest,
        signal: AbortSignal,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ApiResponse:
        """Send the request; must stop promptly once ``signal`` aborts."""
        ...

    async def aclose(self) -> None:
        """Release transport resources."""
        ...
