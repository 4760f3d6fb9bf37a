"""
Error taxonomy for callapi.

Every terminal outcome of a call is one of these errors. They are returned as
values in ``CallApiResult.error`` by default and raised only when
``throw_on_error`` asks for it, so the same classification works for both
styles of handling.
"""
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar, List, Optional

import httpx

if TYPE_CHECKING:
    from .types import ApiResponse


class ErrorKind(str, Enum):
    """Outcome classification tag. Values double as the error ``name``."""

    NETWORK = "NetworkError"
    TIMEOUT = "TimeoutError"
    ABORT = "AbortError"
    HTTP = "HTTPError"
    VALIDATION = "ValidationError"
    SERIALIZATION = "SerializationError"
    HOOK = "HookError"


class CallApiError(Exception):
    """Base class for all callapi failures.

    Shared shape: ``name``, ``message``, ``error_data`` and the ``response``
    the error was produced from (if any).
    """

    kind: ClassVar[ErrorKind]

    def __init__(
        self,
        message: str,
        *,
        error_data: Any = None,
        response: Optional["ApiResponse"] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_data = error_data
        self.response = response
        if cause is not None:
            self.__cause__ = cause

    @property
    def name(self) -> str:
        return self.kind.value

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, message={self.message!r})"


class NetworkError(CallApiError):
    """Transport-level failure before a response was obtained."""

    kind = ErrorKind.NETWORK


class RequestTimeoutError(CallApiError):
    """The request did not complete within the configured timeout."""

    kind = ErrorKind.TIMEOUT

    def __init__(self, message: str, *, timeout: Optional[float] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.timeout = timeout


class AbortError(CallApiError):
    """The call was cancelled: external signal, dedupe supersession or manual cancel."""

    kind = ErrorKind.ABORT


class HTTPError(CallApiError):
    """A response was received with a non-success status.

    ``error_data`` holds the parsed error body.
    """

    kind = ErrorKind.HTTP

    def __init__(self, message: str, *, status: int, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.status = status


class ValidationError(CallApiError):
    """The response body or error body failed a configured validator."""

    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, *, issues: Optional[List[Any]] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.issues = issues or []


class SerializationError(CallApiError):
    """Request body serialization or response parsing failed."""

    kind = ErrorKind.SERIALIZATION


class HookError(CallApiError):
    """A hook raised while its stage was running."""

    kind = ErrorKind.HOOK

    def __init__(self, message: str, *, stage: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.stage = stage


def classify_exception(error: BaseException) -> CallApiError:
    """
    Map an arbitrary exception raised around the transport call onto the taxonomy.

    Args:
        error: The exception to classify

    Returns:
        A CallApiError (the same instance if it already is one)
    """
    if isinstance(error, CallApiError):
        return error

    if isinstance(error, httpx.TimeoutException):
        return RequestTimeoutError(f"Request timed out: {error}", cause=error)

    if isinstance(error, TimeoutError):
        return RequestTimeoutError(str(error) or "Request timed out", cause=error)

    return NetworkError(str(error) or type(error).__name__, cause=error)
