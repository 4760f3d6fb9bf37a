"""
Type definitions for callapi.retry
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Union

from ..errors import ErrorKind


class BackoffStrategy(str, Enum):
    """Backoff strategy type"""
    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    CONSTANT = "constant"


RetryCondition = Callable[[Any], Union[bool, Awaitable[bool]]]
"""Predicate over the HookContext of the failed attempt"""


@dataclass
class RetryConfig:
    """Retry configuration"""

    attempts: int = 0
    """Retries allowed after the first attempt. Default: 0 (no retry)"""

    delay_seconds: float = 1.0
    """Base delay between attempts (seconds). Default: 1.0"""

    max_delay_seconds: float = 10.0
    """Cap applied to every computed delay (seconds). Default: 10.0"""

    jitter_factor: float = 0.0
    """Jitter factor (0-1). Default: 0 (deterministic delays)"""

    strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    """Backoff strategy. Default: exponential"""

    linear_increment_seconds: float = 1.0
    """Linear increment for linear backoff (seconds). Default: 1.0"""

    status_codes: List[int] = field(
        default_factory=lambda: [408, 409, 425, 429, 500, 502, 503, 504]
    )
    """HTTP status codes that may be retried. Empty list: any status"""

    methods: List[str] = field(
        default_factory=lambda: ["GET", "HEAD", "OPTIONS", "PUT", "DELETE", "POST"]
    )
    """HTTP methods that may be retried"""

    retry_on: List[ErrorKind] = field(
        default_factory=lambda: [ErrorKind.NETWORK, ErrorKind.TIMEOUT, ErrorKind.HTTP]
    )
    """Outcome kinds that may be retried. AbortError never is"""

    condition: Optional[RetryCondition] = None
    """Custom predicate; returning False vetoes the retry"""

    respect_retry_after: bool = True
    """Whether to respect the Retry-After header on 429/503. Default: True"""


@dataclass(frozen=True)
class RetryDecision:
    """Outcome of a retry policy decision"""

    retry: bool
    """Whether another attempt should be made"""

    delay_seconds: float = 0.0
    """Wait before the next attempt (seconds)"""

    reason: str = ""
    """Short reason, for logging"""
