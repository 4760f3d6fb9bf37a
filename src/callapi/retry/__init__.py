"""
Retry policy with constant, linear and exponential backoff and jitter support.
"""
from .types import (
    RetryConfig,
    RetryDecision,
    RetryCondition,
    BackoffStrategy,
)
from .config import (
    DEFAULT_RETRY_CONFIG,
    calculate_delay,
    is_retryable_kind,
    is_retryable_status,
    is_retryable_method,
    parse_retry_after,
    merge_config,
    validate_retry_config,
)
from .policy import RetryPolicy


__all__ = [
    # Types
    "RetryConfig",
    "RetryDecision",
    "RetryCondition",
    "BackoffStrategy",
    # Config
    "DEFAULT_RETRY_CONFIG",
    "calculate_delay",
    "is_retryable_kind",
    "is_retryable_status",
    "is_retryable_method",
    "parse_retry_after",
    "merge_config",
    "validate_retry_config",
    # Policy
    "RetryPolicy",
]
