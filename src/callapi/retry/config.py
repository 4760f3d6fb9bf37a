"""
Configuration utilities for callapi.retry
"""
import random
import time
from typing import Optional, Union
from email.utils import parsedate_to_datetime

from ..errors import CallApiError, ErrorKind
from .types import RetryConfig, BackoffStrategy


# Default retry configuration
DEFAULT_RETRY_CONFIG = RetryConfig()


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """
    Calculate delay based on strategy.

    Args:
        attempt: The current attempt number (0-indexed)
        config: Retry configuration

    Returns:
        Delay in seconds, never above ``config.max_delay_seconds``
    """
    base = config.delay_seconds
    max_delay = config.max_delay_seconds
    jitter = config.jitter_factor

    if config.strategy == BackoffStrategy.CONSTANT:
        base_delay = base
    elif config.strategy == BackoffStrategy.LINEAR:
        base_delay = base + config.linear_increment_seconds * attempt
    else:  # EXPONENTIAL (default)
        base_delay = base * (2 ** attempt)

    base_delay = min(max_delay, base_delay)

    if jitter <= 0:
        return base_delay

    # Apply jitter
    jitter_amount = random.random() * jitter * base_delay
    delay = base_delay * (1 - jitter / 2) + jitter_amount

    return min(delay, max_delay)


def is_retryable_kind(error: CallApiError, config: RetryConfig) -> bool:
    """
    Check if an outcome classification may be retried.

    Args:
        error: The classified error
        config: Retry configuration

    Returns:
        Whether the error kind is retryable
    """
    if error.kind == ErrorKind.ABORT:
        return False
    return error.kind in config.retry_on


def is_retryable_status(status: int, config: RetryConfig) -> bool:
    """
    Check if an HTTP status code should trigger a retry.

    Args:
        status: The HTTP status code
        config: Retry configuration

    Returns:
        Whether the status is retryable
    """
    if not config.status_codes:
        return True
    return status in config.status_codes


def is_retryable_method(method: str, config: RetryConfig) -> bool:
    """
    Check if an HTTP method is safe to retry.

    Args:
        method: The HTTP method
        config: Retry configuration

    Returns:
        Whether the method is retryable
    """
    return method.upper() in {m.upper() for m in config.methods}


def parse_retry_after(value: Optional[str]) -> float:
    """
    Parse Retry-After header value.

    The Retry-After header can contain either:
    - A number of seconds to wait
    - An HTTP-date indicating when to retry

    Args:
        value: Retry-After header value

    Returns:
        Wait time in seconds, or 0 if parsing fails
    """
    if not value:
        return 0

    # Try parsing as seconds
    try:
        return max(0.0, float(value))
    except ValueError:
        pass

    # Try parsing as HTTP-date
    try:
        dt = parsedate_to_datetime(value)
        return max(0, dt.timestamp() - time.time())
    except (ValueError, TypeError):
        pass

    return 0


def merge_config(config: Union[RetryConfig, int, None] = None) -> RetryConfig:
    """
    Merge configuration with defaults.

    Args:
        config: User-provided configuration, or an int shorthand for ``attempts``

    Returns:
        Complete configuration with defaults
    """
    if config is None:
        return DEFAULT_RETRY_CONFIG
    if isinstance(config, bool):
        raise ValueError("retry must be a RetryConfig or an int")
    if isinstance(config, int):
        return RetryConfig(attempts=config)
    return config


def validate_retry_config(config: RetryConfig) -> None:
    """Validate retry configuration."""
    if config.attempts < 0:
        raise ValueError(f"retry attempts must be >= 0, got {config.attempts}")
    if config.delay_seconds < 0 or config.max_delay_seconds < 0:
        raise ValueError("retry delays must be >= 0")
    if not 0 <= config.jitter_factor <= 1:
        raise ValueError(f"jitter_factor must be within [0, 1], got {config.jitter_factor}")
    try:
        BackoffStrategy(config.strategy)
    except ValueError as e:
        raise ValueError(f"Invalid backoff strategy: {config.strategy}") from e
