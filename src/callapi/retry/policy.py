"""
Retry policy: decides whether a failed attempt is retried and after how long.
"""
import inspect
import logging
from typing import Optional

from ..errors import CallApiError, ErrorKind, HTTPError
from ..types import AttemptState, HookContext
from .types import RetryConfig, RetryDecision
from .config import (
    merge_config,
    calculate_delay,
    is_retryable_kind,
    is_retryable_status,
    is_retryable_method,
    parse_retry_after,
)

logger = logging.getLogger("callapi.retry")

RETRY_AFTER_STATUSES = (429, 503)


class RetryPolicy:
    """
    Retry Policy

    Decides, per failed attempt:
    - whether the outcome kind, status and method are retryable
    - whether attempts are exhausted
    - whether a custom condition vetoes the retry
    - the backoff delay (Retry-After aware), clamped to the configured cap
    """

    def __init__(self, config: Optional[RetryConfig] = None):
        self._config = merge_config(config)

    @property
    def config(self) -> RetryConfig:
        """Get the current configuration."""
        return self._config

    async def decide(
        self,
        attempt: AttemptState,
        error: CallApiError,
        context: Optional[HookContext] = None,
    ) -> RetryDecision:
        """
        Decide what to do after ``attempt`` failed with ``error``.

        Args:
            attempt: State of the failed attempt
            error: Classified outcome of the attempt
            context: Hook context passed to the custom condition

        Returns:
            RetryDecision
        """
        config = self._config

        if error.kind == ErrorKind.ABORT:
            return RetryDecision(retry=False, reason="aborted")

        if attempt.index >= config.attempts:
            return RetryDecision(retry=False, reason="attempts exhausted")

        if not is_retryable_kind(error, config):
            return RetryDecision(retry=False, reason=f"{error.name} is not retryable")

        if isinstance(error, HTTPError) and not is_retryable_status(error.status, config):
            return RetryDecision(retry=False, reason=f"status {error.status} is not retryable")

        if not is_retryable_method(attempt.request.method, config):
            return RetryDecision(retry=False, reason=f"method {attempt.request.method} is not retryable")

        if config.condition is not None and not await self._check_condition(context):
            return RetryDecision(retry=False, reason="condition returned False")

        delay = self.compute_delay(attempt.index, error)
        return RetryDecision(retry=True, delay_seconds=delay, reason=f"{error.name} is retryable")

    def compute_delay(self, attempt_index: int, error: Optional[CallApiError] = None) -> float:
        """Backoff delay for ``attempt_index``, honouring Retry-After when configured."""
        config = self._config

        if (
            config.respect_retry_after
            and isinstance(error, HTTPError)
            and error.status in RETRY_AFTER_STATUSES
            and error.response is not None
        ):
            retry_after = parse_retry_after(error.response.headers.get("retry-after"))
            if retry_after > 0:
                return min(retry_after, config.max_delay_seconds)

        return calculate_delay(attempt_index, config)

    async def _check_condition(self, context: Optional[HookContext]) -> bool:
        try:
            verdict = self._config.condition(context)
            if inspect.isawaitable(verdict):
                verdict = await verdict
            return bool(verdict)
        except Exception:
            logger.warning("RetryPolicy: retry condition raised, falling back to default decision", exc_info=True)
            return True
