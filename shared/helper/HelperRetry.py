"""Bounded exponential backoff for transient provider and storage failures."""

import asyncio
from typing import Awaitable, Callable, TypeVar

from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import PipelineError, RateLimitedError

T = TypeVar("T")


class HelperRetry:
    """Retries operations that fail with a retryable PipelineError.

    Non-retryable errors and non-pipeline exceptions are raised immediately.
    Once the attempt budget is exhausted the last error is raised unchanged so
    the caller can classify it as a job failure.
    """

    def __init__(self, helper_config: HelperConfig):
        self.logging = helper_config.get_logger()
        self.max_attempts = int(helper_config.get_number_val("RETRY_MAX_ATTEMPTS", default=4))
        self.base_delay = float(helper_config.get_number_val("RETRY_BASE_DELAY", default=0.5))
        self.max_delay = float(helper_config.get_number_val("RETRY_MAX_DELAY", default=8.0))
        if self.max_attempts < 1:
            raise ValueError("RETRY_MAX_ATTEMPTS must be at least 1.")

    def get_delay(self, attempt: int, error: PipelineError) -> float:
        """Delay before the given (1-based) retry attempt."""
        if isinstance(error, RateLimitedError) and error.retry_after is not None:
            return min(float(error.retry_after), self.max_delay)
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

    async def do_with_retry(self, operation: Callable[[], Awaitable[T]], description: str) -> T:
        """Run ``operation`` until it succeeds or the retry budget runs out.

        Args:
            operation: Zero-argument coroutine factory, called once per attempt.
            description: Human-readable label used in log lines.

        Returns:
            The operation's result.

        Raises:
            PipelineError: The last error when it is not retryable or attempts are exhausted.
        """
        attempt = 1
        while True:
            try:
                return await operation()
            except PipelineError as err:
                if not err.retryable or attempt >= self.max_attempts:
                    if err.retryable:
                        self.logging.error("%s failed after %d attempts: %s", description, attempt, err)
                    raise
                delay = self.get_delay(attempt, err)
                self.logging.warning(
                    "%s failed (attempt %d/%d): %s. Retrying in %.2fs",
                    description, attempt, self.max_attempts, err, delay,
                )
                await asyncio.sleep(delay)
                attempt += 1
