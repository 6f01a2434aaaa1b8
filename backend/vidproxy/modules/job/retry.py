"""Retry policy with exponential backoff."""

import math
from typing import Optional

from vidproxy.core.config import settings
from vidproxy.core.errors import is_retryable


class RetryConfig:
    """Configuration for retry behavior with exponential backoff."""

    def __init__(
        self,
        max_attempts: int = 3,
        initial_delay: float = 2.0,
        max_delay: float = 300.0,
        backoff_multiplier: float = 2.0,
        retry_permanent_errors: bool = False,
    ):
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.backoff_multiplier = backoff_multiplier
        self.retry_permanent_errors = retry_permanent_errors

    @classmethod
    def from_settings(cls) -> "RetryConfig":
        return cls(
            max_attempts=settings.RETRY_MAX_ATTEMPTS,
            initial_delay=settings.RETRY_BASE_DELAY_SECONDS,
            max_delay=settings.RETRY_MAX_DELAY_SECONDS,
            retry_permanent_errors=settings.RETRY_PERMANENT_ERRORS,
        )

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay for a given attempt using exponential backoff.

        Args:
            attempt: The attempt that just failed (1-indexed).

        Returns:
            The delay in seconds, capped at max_delay.
        """
        if attempt < 1:
            return self.initial_delay

        delay = self.initial_delay * math.pow(self.backoff_multiplier, attempt - 1)
        return min(delay, self.max_delay)

    def should_retry(self, exc: BaseException, attempt: int) -> bool:
        """Whether a job that failed ``attempt`` with ``exc`` gets another attempt.

        Permanent error kinds are not retried unless ``retry_permanent_errors``
        restores the retry-everything policy.
        """
        if attempt >= self.max_attempts:
            return False
        return self.retry_permanent_errors or is_retryable(exc)

    def next_delay(self, exc: BaseException, attempt: int) -> Optional[float]:
        """Delay before the next attempt, or None when the job should fail now."""
        if not self.should_retry(exc, attempt):
            return None
        return self.calculate_delay(attempt)
