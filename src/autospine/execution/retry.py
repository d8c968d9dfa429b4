"""Retry strategies with exponential backoff, jitter, and configurable policies.

A subscription's ``retry_backoff`` decides how many times a failed
handler is re-invoked and how long the dispatcher waits in between.

Example:
    >>> from autospine.execution.retry import ExponentialBackoff
    >>>
    >>> strategy = ExponentialBackoff(max_retries=5, base_delay=1.0, max_delay=60.0, jitter=False)
    >>> [strategy.next_delay(n) for n in range(4)]
    [1.0, 2.0, 4.0, 8.0]
"""

from __future__ import annotations

import random
from abc import ABC, abstractmethod
from dataclasses import dataclass

from autospine.core.errors import is_retryable


class RetryStrategy(ABC):
    """Abstract base for retry strategies."""

    max_retries: int

    @abstractmethod
    def next_delay(self, attempt: int) -> float:
        """Calculate delay before next retry attempt.

        Args:
            attempt: Zero-based retry number (0 = first retry)

        Returns:
            Delay in seconds before next attempt
        """
        ...

    def should_retry(self, attempt: int, error: BaseException | None = None) -> bool:
        """Determine if another retry should be attempted.

        Args:
            attempt: Retries already performed
            error: The exception that caused the failure
        """
        if attempt >= self.max_retries:
            return False
        if error is not None and not is_retryable(error):
            return False
        return True


@dataclass
class ExponentialBackoff(RetryStrategy):
    """Exponential backoff with optional jitter.

    Delay = min(base_delay * (multiplier ** attempt), max_delay) +/- jitter

    Attributes:
        max_retries: Maximum number of retry attempts
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap in seconds
        multiplier: Exponential multiplier (default: 2)
        jitter: Add randomness to prevent thundering herd
        jitter_range: Range of jitter as fraction of delay (0.0-1.0)
        retryable_errors: Exception types that are retryable (None = all)
    """

    max_retries: int = 3
    base_delay: float = 0.5
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter: bool = True
    jitter_range: float = 0.25
    retryable_errors: tuple[type[BaseException], ...] | None = None

    def next_delay(self, attempt: int) -> float:
        delay = min(self.base_delay * (self.multiplier**attempt), self.max_delay)

        if self.jitter and delay > 0:
            jitter_amount = delay * self.jitter_range
            delay += random.uniform(-jitter_amount, jitter_amount)
            delay = min(max(0.0, delay), self.max_delay)

        return delay

    def should_retry(self, attempt: int, error: BaseException | None = None) -> bool:
        if not super().should_retry(attempt, error):
            return False
        if error is not None and self.retryable_errors is not None:
            cause = getattr(error, "cause", None) or error
            return isinstance(cause, self.retryable_errors)
        return True


@dataclass
class ConstantBackoff(RetryStrategy):
    """Constant delay between retries."""

    max_retries: int = 3
    delay: float = 1.0

    def next_delay(self, attempt: int) -> float:
        return self.delay


@dataclass
class NoRetry(RetryStrategy):
    """No retry - fail after the first attempt."""

    max_retries: int = 0

    def next_delay(self, attempt: int) -> float:
        return 0.0

    def should_retry(self, attempt: int, error: BaseException | None = None) -> bool:
        return False


__all__ = ["RetryStrategy", "ExponentialBackoff", "ConstantBackoff", "NoRetry"]
