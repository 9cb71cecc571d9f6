"""
Retry policy configuration for idempotent upstream operations.

Only reads are retried: discovery listings, translation status polls and the
runtime binary fetch. Non-idempotent submits never go through a policy.
"""

import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from bimsync.exceptions import TransientNetworkError


@dataclass
class RetryPolicy:
    """
    Configuration for retry behavior when an upstream call fails.

    Exponential backoff with jitter by default; ``linear=True`` switches to
    ``initial_delay * (attempt + 1)``.

    Examples:
        >>> policy = RetryPolicy(max_attempts=3)

        >>> policy = RetryPolicy(
        ...     max_attempts=5,
        ...     initial_delay=2.0,
        ...     max_delay=60.0,
        ...     retryable_exceptions=(TransientNetworkError,),
        ... )
    """

    # Maximum number of retry attempts (total executions = max_attempts + 1)
    max_attempts: int = 3

    # Initial delay before first retry (seconds)
    initial_delay: float = 1.0

    # Maximum delay between retries (seconds)
    max_delay: float = 30.0

    # Exponential backoff base (delay = initial_delay * base^attempt)
    exponential_base: float = 2.0

    # Linear backoff instead of exponential
    linear: bool = False

    # Random jitter of ±25% of delay
    jitter: bool = True

    # Only retry these exception types (None = retry all exceptions)
    retryable_exceptions: tuple[type[Exception], ...] | None = None

    # Custom retry condition: (exception, attempt) -> bool
    retry_condition: Callable[[Exception, int], bool] | None = None

    def __post_init__(self):
        """Validate configuration."""
        if self.max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")
        if self.initial_delay < 0:
            raise ValueError("initial_delay must be >= 0")
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must be >= initial_delay")
        if self.exponential_base < 1.0:
            raise ValueError("exponential_base must be >= 1.0")

    def should_retry(self, exception: Exception, attempt: int) -> bool:
        """
        Determine if we should retry after this exception.

        Args:
            exception: The exception that occurred
            attempt: Current attempt number (0-indexed)

        Returns:
            True if we should retry, False otherwise
        """
        if attempt >= self.max_attempts:
            return False

        if self.retry_condition is not None:
            return self.retry_condition(exception, attempt)

        if self.retryable_exceptions is not None:
            return isinstance(exception, self.retryable_exceptions)

        return True

    def get_delay(self, attempt: int) -> float:
        """
        Calculate delay before next retry.

        Exponential: ``initial_delay * base^attempt``; linear:
        ``initial_delay * (attempt + 1)``. Jitter multiplies by
        random(0.75, 1.25); max_delay is applied last so it is a hard bound.

        Args:
            attempt: Current attempt number (0-indexed)

        Returns:
            Delay in seconds before next retry
        """
        if self.linear:
            delay = self.initial_delay * (attempt + 1)
        else:
            delay = self.initial_delay * (self.exponential_base**attempt)

        if self.jitter:
            delay *= random.uniform(0.75, 1.25)

        return min(delay, self.max_delay)


@dataclass
class RetryState:
    """
    Retry history for one operation, kept for logging and error details.
    """

    operation: str
    attempt: int = 0
    total_attempts: int = 0
    exceptions: list[dict[str, Any]] = field(default_factory=list)
    delays: list[float] = field(default_factory=list)
    succeeded: bool = False

    def record_attempt(self, exception: Exception | None = None):
        """Record an attempt and its result."""
        self.total_attempts += 1
        if exception is not None:
            self.exceptions.append(
                {
                    "attempt": self.attempt,
                    "exception_type": type(exception).__name__,
                    "exception_message": str(exception),
                    "timestamp": time.time(),
                }
            )

    def record_delay(self, delay: float):
        self.delays.append(delay)


# Pre-configured policies

DISCOVERY_RETRY_POLICY = RetryPolicy(
    max_attempts=3,
    initial_delay=0.5,
    max_delay=5.0,
    exponential_base=2.0,
    jitter=True,
    retryable_exceptions=(TransientNetworkError,),
)

NO_RETRY_POLICY = RetryPolicy(max_attempts=0)


def discovery_policy(max_attempts: int = 3, initial_delay: float = 0.5, max_delay: float = 5.0) -> RetryPolicy:
    """Discovery read policy with configured limits; retries TransientNetworkError only."""
    return RetryPolicy(
        max_attempts=max_attempts,
        initial_delay=initial_delay,
        max_delay=max(max_delay, initial_delay),
        retryable_exceptions=(TransientNetworkError,),
    )
