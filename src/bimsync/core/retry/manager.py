"""
Retry manager for executing idempotent upstream reads with backoff.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from bimsync.core.retry.policy import DISCOVERY_RETRY_POLICY, RetryPolicy, RetryState
from bimsync.utils.logging import get_logger

logger = get_logger("bimsync.retry.manager")


class RetryManager:
    """
    Wraps an async callable with retry logic based on a RetryPolicy.

    Examples:
        >>> manager = RetryManager()
        >>> versions = await manager.execute(
        ...     discovery.list_versions, item_id, policy=DISCOVERY_RETRY_POLICY
        ... )
    """

    def __init__(self, sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self._sleep = sleep

    async def execute(
        self,
        func: Callable[..., Awaitable[Any]],
        *args,
        policy: RetryPolicy | None = None,
        operation: str | None = None,
        **kwargs,
    ) -> Any:
        """
        Execute async function with retry logic.

        Args:
            func: Async function to execute
            *args: Positional arguments to pass to func
            policy: Retry policy (defaults to DISCOVERY_RETRY_POLICY)
            operation: Operation name for logging
            **kwargs: Keyword arguments to pass to func

        Returns:
            Result of successful execution

        Raises:
            Exception: Final exception after all retries exhausted, or the
                first non-retryable exception
        """
        policy = policy or DISCOVERY_RETRY_POLICY
        state = RetryState(operation=operation or getattr(func, "__name__", "operation"))

        for attempt in range(policy.max_attempts + 1):
            state.attempt = attempt
            try:
                logger.debug(f"Executing {state.operation} (attempt {attempt + 1}/{policy.max_attempts + 1})")
                result = await func(*args, **kwargs)
                state.record_attempt()
                state.succeeded = True
                if attempt > 0:
                    logger.info(f"{state.operation} succeeded after {attempt + 1} attempts")
                return result

            except Exception as e:
                state.record_attempt(exception=e)

                if not policy.should_retry(e, attempt):
                    if attempt > 0:
                        logger.error(f"{state.operation} failed after {attempt + 1} attempts: {e}")
                    raise

                delay = policy.get_delay(attempt)
                state.record_delay(delay)
                logger.warning(f"{state.operation} attempt {attempt + 1} failed: {e}. Retrying in {delay:.2f}s...")
                await self._sleep(delay)

        raise RuntimeError(f"Retry logic error for {state.operation}")
