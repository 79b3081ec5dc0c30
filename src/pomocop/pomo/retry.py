"""Retry utilities for store writes made outside a user command."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from pomocop.pomo.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    enabled: bool = True
    max_retries: int = 5
    base_delay_ms: int = 500
    max_delay_ms: int = 30000  # 30 seconds

    def delay_for(self, attempt: int) -> float:
        """Backoff in seconds before retry number ``attempt + 1``."""
        delay_ms = min(self.base_delay_ms * (2**attempt), self.max_delay_ms)
        return delay_ms / 1000


def is_retryable_error(error: Exception) -> bool:
    """Only store outages are worth retrying; anything else is a bug."""
    return isinstance(error, StoreUnavailableError)


async def with_retry(
    func: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    operation_name: str = "store write",
) -> T:
    """Execute an async function with exponential backoff retry.

    Args:
        func: Async function to execute.
        config: Retry configuration.
        operation_name: Name for logging.

    Returns:
        Result of the function.

    Raises:
        The last exception if all retries fail.
    """
    config = config or RetryConfig()

    if not config.enabled:
        return await func()

    for attempt in range(config.max_retries + 1):
        try:
            return await func()
        except Exception as e:
            if not is_retryable_error(e):
                raise

            if attempt >= config.max_retries:
                logger.error(
                    "retry_exhausted",
                    extra={
                        "operation": operation_name,
                        "attempts": config.max_retries + 1,
                        "error.message": str(e),
                        "error.type": type(e).__name__,
                    },
                )
                raise

            delay_s = config.delay_for(attempt)
            logger.warning(
                "retry_attempt",
                extra={
                    "operation": operation_name,
                    "attempt": attempt + 1,
                    "max_attempts": config.max_retries + 1,
                    "retry_delay_s": round(delay_s, 1),
                    "error.message": str(e),
                    "error.type": type(e).__name__,
                },
            )

            await asyncio.sleep(delay_s)

    raise AssertionError("unreachable")
