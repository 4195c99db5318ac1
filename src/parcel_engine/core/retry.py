"""Retry utilities with exponential backoff.

Used for the routing API and for best-effort database writes that run
after the caller's operation has already succeeded (coupon usage).
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from .exceptions import TransientError

T = TypeVar("T")
logger = logging.getLogger(__name__)

RetryCallback = Callable[[Exception, int], None]


@dataclass
class RetryConfig:
    max_attempts: int = 3
    base_delay: float = 0.5
    multiplier: float = 2.0
    max_delay: float = 30.0
    retryable_exceptions: tuple[type[Exception], ...] = field(
        default_factory=lambda: (TransientError,)
    )

    def delay_for(self, attempt: int) -> float:
        return min(self.base_delay * (self.multiplier**attempt), self.max_delay)


def _backoff(
    error: Exception,
    attempt: int,
    config: RetryConfig,
    operation_name: str,
    on_retry: RetryCallback | None,
) -> float:
    """Delay before the next attempt. Re-raises when attempts are used up."""
    if attempt >= config.max_attempts - 1:
        logger.error(f"{operation_name} failed after {config.max_attempts} attempts: {error}")
        raise error

    delay = config.delay_for(attempt)
    logger.warning(
        f"{operation_name} failed (attempt {attempt + 1}/{config.max_attempts}), "
        f"retrying in {delay:.1f}s: {error}"
    )
    if on_retry:
        on_retry(error, attempt)
    return delay


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    operation_name: str = "operation",
    on_retry: RetryCallback | None = None,
) -> T:
    """Execute async operation with exponential backoff retry."""
    config = config or RetryConfig()
    attempt = 0
    while True:
        try:
            return await operation()
        except config.retryable_exceptions as e:
            delay = _backoff(e, attempt, config, operation_name, on_retry)
        await asyncio.sleep(delay)
        attempt += 1


def with_retry_sync(
    operation: Callable[[], T],
    config: RetryConfig | None = None,
    operation_name: str = "operation",
    on_retry: RetryCallback | None = None,
) -> T:
    """Synchronous version of with_retry."""
    config = config or RetryConfig()
    attempt = 0
    while True:
        try:
            return operation()
        except config.retryable_exceptions as e:
            delay = _backoff(e, attempt, config, operation_name, on_retry)
        time.sleep(delay)
        attempt += 1
