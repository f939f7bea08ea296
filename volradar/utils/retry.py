"""
Retry with exponential backoff for REST calls.

The websocket reconnects on a flat delay and does not use this; it is for
one-shot requests (historical klines, market-open prices) where a transient
failure is worth a few quick retries.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryError(Exception):
    """Raised when retry attempts are exhausted."""

    def __init__(self, message: str, last_exception: Optional[BaseException]):
        super().__init__(message)
        self.last_exception = last_exception


@dataclass(frozen=True)
class RetryPolicy:
    """
    Exponential backoff schedule with optional jitter.

    Example:
        >>> policy = RetryPolicy(base_delay=1.0, multiplier=2.0, jitter=False)
        >>> [policy.delay(n) for n in range(3)]
        [1.0, 2.0, 4.0]
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0
    jitter: bool = True

    def delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-indexed)."""
        delay = min(self.base_delay * (self.multiplier ** attempt), self.max_delay)
        if self.jitter:
            # +/-25%
            delay += random.uniform(-delay * 0.25, delay * 0.25)
        return max(0.0, delay)


async def call_with_retry(
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy = RetryPolicy(),
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    description: str = "call",
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """
    Await ``func()`` until it succeeds or the policy runs out of attempts.

    Raises:
        RetryError: wrapping the last exception once attempts are exhausted
    """
    last_exception: Optional[BaseException] = None

    for attempt in range(policy.max_attempts):
        try:
            return await func()
        except exceptions as e:
            last_exception = e
            logger.warning(f"Attempt {attempt + 1}/{policy.max_attempts} failed for {description}: {e}")
            if attempt < policy.max_attempts - 1:
                delay = policy.delay(attempt)
                logger.debug(f"Retrying {description} in {delay:.2f}s")
                await sleep(delay)

    message = f"{description} failed after {policy.max_attempts} attempts. Last error: {last_exception}"
    logger.error(message)
    raise RetryError(message, last_exception)
