"""Exponential backoff for target writes."""

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, TypeVar

from ..errors import RateLimitError, is_retriable

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    factor: float = 2.0,
    jitter: float = 0.0
) -> float:
    """Delay before retry number `attempt` (1-based)."""
    delay = base_delay * (factor ** (attempt - 1))
    if jitter:
        delay += random.uniform(0, jitter * delay)
    return min(delay, max_delay)


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    factor: float = 2.0,
    on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
) -> T:
    """
    Call `fn` until it succeeds or the retries run out.

    Only transient errors (rate limits, 5xx, connection failures) are
    retried. A rate-limit error's retry_after wins over the computed backoff.

    Args:
        fn: Zero-argument coroutine function
        attempts: Total calls, including the first

    Raises:
        The last error once retries are exhausted, or any non-retriable error
    """
    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as e:
            if not is_retriable(e) or attempt + 1 >= attempts:
                raise

            attempt += 1
            delay = backoff_delay(attempt, base_delay, max_delay, factor)
            if isinstance(e, RateLimitError) and e.retry_after is not None:
                delay = min(max(e.retry_after, 0.0), max_delay)

            logger.warning(f"Retry {attempt}/{attempts - 1} in {delay:.1f}s: {e}")
            if on_retry:
                on_retry(attempt, e, delay)
            await sleep(delay)
