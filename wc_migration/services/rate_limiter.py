"""Shared rate limiter for target API writes."""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Mapping, Optional

logger = logging.getLogger(__name__)

# BigCommerce reports the remaining quota on every response
REMAINING_HEADER = "X-Rate-Limit-Requests-Left"
LOW_QUOTA_THRESHOLD = 20


class RateLimiter:
    """
    Token bucket with a concurrency cap.

    `capacity` requests are allowed per `window` seconds, refilled
    continuously, with at least `min_interval` seconds between request
    starts and at most `max_concurrent` requests in flight.
    """

    def __init__(
        self,
        capacity: int = 140,
        window: float = 30.0,
        min_interval: float = 0.1,
        max_concurrent: int = 10,
        clock=time.monotonic
    ):
        if capacity <= 0 or window <= 0:
            raise ValueError("capacity and window must be positive")
        self.capacity = capacity
        self.window = window
        self.min_interval = min_interval
        self.max_concurrent = max_concurrent
        self._clock = clock

        self._tokens = float(capacity)
        self._updated = clock()
        self._last_start: Optional[float] = None
        self._lock: Optional[asyncio.Lock] = None
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._paused_until = 0.0
        self.requests_left: Optional[int] = None

    @property
    def refill_rate(self) -> float:
        """Tokens per second."""
        return self.capacity / self.window

    def _primitives(self):
        # Created lazily so the limiter can be built outside a running loop
        if self._lock is None:
            self._lock = asyncio.Lock()
            self._semaphore = asyncio.Semaphore(self.max_concurrent)
        return self._lock, self._semaphore

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._updated
        if elapsed > 0:
            self._tokens = min(float(self.capacity), self._tokens + elapsed * self.refill_rate)
            self._updated = now

    def _delay_needed(self) -> float:
        """Seconds until a request may start, 0 if it may start now."""
        self._refill()
        now = self._clock()
        waits = [0.0]
        if self._tokens < 1:
            waits.append((1 - self._tokens) / self.refill_rate)
        if self._last_start is not None:
            waits.append(self._last_start + self.min_interval - now)
        waits.append(self._paused_until - now)
        return max(waits)

    async def acquire(self) -> None:
        """Wait for a token. Does not take a concurrency slot."""
        lock, _ = self._primitives()
        async with lock:
            while True:
                delay = self._delay_needed()
                if delay <= 0:
                    break
                await asyncio.sleep(delay)
            self._tokens -= 1
            self._last_start = self._clock()

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        """Hold a concurrency slot and a token for the duration of one request."""
        _, semaphore = self._primitives()
        async with semaphore:
            await self.acquire()
            yield

    def pause(self, seconds: float) -> None:
        """Hold all requests for a while, e.g. after the target returned 429."""
        until = self._clock() + seconds
        if until > self._paused_until:
            self._paused_until = until
            logger.warning(f"Rate limited by target, pausing requests for {seconds:.1f}s")

    def update_from_headers(self, headers: Mapping[str, str]) -> None:
        """Track the quota the target reports."""
        value = headers.get(REMAINING_HEADER) or headers.get(REMAINING_HEADER.lower())
        if value is None:
            return
        try:
            self.requests_left = int(value)
        except ValueError:
            return
        if self.requests_left < LOW_QUOTA_THRESHOLD:
            logger.warning(f"Target rate limit low: {self.requests_left} requests left in window")


_shared: Optional[RateLimiter] = None


def get_rate_limiter(settings=None) -> RateLimiter:
    """Process-wide limiter shared by every run writing to the target."""
    global _shared
    if _shared is None:
        if settings is None:
            from ..config import get_settings
            settings = get_settings()
        _shared = RateLimiter(
            capacity=settings.rate_limit_requests,
            window=settings.rate_limit_window,
            min_interval=settings.min_request_interval,
            max_concurrent=settings.max_concurrent_requests,
        )
    return _shared


def reset_rate_limiter() -> None:
    global _shared
    _shared = None
