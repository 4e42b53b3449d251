# =============================================================================
# services/medical_apis/core/rate_limiter.py
# =============================================================================

import asyncio
import logging
import time
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Minimum-spacing gate for one upstream client instance
    Concurrent callers on the same instance queue on the lock, so two calls
    never start closer together than the configured delay.
    """

    def __init__(self, requests_per_minute: int,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        if requests_per_minute <= 0:
            raise ValueError("requests_per_minute must be positive")
        self.delay = 60.0 / requests_per_minute
        self._clock = clock
        self._sleep = sleep
        self._last_call = None
        self._lock = asyncio.Lock()

    async def before_call(self):
        """Block until the delay since the previous call has elapsed"""
        async with self._lock:
            if self._last_call is not None:
                wait = self.delay - (self._clock() - self._last_call)
                if wait > 0:
                    logger.debug(f"Rate limit: waiting {wait:.2f}s")
                    await self._sleep(wait)
            self._last_call = self._clock()
