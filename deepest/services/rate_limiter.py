"""Fixed-window request pacing for outbound collaborator calls."""
from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable

from loguru import logger

WINDOW_SECONDS = 60.0


class RateLimiter:
    """Allow at most ``requests_per_minute`` calls per 60-second window.

    The window starts at the first call after the previous window elapsed.
    Bursts at window boundaries are allowed. ``0`` disables pacing.
    """

    def __init__(
        self,
        requests_per_minute: int,
        *,
        name: str = "",
        interval: float = WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.requests_per_minute = max(int(requests_per_minute), 0)
        self.name = name
        self.interval = interval
        self._clock = clock
        self._sleep = sleep
        self._window_start: float | None = None
        self._count = 0
        self._lock = asyncio.Lock()

    @property
    def unlimited(self) -> bool:
        return self.requests_per_minute == 0

    async def wait_for_next(self) -> bool:
        """Wait until another request may start. Returns True if the caller was suspended."""
        if self.unlimited:
            return False

        async with self._lock:
            now = self._clock()
            if self._window_start is None or now - self._window_start >= self.interval:
                self._window_start = now
                self._count = 0

            suspended = False
            if self._count >= self.requests_per_minute:
                wait_time = max(self.interval - (now - self._window_start), 0.0)
                logger.debug(
                    f"Rate limit reached for {self.name or 'provider'} "
                    f"({self.requests_per_minute}/min), waiting {wait_time:.1f}s"
                )
                await self._sleep(wait_time)
                self._window_start = self._clock()
                self._count = 0
                suspended = True

            self._count += 1
            return suspended


class LimiterRegistry:
    """One limiter per provider name, shared by every run in the process."""

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._clock = clock
        self._sleep = sleep
        self._limiters: dict[str, RateLimiter] = {}

    def limiter_for(self, name: str, requests_per_minute: int) -> RateLimiter:
        key = name.lower().strip()
        limiter = self._limiters.get(key)
        # a changed limit starts a fresh window
        if limiter is None or limiter.requests_per_minute != max(int(requests_per_minute), 0):
            limiter = RateLimiter(requests_per_minute, name=key, clock=self._clock, sleep=self._sleep)
            self._limiters[key] = limiter
        return limiter


shared_limiters = LimiterRegistry()
