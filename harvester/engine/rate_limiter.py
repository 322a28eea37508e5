"""Sliding-window request throttle shared across jobs."""

from __future__ import annotations

import asyncio
import time
from collections import deque
from typing import Awaitable, Callable

import structlog

from ..config import RateLimitConfig

WINDOW_SECONDS = 60.0


class RateLimiter:
    """Allow at most ``requests_per_minute`` requests in any trailing 60 seconds.

    Waiters are serialised by an ``asyncio.Lock`` so a woken caller re-checks
    the window before recording its timestamp. The limiter belongs to one
    event loop; it is not thread-safe.
    """

    def __init__(
        self,
        requests_per_minute: int = 60,
        burst_limit: int = 10,
        *,
        window: float = WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if requests_per_minute < 1:
            raise ValueError("requests_per_minute must be >= 1")
        self.requests_per_minute = requests_per_minute
        self.burst_limit = burst_limit
        self.window = window
        self._clock = clock
        self._sleep = sleep
        self._timestamps: deque[float] = deque()
        self._lock = asyncio.Lock()
        self.logger = structlog.get_logger("harvester.rate_limiter")

    @classmethod
    def from_config(cls, config: RateLimitConfig, **kwargs) -> "RateLimiter":
        return cls(config.requests_per_minute, config.burst_limit, **kwargs)

    def _purge(self, now: float) -> None:
        cutoff = now - self.window
        while self._timestamps and self._timestamps[0] <= cutoff:
            self._timestamps.popleft()

    async def acquire(self) -> float:
        """Block until a request may go out, record it, and return the time waited."""

        waited = 0.0
        async with self._lock:
            while True:
                now = self._clock()
                self._purge(now)
                if len(self._timestamps) < self.requests_per_minute:
                    self._timestamps.append(now)
                    return waited
                wait_for = max(0.0, self._timestamps[0] + self.window - now)
                self.logger.debug(
                    "rate_limit_wait",
                    wait_seconds=round(wait_for, 3),
                    in_window=len(self._timestamps),
                )
                await self._sleep(wait_for)
                waited += wait_for

    def request_count(self) -> int:
        self._purge(self._clock())
        return len(self._timestamps)


__all__ = ["RateLimiter", "WINDOW_SECONDS"]
