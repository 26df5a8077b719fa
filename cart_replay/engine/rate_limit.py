"""Per-adapter request pacing."""

from __future__ import annotations

import asyncio
import time
from datetime import date
from typing import Awaitable, Callable

import structlog

from ..errors import RateLimitExhausted


class RateLimiter:
    """Space requests ``min_interval`` seconds apart and cap them per day.

    One instance is owned by an adapter and shared by every fetch it runs, so
    the pacing state never lives at module level.
    """

    def __init__(
        self,
        min_interval: float = 0.0,
        daily_max: int | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        today: Callable[[], date] = date.today,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.min_interval = min_interval
        self.daily_max = daily_max
        self._clock = clock
        self._sleep = sleep
        self._today = today
        self._last_request: float | None = None
        self._day = today()
        self._count = 0
        self._lock = asyncio.Lock()
        self.logger = logger or structlog.get_logger("cart_replay.rate_limit")

    @property
    def requests_today(self) -> int:
        return self._count

    async def acquire(self) -> None:
        async with self._lock:
            current_day = self._today()
            if current_day != self._day:
                self._day = current_day
                self._count = 0
            if self.daily_max is not None and self._count >= self.daily_max:
                raise RateLimitExhausted(self.daily_max)
            if self._last_request is not None and self.min_interval > 0:
                elapsed = self._clock() - self._last_request
                if elapsed < self.min_interval:
                    wait = self.min_interval - elapsed
                    self.logger.debug("rate_limit_wait", seconds=round(wait, 3))
                    await self._sleep(wait)
            self._last_request = self._clock()
            self._count += 1


__all__ = ["RateLimiter"]
