"""Request pacing for rate-limited upstream APIs."""

import asyncio
from time import monotonic
from typing import Awaitable, Callable, Optional


class RateLimiter:
    """Spaces requests so they never exceed a fixed rate.

    Each call to ``acquire`` waits until at least ``1 / requests_per_second``
    seconds have passed since the previous grant. The first request is never
    delayed. One limiter is shared by every caller of the same upstream
    service, so both sync and backfill are paced by the same budget.

    The clock and sleep functions are injectable so pacing can be tested
    against a virtual clock.
    """

    def __init__(
        self,
        requests_per_second: float = 10.0,
        clock: Callable[[], float] = monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")
        self.requests_per_second = requests_per_second
        self._interval = 1.0 / requests_per_second
        self._clock = clock
        self._sleep = sleep
        self._last_request_time: Optional[float] = None
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait until the next request is allowed."""
        async with self._lock:
            if self._last_request_time is not None:
                wait_time = self._interval - (self._clock() - self._last_request_time)
                if wait_time > 0:
                    await self._sleep(wait_time)
            self._last_request_time = self._clock()

    def reset(self) -> None:
        """Forget the last grant so the next request goes through immediately."""
        self._last_request_time = None

    @property
    def interval_seconds(self) -> float:
        return self._interval
