from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Optional


class SubmitThrottle:
    """
    Minimum spacing between consecutive dispatches. The first `wait()` returns at
    once; each later one sleeps only for what is left of `interval_s` since the
    previous dispatch. Clock and sleep are injectable so tests can run on virtual
    time, and a pending wait is cancellable like any other await.
    """

    def __init__(
        self,
        interval_s: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if interval_s < 0:
            raise ValueError("interval_s must be >= 0")
        self.interval_s = float(interval_s)
        self._clock = clock
        self._sleep = sleep
        self._last: Optional[float] = None

    async def wait(self) -> float:
        """Block until the next dispatch is allowed; returns the time slept."""
        slept = 0.0
        if self._last is not None:
            remaining = self.interval_s - (self._clock() - self._last)
            if remaining > 0:
                await self._sleep(remaining)
                slept = remaining
        self._last = self._clock()
        return slept
