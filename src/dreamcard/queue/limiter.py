"""Sliding-window rate limiter for job starts."""

from __future__ import annotations

import asyncio
import time
from collections import deque
from typing import TYPE_CHECKING

from dreamcard.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

log = get_logger(__name__)


class RateLimiter:
    """Allow at most *max_calls* acquisitions in any *period*-second window.

    Shared by every worker slot in a process; waiting callers are served in
    arrival order.

    Args:
        max_calls: Acquisitions allowed per window.
        period: Window length in seconds.
        clock: Monotonic time source (injectable for tests).
        sleep: Coroutine used to wait (injectable for tests).
    """

    def __init__(
        self,
        max_calls: int = 10,
        period: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_calls < 1:
            raise ValueError("max_calls must be at least 1")
        self.max_calls = max_calls
        self.period = period
        self._clock = clock
        self._sleep = sleep
        self._starts: deque[float] = deque()
        self._lock = asyncio.Lock()

    def _evict(self, now: float) -> None:
        while self._starts and now - self._starts[0] >= self.period:
            self._starts.popleft()

    @property
    def available(self) -> int:
        """Acquisitions possible right now without waiting."""
        self._evict(self._clock())
        return self.max_calls - len(self._starts)

    async def acquire(self) -> None:
        """Wait until a slot in the window is free, then take it."""
        async with self._lock:
            while True:
                now = self._clock()
                self._evict(now)
                if len(self._starts) < self.max_calls:
                    self._starts.append(now)
                    return
                wait = self.period - (now - self._starts[0])
                log.debug("rate_limit_wait", seconds=round(wait, 2))
                await self._sleep(wait)
