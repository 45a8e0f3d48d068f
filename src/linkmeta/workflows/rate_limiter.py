"""Sliding-window request limiter shared by the provider API clients."""

from __future__ import annotations

import asyncio
import threading
import time
from collections import deque
from typing import Callable, Deque


class SlidingWindowRateLimiter:
    """Bound the number of requests inside the trailing ``window`` seconds.

    ``allow`` never blocks and is meant for best-effort callers that would
    rather skip work than wait. ``wait`` sleeps until the oldest logged request
    ages out of the window and re-checks under the lock, so concurrent waiters
    never overshoot the limit. A non-positive limit or window disables limiting.
    """

    def __init__(
        self,
        limit: int,
        window: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limit = int(limit)
        self.window = float(window)
        self._clock = clock
        self._log: Deque[float] = deque()
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.limit > 0 and self.window > 0

    def _prune(self, now: float) -> None:
        cutoff = now - self.window
        while self._log and self._log[0] <= cutoff:
            self._log.popleft()

    def _try_acquire(self) -> float:
        """Record a request and return 0, or return seconds until a slot frees."""

        with self._lock:
            now = self._clock()
            self._prune(now)
            if len(self._log) < self.limit:
                self._log.append(now)
                return 0.0
            return max(self._log[0] + self.window - now, 0.0)

    def allow(self) -> bool:
        if not self.enabled:
            return True
        return self._try_acquire() == 0.0

    async def wait(self) -> None:
        if not self.enabled:
            return
        while True:
            wait_for = self._try_acquire()
            if wait_for == 0.0:
                return
            await asyncio.sleep(max(wait_for, 0.001))

    def pending(self) -> int:
        """Number of requests currently counted inside the window."""

        with self._lock:
            self._prune(self._clock())
            return len(self._log)


__all__ = ["SlidingWindowRateLimiter"]
