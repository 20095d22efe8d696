"""
Sliding-window rate limiters for job starts.

At most ``max_calls`` job starts are allowed in any ``period`` seconds.
``RateLimiter`` counts starts in memory for the threads of one process;
``SharedRateLimiter`` records them in the queue file so the window holds
across every worker process attached to the same queue.
"""

from __future__ import annotations

import collections
import logging
import threading
import time
from typing import Callable, Optional

from crosspost.queue.broker import JobQueue

logger = logging.getLogger(__name__)


class RateLimiter:
    def __init__(
        self,
        max_calls: int,
        period: float,
        *,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        if max_calls < 1:
            raise ValueError("max_calls must be at least 1")
        if period <= 0:
            raise ValueError("period must be positive")
        self.max_calls = max_calls
        self.period = period
        self._clock = clock or time.monotonic
        self._sleep = sleep or time.sleep
        self._calls: collections.deque[float] = collections.deque()
        self._lock = threading.Lock()

    def _evict(self, now: float) -> None:
        while self._calls and now - self._calls[0] >= self.period:
            self._calls.popleft()

    def try_acquire(self) -> float:
        """Take a slot if one is free.  Returns 0.0, or the seconds until one frees up."""
        with self._lock:
            now = self._clock()
            self._evict(now)
            if len(self._calls) < self.max_calls:
                self._calls.append(now)
                return 0.0
            return self.period - (now - self._calls[0])

    def acquire(self) -> float:
        """Block until a slot is free.  Returns the total time waited."""
        waited = 0.0
        while True:
            wait = self.try_acquire()
            if wait <= 0:
                return waited
            logger.debug("Rate limit reached; waiting %.3fs", wait)
            self._sleep(wait)
            waited += wait


class SharedRateLimiter(RateLimiter):
    """Window kept in the queue's ``job_starts`` table, on the queue's clock."""

    def __init__(
        self,
        queue: JobQueue,
        max_calls: int,
        period: float,
        *,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        super().__init__(max_calls, period, clock=queue.now, sleep=sleep)
        self.queue = queue

    def try_acquire(self) -> float:
        return self.queue.reserve_start(self.max_calls, self.period)
