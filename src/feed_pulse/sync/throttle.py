"""Request admission throttle shared by concurrent feed syncs."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60.0


class RequestThrottle:
    """Sliding one-minute window with a burst cap.

    ``acquire`` blocks while the window is full or the burst budget is spent,
    waiting until the oldest admitted request leaves the window (never longer
    than ``max_backoff_seconds`` per wait).
    """

    def __init__(
        self,
        *,
        requests_per_minute: int = 30,
        burst_limit: int = 10,
        max_backoff_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.requests_per_minute = requests_per_minute
        self.burst_limit = burst_limit
        self.max_backoff_seconds = max_backoff_seconds
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._admitted: deque[float] = deque()
        self._burst_count = 0
        self._burst_started_at = clock()

    def acquire(self) -> float:
        """Wait for admission; return the total seconds spent waiting."""

        waited = 0.0
        with self._lock:
            while True:
                now = self._clock()
                self._prune(now)
                if now - self._burst_started_at >= WINDOW_SECONDS:
                    self._burst_count = 0
                    self._burst_started_at = now
                if (
                    len(self._admitted) < self.requests_per_minute
                    and self._burst_count < self.burst_limit
                ):
                    self._admitted.append(now)
                    self._burst_count += 1
                    return waited

                wait = self._wait_seconds(now)
                logger.debug("Request throttle full, waiting %.2fs", wait)
                self._sleep(wait)
                waited += wait

    def _prune(self, now: float) -> None:
        while self._admitted and now - self._admitted[0] >= WINDOW_SECONDS:
            self._admitted.popleft()

    def _wait_seconds(self, now: float) -> float:
        if len(self._admitted) >= self.requests_per_minute and self._admitted:
            until_free = WINDOW_SECONDS - (now - self._admitted[0])
        else:
            until_free = WINDOW_SECONDS - (now - self._burst_started_at)
        return max(0.01, min(until_free, self.max_backoff_seconds))
