"""
Sliding-window admission control.

Budgets outbound calls over a trailing time window.
"""

import threading
import time
from collections import deque
from typing import Callable, Deque, Tuple


class AdmissionController:
    """Sliding-window rate limiter shared by every logical request.

    Timestamps older than ``window`` seconds are purged on every access, so
    every retained timestamp satisfies ``now - timestamp < window``.
    """

    def __init__(
        self,
        limit: int = 20,
        window: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the controller.

        Args:
            limit: Maximum calls admitted per window
            window: Window length in seconds
            clock: Monotonic clock returning seconds

        Raises:
            ValueError: If limit or window is not positive
        """
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if window <= 0:
            raise ValueError("window must be > 0")

        self.limit = limit
        self.window = window
        self._clock = clock
        self._calls: Deque[float] = deque()
        self._lock = threading.Lock()

    def _purge(self, now: float) -> None:
        while self._calls and now - self._calls[0] >= self.window:
            self._calls.popleft()

    def record_call(self) -> None:
        """Append the current timestamp and purge stale entries."""
        with self._lock:
            now = self._clock()
            self._calls.append(now)
            self._purge(now)

    def can_proceed(self) -> bool:
        """Report whether another call fits in the current window."""
        with self._lock:
            self._purge(self._clock())
            return len(self._calls) < self.limit

    def wait_time(self) -> float:
        """Seconds until the oldest retained call leaves the window.

        Returns 0 when a call can proceed right now. Never negative.
        """
        with self._lock:
            now = self._clock()
            self._purge(now)
            if len(self._calls) < self.limit or not self._calls:
                return 0.0
            return max(0.0, self._calls[0] + self.window - now)

    def snapshot(self) -> Tuple[float, ...]:
        """Retained timestamps, oldest first."""
        with self._lock:
            self._purge(self._clock())
            return tuple(self._calls)

    def __len__(self) -> int:
        return len(self.snapshot())
