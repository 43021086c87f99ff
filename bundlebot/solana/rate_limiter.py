"""
Submission throttle shared by every dispatch path.
"""

import asyncio
import time
from loguru import logger

from bundlebot.config import MAX_BUNDLES_PER_SECOND


class RateLimiter:
    """
    Bounds bundle submissions per rolling time window.

    A fixed budget of slots is refilled once per window. When the budget for
    the current window is spent, the caller waits out the remainder of the
    window before the counter resets. Acquisitions are served in arrival
    order.

    One instance is meant to be created per process and handed to every
    dispatcher so the cap is global rather than per caller.
    """

    def __init__(self, max_per_window: int = MAX_BUNDLES_PER_SECOND, window: float = 1.0):
        """
        Initialize the rate limiter.

        Args:
            max_per_window: Number of submissions allowed per window
            window: Window length in seconds
        """
        if max_per_window < 1:
            raise ValueError("max_per_window must be at least 1")
        if window <= 0:
            raise ValueError("window must be positive")

        self.max_per_window = max_per_window
        self.window = window
        self._count = 0
        self._window_start = time.monotonic()
        self._lock = asyncio.Lock()

    @property
    def count(self) -> int:
        """Slots consumed in the current window."""
        return self._count

    async def acquire(self) -> None:
        """Wait until a submission slot is available and consume it."""
        async with self._lock:
            now = time.monotonic()

            if now - self._window_start >= self.window:
                self._count = 0
                self._window_start = now

            if self._count >= self.max_per_window:
                wait_time = self.window - (now - self._window_start)
                logger.debug(
                    f"Rate limit reached, waiting {wait_time:.3f}s",
                    extra={"count": self._count, "max_per_window": self.max_per_window}
                )
                if wait_time > 0:
                    await asyncio.sleep(wait_time)
                self._count = 0
                self._window_start = time.monotonic()

            self._count += 1
