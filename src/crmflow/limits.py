"""Sliding-window rate limiting for outbound calls.

One limiter instance guards one budget: the record store and the language
model each get their own, so a burst of record queries never starves the
model calls (and vice versa).
"""

import asyncio
import collections
import logging
import time

logger = logging.getLogger(__name__)

# Small margin so the oldest call has definitely left the window on wake-up
_SLEEP_PADDING = 0.1


class RateLimiter:
    """Sliding-window rate limiter. Tracks call timestamps and sleeps
    before issuing a call that would exceed the per-window budget.

    Calls are delayed, never dropped. Async-safe via asyncio.Lock, so
    concurrent pipeline runs sharing one limiter don't all decide they
    can go at once.
    """

    def __init__(self, max_calls: int, window: float = 60.0, name: str = "calls"):
        self.max_calls = max_calls
        self.window = window
        self.name = name
        self._timestamps: collections.deque[float] = collections.deque()
        self._lock = asyncio.Lock()

    async def wait(self) -> float:
        """Wait until a call fits in the window, then record it.

        Returns the number of seconds slept (0.0 when there was capacity).
        """
        if self.max_calls <= 0:
            return 0.0
        slept = 0.0
        async with self._lock:
            now = time.monotonic()
            self._purge(now)
            if len(self._timestamps) >= self.max_calls:
                oldest = self._timestamps[0]
                sleep_for = self.window - (now - oldest) + _SLEEP_PADDING
                if sleep_for > 0:
                    logger.debug(
                        f"Rate limiter ({self.name}): sleeping {sleep_for:.2f}s "
                        f"({self.max_calls} per {self.window:.0f}s)"
                    )
                    await asyncio.sleep(sleep_for)
                    slept = sleep_for
                self._purge(time.monotonic())
            self._timestamps.append(time.monotonic())
        return slept

    @property
    def in_window(self) -> int:
        """Number of calls currently counted against the budget."""
        self._purge(time.monotonic())
        return len(self._timestamps)

    def _purge(self, now: float) -> None:
        cutoff = now - self.window
        while self._timestamps and self._timestamps[0] < cutoff:
            self._timestamps.popleft()
