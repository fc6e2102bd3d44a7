"""Sliding-window limiter on the rate of job starts."""

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable
from datetime import timedelta
import logging
import time

logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter:
    """Allow at most ``max_starts`` starts within any trailing ``window``.

    One instance is shared by every worker slot. Callers that cannot get a
    slot are suspended, never rejected, so the limiter only ever delays work.

    Attributes:
        _max_starts: Starts allowed per window.
        _window_seconds: Window length in seconds.
        _clock: Monotonic clock returning seconds.
        _sleep: Coroutine used to suspend until the window frees up.
        _starts: Times of the starts still inside the window, oldest first.
        _lock: Serializes acquirers so they are admitted in arrival order.
    """

    def __init__(
        self,
        max_starts: int = 10,
        window: timedelta = timedelta(milliseconds=1000),
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_starts < 1:
            raise ValueError(f"max_starts must be at least 1, got {max_starts}")
        if window <= timedelta(0):
            raise ValueError(f"window must be positive, got {window}")
        self._max_starts = max_starts
        self._window_seconds = window.total_seconds()
        self._clock = clock
        self._sleep = sleep
        self._starts: deque[float] = deque()
        self._lock = asyncio.Lock()

    @property
    def max_starts(self) -> int:
        return self._max_starts

    @property
    def window(self) -> timedelta:
        return timedelta(seconds=self._window_seconds)

    def _evict(self, now: float) -> None:
        horizon = now - self._window_seconds
        while self._starts and self._starts[0] <= horizon:
            self._starts.popleft()

    async def acquire(self) -> float:
        """Record a start, suspending until the window has room for it.

        Returns:
            The recorded start time, which can be handed back to :meth:`release`.
        """
        async with self._lock:
            while True:
                now = self._clock()
                self._evict(now)
                if len(self._starts) < self._max_starts:
                    self._starts.append(now)
                    return now
                wait = max(self._starts[0] + self._window_seconds - now, 0.0)
                logger.debug(
                    "Rate limit reached, delaying job start.",
                    extra={"wait_seconds": round(wait, 3)},
                )
                await self._sleep(wait)

    def release(self, start: float | None = None) -> None:
        """Refund a start.

        For a caller that acquired a start but then did no work.

        Args:
            start: The time returned by :meth:`acquire`; the most recent
                start is refunded when omitted.
        """
        if start is None:
            if self._starts:
                self._starts.pop()
            return
        try:
            self._starts.remove(start)
        except ValueError:
            logger.debug("Refunded start already left the window.")

    def in_window(self) -> int:
        """Number of starts currently counted against the window."""
        self._evict(self._clock())
        return len(self._starts)
