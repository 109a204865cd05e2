"""Sliding-window rate limiter for job starts."""

import asyncio
import time
from collections import deque


class RateLimiter:
    """At most ``max_calls`` acquisitions in any ``window_seconds`` span."""

    def __init__(self, max_calls: int = 100, window_seconds: float = 1.0):
        self.max_calls = max_calls
        self.window_seconds = window_seconds
        self._calls: deque[float] = deque()
        self._lock = asyncio.Lock()

    def _prune(self, now: float) -> None:
        while self._calls and now - self._calls[0] >= self.window_seconds:
            self._calls.popleft()

    async def acquire(self) -> None:
        """Wait until a slot is free, then take it."""
        async with self._lock:
            while True:
                now = time.monotonic()
                self._prune(now)
                if len(self._calls) < self.max_calls:
                    self._calls.append(now)
                    return
                await asyncio.sleep(self.window_seconds - (now - self._calls[0]))

    @property
    def in_window(self) -> int:
        self._prune(time.monotonic())
        return len(self._calls)
