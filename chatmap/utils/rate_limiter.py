"""
Client-side rate limiting for external services.

A RateLimiter enforces two constraints on admission:
- a minimum interval between consecutive requests
- an optional burst cap of `max_requests` per rolling `window`

Admission is serialised through an asyncio.Lock, so waiters are admitted in
arrival order. Only admission is serialised; the admitted operation runs
outside the lock.
"""

import asyncio
import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, TypeVar

T = TypeVar('T')

logger = logging.getLogger(__name__)


class RateLimiter:
    """Minimum-interval plus rolling-window limiter (times in seconds)."""

    def __init__(
        self,
        interval: float = 0.0,
        max_requests: Optional[int] = None,
        window: float = 60.0,
        on_throttle: Optional[Callable[[float], None]] = None,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
    ):
        if interval < 0:
            raise ValueError(f"interval must be >= 0, got {interval}")
        if max_requests is not None and max_requests < 1:
            raise ValueError(f"max_requests must be >= 1, got {max_requests}")
        self.name = name
        self.interval = interval
        self.max_requests = max_requests
        self.window = window
        self.on_throttle = on_throttle
        self._clock = clock
        self._lock = asyncio.Lock()
        self._last_request: Optional[float] = None
        self._history: Deque[float] = deque()
        self._throttled = 0
        self._admitted = 0

    def _prune(self, now: float) -> None:
        cutoff = now - self.window
        while self._history and self._history[0] <= cutoff:
            self._history.popleft()

    def _wait_time(self, now: float) -> float:
        interval_wait = 0.0
        if self._last_request is not None:
            interval_wait = max(0.0, self.interval - (now - self._last_request))

        burst_wait = 0.0
        if self.max_requests is not None:
            self._prune(now)
            if len(self._history) >= self.max_requests:
                burst_wait = max(0.0, self._history[0] + self.window - now)

        return max(interval_wait, burst_wait)

    async def acquire(self) -> None:
        """Wait until a request may be issued, then record it."""
        async with self._lock:
            while True:
                wait = self._wait_time(self._clock())
                if wait <= 0:
                    break
                self._throttled += 1
                if self.on_throttle is not None:
                    self.on_throttle(wait)
                logger.debug("Rate limiter %s throttling for %.3fs", self.name, wait)
                await asyncio.sleep(wait)

            now = self._clock()
            self._last_request = now
            if self.max_requests is not None:
                self._history.append(now)
            self._admitted += 1

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Admit one request, then run `operation`."""
        await self.acquire()
        return await operation()

    def reset(self) -> None:
        self._last_request = None
        self._history.clear()
        self._throttled = 0
        self._admitted = 0

    def get_stats(self) -> Dict[str, Any]:
        now = self._clock()
        if self.max_requests is not None:
            self._prune(now)
        return {
            'name': self.name,
            'admitted': self._admitted,
            'throttled': self._throttled,
            'requests_in_window': len(self._history),
            'max_requests': self.max_requests,
            'window': self.window,
            'interval': self.interval,
            'seconds_since_last': None if self._last_request is None else now - self._last_request,
        }


class RateLimiterRegistry:
    """Named limiters shared by every client of the same service."""

    def __init__(self):
        self._limiters: Dict[str, RateLimiter] = {}

    def get(self, name: str, **options) -> RateLimiter:
        """Return the limiter for `name`, creating it with `options` on first use."""
        limiter = self._limiters.get(name)
        if limiter is None:
            limiter = RateLimiter(name=name, **options)
            self._limiters[name] = limiter
        return limiter

    def get_all_stats(self) -> Dict[str, Dict[str, Any]]:
        return {name: limiter.get_stats() for name, limiter in self._limiters.items()}
