"""Sliding-window limiter for outbound carrier requests.

One instance is shared by every fetch in the process. ``allow`` prunes,
checks and records under a single lock so two callers can never both
take the last slot.
"""

import asyncio
import logging
import threading
import time
from collections import deque
from collections.abc import Awaitable, Callable

from tracksync.config import RateLimitConfig

logger = logging.getLogger(__name__)


class RateLimiter:
    """Allow at most ``max_requests`` calls per ``window_seconds``."""

    def __init__(
        self,
        window_seconds: float = 60.0,
        max_requests: int = 100,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self._clock = clock
        self._sleep = sleep
        self._requests: deque[float] = deque()
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: RateLimitConfig) -> "RateLimiter":
        return cls(window_seconds=config.window_seconds, max_requests=config.max_requests)

    def _prune(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self._requests and self._requests[0] < cutoff:
            self._requests.popleft()

    def allow(self) -> bool:
        """Record a request and return True if the window has room."""
        with self._lock:
            now = self._clock()
            self._prune(now)
            if len(self._requests) >= self.max_requests:
                return False
            self._requests.append(now)
            return True

    def reset(self) -> None:
        """Forget every recorded request."""
        with self._lock:
            self._requests.clear()

    @property
    def in_window(self) -> int:
        """Number of requests currently counted against the window."""
        with self._lock:
            self._prune(self._clock())
            return len(self._requests)

    async def wait_and_reset(self) -> None:
        """Sleep out a full window, then clear state."""
        logger.info(
            "Rate limit of %d requests per %.0fs reached, waiting",
            self.max_requests,
            self.window_seconds,
        )
        await self._sleep(self.window_seconds)
        self.reset()


_shared_limiters: dict[tuple[float, int], RateLimiter] = {}
_shared_lock = threading.Lock()


def get_rate_limiter(config: RateLimitConfig) -> RateLimiter:
    """Return the process-wide limiter for these window settings.

    Every run and single-order refresh in the process draws from the same
    window, so back-to-back scheduler runs cannot exceed the carrier limit.
    """
    key = (float(config.window_seconds), config.max_requests)
    with _shared_lock:
        limiter = _shared_limiters.get(key)
        if limiter is None:
            limiter = _shared_limiters[key] = RateLimiter.from_config(config)
        return limiter
