"""Fixed-window rate limiter for the outbound notification path."""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from .config import RateLimitConfig

logger = logging.getLogger("mailgram")


class RateLimitExceeded(Exception):
    """Raised when a send is attempted after the window's quota is spent."""


@dataclass
class RateLimitWindow:
    window_start: float  # Clock reading in seconds
    count: int
    window_duration_ms: int
    max_requests: int

    @property
    def window_end(self) -> float:
        return self.window_start + self.window_duration_ms / 1000


class RateLimiter:
    """Allow at most ``max_requests`` acquisitions per fixed window.

    The counter resets the first time a check happens at or after the end of
    the current window. Rejected acquisitions are not queued.
    """

    def __init__(self, config: RateLimitConfig, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._limit_description = f"{config.max_requests} requests per {config.window_ms}ms"
        self._window = RateLimitWindow(
            window_start=clock(),
            count=0,
            window_duration_ms=config.window_ms,
            max_requests=config.max_requests,
        )

    def try_acquire(self) -> bool:
        """Atomically check and count one request.

        Returns:
            True if the request fits in the current window, False otherwise
        """
        with self._lock:
            now = self._clock()
            window = self._window
            if now >= window.window_end:
                window.window_start = now
                window.count = 0

            if window.count >= window.max_requests:
                return False

            window.count += 1
            return True

    def acquire(self) -> None:
        """Count one request or raise RateLimitExceeded."""
        if not self.try_acquire():
            raise RateLimitExceeded(f"Rate limit exceeded: {self._limit_description}")
