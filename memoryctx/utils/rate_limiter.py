"""
Sliding-window rate limiter for the interface layer.

The limiter is an explicit object handed to whoever needs it; the number of
tracked callers is bounded and the least recently seen caller is evicted first.
"""

import threading
import time
from collections import OrderedDict, deque
from typing import Callable, Deque

from ..services.errors import RateLimitExceededError
from .config import RateLimitConfig
from .logging_config import get_logger

logger = get_logger(__name__)


class SlidingWindowRateLimiter:
    """Allow at most ``max_requests`` per key within ``window_seconds``."""

    def __init__(self, max_requests: int, window_seconds: float, max_keys: int = 10000, clock: Callable[[], float] = time.monotonic):
        if max_requests <= 0 or window_seconds <= 0 or max_keys <= 0:
            raise ValueError('rate limiter bounds must be positive')
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.max_keys = max_keys
        self._clock = clock
        self._windows: 'OrderedDict[str, Deque[float]]' = OrderedDict()
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: RateLimitConfig) -> 'SlidingWindowRateLimiter':
        return cls(config.max_requests, config.window_seconds, config.max_keys)

    def check(self, key: str) -> None:
        """
        Record one request for ``key``.

        Raises:
            RateLimitExceededError: If the key already used its window
        """
        now = self._clock()
        with self._lock:
            window = self._windows.get(key)
            if window is None:
                window = deque()
                self._windows[key] = window
            self._windows.move_to_end(key)

            while window and window[0] <= now - self.window_seconds:
                window.popleft()

            if len(window) >= self.max_requests:
                retry_after = window[0] + self.window_seconds - now
                logger.warning(f'Rate limit exceeded for {key}')
                raise RateLimitExceededError(key, retry_after)

            window.append(now)

            while len(self._windows) > self.max_keys:
                self._windows.popitem(last=False)

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._windows)
