"""Process-local fixed-window rate limiting."""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional


@dataclass
class _Window:
    count: int
    reset_at: float


class FixedWindowRateLimiter:
    """
    ``max_requests`` per ``window_ms`` per key.

    A window opens on the first allowed request and resets once it has
    elapsed. Rejected requests do not count against the quota.
    """

    def __init__(self, max_requests: int = 3, window_ms: int = 60000,
                 clock: Callable[[], float] = time.monotonic):
        self.max_requests = max_requests
        self.window_ms = window_ms
        self.clock = clock
        self._windows: Dict[str, _Window] = {}
        self._lock = threading.Lock()

    def check(self, key: str, limit: Optional[int] = None, window_ms: Optional[int] = None) -> bool:
        limit = self.max_requests if limit is None else limit
        window_s = (self.window_ms if window_ms is None else window_ms) / 1000.0
        now = self.clock()
        with self._lock:
            window = self._windows.get(key)
            if window is None or now >= window.reset_at:
                self._windows[key] = _Window(1, now + window_s)
                return True
            if window.count >= limit:
                return False
            window.count += 1
            return True

    def remaining(self, key: str, limit: Optional[int] = None) -> int:
        limit = self.max_requests if limit is None else limit
        now = self.clock()
        with self._lock:
            window = self._windows.get(key)
            if window is None or now >= window.reset_at:
                return limit
            return max(0, limit - window.count)

    def reset(self, key: Optional[str] = None):
        with self._lock:
            if key is None:
                self._windows.clear()
            else:
                self._windows.pop(key, None)
