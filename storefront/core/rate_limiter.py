"""In-memory sliding-window rate limiter for coupon code lookups."""

import time
from collections import defaultdict, deque
from threading import Lock


class RateLimiter:
    """Sliding-window limiter keyed by caller (user id or client address).

    Coupon validation is a public endpoint, so each caller gets a bounded
    number of guesses per window. Callers idle for a whole window are
    forgotten.
    """

    def __init__(self, max_requests: int, window_seconds: int = 60):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._hits: dict[str, deque[float]] = defaultdict(deque)
        self._last_sweep = time.monotonic()
        self._lock = Lock()

    def _prune(self, hits: deque[float], now: float) -> None:
        cutoff = now - self.window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()

    def _sweep(self, now: float) -> None:
        """Drop every key with no hits left in the window."""
        if now - self._last_sweep < self.window_seconds:
            return
        self._last_sweep = now
        cutoff = now - self.window_seconds
        for key in [key for key, hits in self._hits.items() if not hits or hits[-1] <= cutoff]:
            del self._hits[key]

    def is_allowed(self, key: str) -> bool:
        """Record a hit for ``key`` and return False once the window is full."""
        now = time.monotonic()
        with self._lock:
            self._sweep(now)
            hits = self._hits[key]
            self._prune(hits, now)
            if len(hits) >= self.max_requests:
                return False
            hits.append(now)
            return True

    def retry_after(self, key: str) -> int:
        """Seconds until ``key`` gets a free slot (0 if it has one now)."""
        now = time.monotonic()
        with self._lock:
            hits = self._hits.get(key)
            if not hits:
                return 0
            self._prune(hits, now)
            if not hits:
                del self._hits[key]
                return 0
            if len(hits) < self.max_requests:
                return 0
            return max(1, int(hits[0] + self.window_seconds - now) + 1)

    def tracked_keys(self) -> int:
        """Number of callers currently held in memory."""
        with self._lock:
            return len(self._hits)

    def reset(self) -> None:
        """Clear all tracked state."""
        with self._lock:
            self._hits.clear()
            self._last_sweep = time.monotonic()
