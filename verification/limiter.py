"""
verification/limiter.py -- Sliding-window attempt counters for code sends.

slowapi (api/limiter.py) throttles whole routes per IP. Sending a code needs
more than that: the decision depends on two keys at once (the requester's IP
and the contact being targeted), and the contact key only exists after the
body has been parsed. AttemptLimiter exposes the same `limits` machinery
slowapi is built on, keyed by arbitrary strings.

Strategy:
  MovingWindowRateLimiter -- every hit is timestamped and the limit applies
  to the last `window_seconds`, so the window slides with each attempt
  instead of resetting on a fixed bucket boundary.

Atomicity:
  hit() is a single acquire in the storage backend (lock-protected for
  memory://, server-side for redis://). The gate tests both keys and then
  hits both, so concurrent requests can overshoot by at most
  (concurrency - 1) attempts, never more.
"""

from __future__ import annotations

import math
import time

from limits import RateLimitItemPerSecond
from limits.storage import storage_from_string
from limits.strategies import MovingWindowRateLimiter


class AttemptLimiter:
    """Per-key attempt counter with a sliding window.

    Usage:
        limiter = AttemptLimiter()
        if limiter.too_many_attempts(key, 3, 300):
            ...reject...
        limiter.hit(key, 3, 300)
    """

    def __init__(self, storage_uri: str = "memory://") -> None:
        self._storage = storage_from_string(storage_uri)
        self._strategy = MovingWindowRateLimiter(self._storage)

    @staticmethod
    def _item(max_attempts: int, window_seconds: int) -> RateLimitItemPerSecond:
        return RateLimitItemPerSecond(max_attempts, window_seconds)

    def too_many_attempts(self, key: str, max_attempts: int, window_seconds: int) -> bool:
        """True if `key` has already used all `max_attempts` inside the window."""
        return not self._strategy.test(self._item(max_attempts, window_seconds), key)

    def hit(self, key: str, max_attempts: int, window_seconds: int) -> bool:
        """Record one attempt. Returns False if the key was already at the limit."""
        return self._strategy.hit(self._item(max_attempts, window_seconds), key)

    def available_in(self, key: str, max_attempts: int, window_seconds: int) -> int:
        """Seconds until the oldest attempt in the window falls out (0 if not limited)."""
        stats = self._strategy.get_window_stats(self._item(max_attempts, window_seconds), key)
        if stats.remaining > 0:
            return 0
        return max(1, math.ceil(stats.reset_time - time.time()))

    def clear(self, key: str, max_attempts: int, window_seconds: int) -> None:
        self._strategy.clear(self._item(max_attempts, window_seconds), key)

    def reset(self) -> None:
        """Drop every counter. Used by tests and the maintenance CLI."""
        self._storage.reset()
