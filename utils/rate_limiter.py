"""
Keyed rate limiting for validation and invitation endpoints
Sliding window counter per key (client address, admin token, ...)
"""
import time
from collections import defaultdict, deque
from threading import Lock
import logging

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Sliding-window rate limiter.

    One instance lives on the app (``app.extensions['rate_limiter']``) so
    tests can swap the clock or reset it between cases.
    """

    def __init__(self, max_attempts=10, window_seconds=3600, clock=time.monotonic):
        self._lock = Lock()
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self._clock = clock

        # key -> timestamps of attempts inside the window
        self._attempts = defaultdict(deque)

        # Last cleanup time
        self._last_cleanup = clock()
        self._cleanup_interval = 300  # Cleanup every 5 minutes

    def _prune(self, key, now):
        attempts = self._attempts[key]
        while attempts and now - attempts[0] >= self.window_seconds:
            attempts.popleft()
        return attempts

    def hit(self, key):
        """
        Record an attempt for ``key`` if it is still under the limit.

        Returns:
            tuple: (allowed: bool, retry_after: int)
        """
        with self._lock:
            now = self._clock()
            self._cleanup_expired_entries(now)

            attempts = self._prune(key, now)
            if len(attempts) >= self.max_attempts:
                retry_after = int(self.window_seconds - (now - attempts[0])) + 1
                logger.warning(f"Rate limit exceeded for {key}: {len(attempts)} attempts "
                               f"in {self.window_seconds}s")
                return False, retry_after

            attempts.append(now)
            return True, 0

    def is_allowed(self, key):
        """Check without recording an attempt"""
        with self._lock:
            return len(self._prune(key, self._clock())) < self.max_attempts

    def remaining(self, key):
        with self._lock:
            return max(0, self.max_attempts - len(self._prune(key, self._clock())))

    def reset(self, key):
        with self._lock:
            self._attempts.pop(key, None)

    def reset_all(self):
        with self._lock:
            self._attempts.clear()

    def _cleanup_expired_entries(self, now):
        """Drop keys whose attempts have all aged out. Caller holds the lock."""
        if now - self._last_cleanup < self._cleanup_interval:
            return
        for key in list(self._attempts):
            if not self._prune(key, now):
                del self._attempts[key]
        self._last_cleanup = now
