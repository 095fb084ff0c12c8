"""
Per-key sliding-window rate limiting, in memory.
Used for POST /auth/login (credential guessing) and POST /token.
"""
import math
import threading
import time

from gateway_auth.config import RATE_LIMIT_LOGIN_PER_MINUTE, RATE_LIMIT_TOKEN_PER_MINUTE

_WINDOW_SECONDS = 60


class SlidingWindowLimiter:
    def __init__(self, limit: int, window_seconds: int = _WINDOW_SECONDS):
        self.limit = limit
        self.window_seconds = window_seconds
        self._hits: dict[str, list[float]] = {}
        self._lock = threading.Lock()

    def check_and_consume(self, key: str | None) -> tuple[bool, int | None]:
        """
        Record one request for key if it is under the limit.
        Returns (allowed, retry_after_seconds); retry_after is >= 1 when refused.
        """
        if self.limit <= 0:
            return True, None
        key = key or "unknown"
        now = time.monotonic()
        cutoff = now - self.window_seconds
        with self._lock:
            recent = [t for t in self._hits.get(key, []) if t > cutoff]
            if len(recent) >= self.limit:
                self._hits[key] = recent
                retry_after = max(1, math.ceil(self.window_seconds - (now - recent[0])))
                return False, retry_after
            recent.append(now)
            self._hits[key] = recent
            return True, None

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()


login_limiter = SlidingWindowLimiter(RATE_LIMIT_LOGIN_PER_MINUTE)
token_limiter = SlidingWindowLimiter(RATE_LIMIT_TOKEN_PER_MINUTE)
