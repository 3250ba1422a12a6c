"""Fixed-window rate limiting per (user, resource)."""

import math
import threading
import time
from typing import Callable, Dict, Optional, Tuple

from erpinsight.errors import RateLimited
from erpinsight.models.constants import RATE_LIMITS, RATE_LIMIT_WINDOW_SECONDS


class RateLimitResult:
    """Outcome of one rate limit check."""

    def __init__(self, allowed: bool, remaining: int, reset_at: float):
        self.allowed = allowed
        self.remaining = remaining
        self.reset_at = reset_at

    def __repr__(self) -> str:
        return f"RateLimitResult(allowed={self.allowed}, remaining={self.remaining}, reset_at={self.reset_at})"


class RateLimiter:
    """Counts requests per (user_id, resource) in fixed windows.

    Check-and-increment happens under a single lock, so N concurrent callers
    against a limit L see exactly min(N, L) allowed results.
    """

    def __init__(self, limits: Optional[Dict[str, int]] = None,
                 window_seconds: int = RATE_LIMIT_WINDOW_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self.limits = dict(limits if limits is not None else RATE_LIMITS)
        self.window_seconds = window_seconds
        self.clock = clock
        self._lock = threading.Lock()
        self._windows: Dict[Tuple[str, str], Tuple[int, float]] = {}

    def limit_for(self, resource: str) -> int:
        return self.limits.get(resource, self.limits.get("default", 100))

    def check_rate_limit(self, user_id: str, resource: str) -> RateLimitResult:
        limit = self.limit_for(resource)
        key = (str(user_id), resource)
        with self._lock:
            now = self.clock()
            count, window_start = self._windows.get(key, (0, now))
            if now - window_start >= self.window_seconds:
                count, window_start = 0, now
            reset_at = window_start + self.window_seconds
            if count >= limit:
                self._windows[key] = (count, window_start)
                return RateLimitResult(False, 0, reset_at)
            count += 1
            self._windows[key] = (count, window_start)
            return RateLimitResult(True, limit - count, reset_at)

    def enforce_rate_limit(self, user_id: str, resource: str) -> RateLimitResult:
        """Like check_rate_limit, but raise RateLimited when denied."""
        result = self.check_rate_limit(user_id, resource)
        if not result.allowed:
            retry_after = max(1, math.ceil(result.reset_at - self.clock()))
            raise RateLimited(retry_after_seconds=retry_after, remaining=0)
        return result

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()
