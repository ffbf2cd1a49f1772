"""
Fixed-window, in-process rate limiters.

Each limiter counts hits per key in a ``TTLCache`` whose TTL is the window
length. The counter is mutated in place, so the entry keeps the expiry of
its first hit and the window resets once it is evicted.
"""

import logging
import threading

from cachetools import TTLCache
from fastapi import Request

from taskdesk.core.config import get_settings
from taskdesk.core.errors import RateLimitError

logger = logging.getLogger(__name__)


class FixedWindowLimiter:
    def __init__(self, name: str, limit: int, window_seconds: int, message: str):
        self.name = name
        self.limit = limit
        self.window_seconds = window_seconds
        self.message = message
        self._hits = TTLCache(maxsize=100_000, ttl=window_seconds)
        self._lock = threading.Lock()

    def hit(self, key: str) -> int:
        """Record one hit for ``key``. Raises RateLimitError past the limit."""
        with self._lock:
            bucket = self._hits.get(key)
            if bucket is None:
                bucket = [0]
                self._hits[key] = bucket
            bucket[0] += 1
            count = bucket[0]

        if count > self.limit:
            logger.warning(f"Rate limit '{self.name}' exceeded for {key}")
            raise RateLimitError(self.message)
        return self.limit - count

    def reset(self):
        with self._lock:
            self._hits.clear()


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _build_limiters() -> dict[str, FixedWindowLimiter]:
    settings = get_settings()
    window = settings.rate_limit_window_seconds
    general = "Too many requests, please try again after 15 minutes"
    return {
        "Admin": FixedWindowLimiter("admin", settings.rate_limit_admin, window, general),
        "Manager": FixedWindowLimiter("manager", settings.rate_limit_manager, window, general),
        "User": FixedWindowLimiter("user", settings.rate_limit_user, window, general),
        "sensitive": FixedWindowLimiter(
            "sensitive",
            settings.rate_limit_sensitive,
            window,
            "Too many requests to this endpoint, please try again after 15 minutes",
        ),
        "login": FixedWindowLimiter(
            "login",
            settings.login_limit,
            settings.login_window_seconds,
            "Too many login attempts from this IP, please try again after 5 minutes",
        ),
    }


limiters = _build_limiters()


def reset_limiters():
    for limiter in limiters.values():
        limiter.reset()
