"""
Session Cache - time-boxed key/value records for active attempts.

The cache is advisory: it gives a fast "is this attempt still inside its
time budget" signal, but the engines always recompute the deadline from the
attempt row. Failures are therefore logged and swallowed rather than
raised, so a Redis outage never fails an attempt operation.

Two implementations share the set/get/delete contract:
- RedisSessionCache: redis-py client, used when REDIS_URL is configured
- InMemorySessionCache: per-process dict with expiry, for local development
"""

import os
import threading
import time
from typing import Optional

import redis

from examcore.logging_config import get_logger, log_with_context

logger = get_logger("cache")

REDIS_URL = os.getenv("REDIS_URL", "")


def attempt_key(attempt_id: str) -> str:
    return f"attempt_{attempt_id}"


class RedisSessionCache:
    """Redis-backed cache using SETEX for TTL records."""

    def __init__(self, client: redis.Redis):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisSessionCache":
        return cls(redis.Redis.from_url(url, encoding="utf-8", decode_responses=True))

    def set(self, key: str, value: str, ttl_seconds: int) -> bool:
        try:
            return bool(self.client.setex(key, max(int(ttl_seconds), 1), value))
        except redis.RedisError as e:
            log_with_context(logger, "WARNING", "Redis SET failed: {}".format(e),
                             context={"key": key})
            return False

    def get(self, key: str) -> Optional[str]:
        try:
            return self.client.get(key)
        except redis.RedisError as e:
            log_with_context(logger, "WARNING", "Redis GET failed: {}".format(e),
                             context={"key": key})
            return None

    def delete(self, key: str) -> bool:
        try:
            return self.client.delete(key) > 0
        except redis.RedisError as e:
            log_with_context(logger, "WARNING", "Redis DELETE failed: {}".format(e),
                             context={"key": key})
            return False


class InMemorySessionCache:
    """
    Process-local TTL cache. Expired records are dropped on read, and a
    full scan on ``set`` at most every ``purge_interval`` seconds removes
    the ones nobody reads again.

    ``clock`` returns monotonic seconds and can be replaced in tests.
    """

    def __init__(self, clock=time.monotonic, purge_interval: float = 60):
        self._clock = clock
        self._lock = threading.Lock()
        self._records = {}
        self._purge_interval = purge_interval
        self._next_purge = clock() + purge_interval

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def set(self, key: str, value: str, ttl_seconds: int) -> bool:
        with self._lock:
            now = self._clock()
            if now >= self._next_purge:
                self._purge(now)
            self._records[key] = (value, now + ttl_seconds)
        return True

    def _purge(self, now: float):
        """Drop expired records. Caller holds the lock."""
        expired = [key for key, (_, expires_at) in self._records.items() if now >= expires_at]
        for key in expired:
            del self._records[key]
        self._next_purge = now + self._purge_interval
        if expired:
            log_with_context(logger, "DEBUG", "Purged {} expired cache records".format(len(expired)),
                             extra_data={"remaining": len(self._records)})

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            record = self._records.get(key)
            if record is None:
                return None
            value, expires_at = record
            if self._clock() >= expires_at:
                del self._records[key]
                return None
            return value

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._records.pop(key, None) is not None


def build_session_cache(url: str = REDIS_URL):
    """Redis when a URL is configured, otherwise the in-process cache."""
    if url:
        log_with_context(logger, "INFO", "Using Redis session cache")
        return RedisSessionCache.from_url(url)
    log_with_context(logger, "INFO", "REDIS_URL not set - using in-memory session cache")
    return InMemorySessionCache()
