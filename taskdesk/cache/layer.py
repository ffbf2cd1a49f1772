"""
Two-tier cache for list responses.

L1 is a process-local ``TTLCache``. L2 is Redis and is optional: with no
``REDIS_DSN``, or when Redis cannot be reached at startup, the layer runs on
L1 alone. Values are JSON-compatible response bodies.

Reads go L1 -> L2 -> loader. Concurrent misses on one key share a lock so
the loader runs once. Invalidation is by key prefix on both tiers.
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Optional

from cachetools import TTLCache
from redis.asyncio import Redis, RedisError

from taskdesk.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

Loader = Callable[[], Awaitable[Any]]


class CacheLayer:
    def __init__(self, settings: Settings | None = None):
        self._settings = settings
        self._redis: Redis | None = None
        self.l1: TTLCache | None = None
        self._initialized = False
        # Bumped by every invalidation; a load that overlaps one is not stored
        self._generation = 0
        self.stats = dict.fromkeys(
            ("l1_hits", "l2_hits", "misses", "errors", "invalidations"), 0
        )

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    async def init_cache(self):
        """Create the L1 store and, if configured, connect to Redis."""
        if self._initialized:
            return
        if self.l1 is None:
            self.l1 = TTLCache(
                maxsize=self.settings.l1_maxsize, ttl=self.settings.l1_ttl_seconds
            )
        self._initialized = True

        dsn = self.settings.redis_dsn
        if not dsn:
            logger.info("Task cache running on L1 only (REDIS_DSN not set)")
            return

        redis = Redis.from_url(
            dsn,
            decode_responses=True,
            max_connections=self.settings.redis_pool_size,
            socket_connect_timeout=5,
            socket_timeout=self.settings.redis_socket_timeout,
            health_check_interval=30,
        )
        try:
            await redis.ping()
        except (RedisError, OSError) as e:
            logger.error(f"Redis unreachable at startup, task cache on L1 only: {e}")
            return
        self._redis = redis
        logger.info("Task cache running on L1 + Redis")

    def _key(self, tier: str, key: str) -> str:
        return f"{self.settings.cache_namespace}{tier}:{key}"

    async def _l2_get(self, key: str) -> Any:
        try:
            raw = await self._redis.get(self._key("l2", key))
        except RedisError as e:
            self.stats["errors"] += 1
            logger.error(f"Redis read failed for {key}: {e}")
            return None
        return None if raw is None else json.loads(raw)

    async def _l2_set(self, key: str, value: Any, ttl: int) -> None:
        try:
            await self._redis.set(self._key("l2", key), json.dumps(value), ex=ttl)
        except RedisError as e:
            self.stats["errors"] += 1
            logger.error(f"Redis write failed for {key}: {e}")

    async def _lookup(self, key: str) -> Any:
        l1_key = self._key("l1", key)
        if l1_key in self.l1:
            self.stats["l1_hits"] += 1
            return self.l1[l1_key]

        if self._redis is not None:
            value = await self._l2_get(key)
            if value is not None:
                self.stats["l2_hits"] += 1
                self.l1[l1_key] = value
                return value
        return None

    async def get(self, key: str, loader: Optional[Loader] = None, l2_ttl: Optional[int] = None):
        """
        Return the cached value for ``key``.

        On a miss, ``loader`` is awaited and its result stored in both tiers.
        A loader returning None is not cached, nor is a result whose load
        overlapped a ``delete_prefix``. Loader errors propagate.
        """
        await self.init_cache()

        value = await self._lookup(key)
        if value is not None or loader is None:
            if value is None:
                self.stats["misses"] += 1
            return value

        async with _lock_for(key):
            value = await self._lookup(key)
            if value is not None:
                return value

            self.stats["misses"] += 1
            logger.debug(f"Cache miss, loading {key}")
            generation = self._generation
            value = await loader()
            if value is None or generation != self._generation:
                return value

            self.l1[self._key("l1", key)] = value
            if self._redis is not None:
                await self._l2_set(key, value, l2_ttl or self.settings.l2_ttl_seconds)
            return value

    async def delete_prefix(self, prefix: str) -> int:
        """
        Drop every entry whose key starts with ``prefix`` from both tiers.

        Returns the number of keys removed. Redis errors are re-raised after
        L1 has been cleared.
        """
        await self.init_cache()
        self._generation += 1

        l1_prefix = self._key("l1", prefix)
        stale = [k for k in list(self.l1.keys()) if k.startswith(l1_prefix)]
        for k in stale:
            self.l1.pop(k, None)
        removed = len(stale)

        if self._redis is not None:
            pattern = _escape_glob(self._key("l2", prefix)) + "*"
            try:
                async for batch in _scan_batches(self._redis, pattern):
                    removed += await self._redis.delete(*batch)
            except RedisError as e:
                self.stats["errors"] += 1
                logger.error(f"Redis invalidation failed for {prefix}: {e}")
                raise

        self.stats["invalidations"] += 1
        logger.info(f"Invalidated {removed} cached entries under {prefix}")
        return removed

    def clear(self):
        """Drop all L1 entries."""
        if self.l1 is not None:
            self.l1.clear()

    async def close(self):
        if self._redis is not None:
            try:
                await self._redis.aclose()
            except RedisError as e:
                logger.error(f"Error closing Redis: {e}")
        self._redis = None
        self._initialized = False

    def get_stats(self) -> dict:
        lookups = self.stats["l1_hits"] + self.stats["l2_hits"] + self.stats["misses"]
        hits = self.stats["l1_hits"] + self.stats["l2_hits"]
        return {
            **self.stats,
            "redis": self._redis is not None,
            "l1_size": len(self.l1) if self.l1 is not None else 0,
            "hit_rate": hits / lookups if lookups else 0,
        }


async def _scan_batches(redis: Redis, pattern: str, count: int = 100):
    cursor = 0
    while True:
        cursor, keys = await redis.scan(cursor, match=pattern, count=count)
        if keys:
            yield keys
        if cursor == 0:
            return


def _escape_glob(value: str) -> str:
    """Escape Redis glob metacharacters so a key prefix matches literally."""
    for ch in ("\\", "*", "?", "[", "]"):
        value = value.replace(ch, "\\" + ch)
    return value


# Per-key loader locks. Idle locks expire with the entry.
_locks: TTLCache = TTLCache(maxsize=10_000, ttl=300)


def _lock_for(key: str) -> asyncio.Lock:
    return _locks.setdefault(key, asyncio.Lock())


cache_layer = CacheLayer()
