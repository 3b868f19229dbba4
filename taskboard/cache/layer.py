import asyncio
import json
import logging
import re
from typing import Any, Awaitable, Callable, Optional

from cachetools import TTLCache
from redis.asyncio import Redis, RedisError

from taskboard.cache.pressure import RedisMemoryGuard
from taskboard.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

_MISS = object()
_GLOB_SPECIALS = re.compile(r"([*?\[\]\\])")


class CacheLayer:
    """
    Two-tier advisory cache.

    L1: Process-local TTLCache (fast, limited size, short TTL)
    L2: Redis (shared, larger capacity)

    Every failure inside the cache is logged and reported as a miss, so callers
    always fall through to the store. Invalidation calls report whether the
    shared tier was actually cleared.
    """

    def __init__(self, settings: Settings | None = None, redis: Redis | None = None):
        self._settings = settings
        self._redis = redis
        self._memory_guard: RedisMemoryGuard | None = None
        self.l1: TTLCache | None = None
        self._initialized = False

        self.stats = {
            "l1_hits": 0,
            "l2_hits": 0,
            "misses": 0,
            "errors": 0,
            "pressure_skips": 0,
        }

    async def init_cache(self):
        """Initialize settings, L1 cache, and Redis connection."""
        if self._initialized:
            return

        if self._settings is None:
            self._settings = get_settings()
        settings = self._settings

        if self.l1 is None:
            self.l1 = TTLCache(maxsize=settings.l1_maxsize, ttl=settings.l1_ttl_seconds)

        if self._redis is None:
            try:
                self._redis = Redis.from_url(
                    settings.redis_dsn,
                    encoding="utf-8",
                    decode_responses=True,
                    max_connections=settings.redis_pool_size,
                    socket_connect_timeout=5,
                    socket_keepalive=True,
                    health_check_interval=30,
                )
                await self._redis.ping()
                logger.info("Redis connection established")
            except (RedisError, OSError) as e:
                # Degraded operation: L1 only
                logger.error(f"Redis initialization failed, running L1 only: {e}")
                self._redis = None

        if self._redis is not None and self._memory_guard is None:
            self._memory_guard = RedisMemoryGuard(self._redis)

        self._initialized = True
        logger.info("Cache layer initialized")

    @property
    def redis_available(self) -> bool:
        return self._redis is not None

    def _l1_key(self, key: str) -> str:
        return f"{self._settings.cache_namespace}l1:{key}"

    def _l2_key(self, key: str) -> str:
        return f"{self._settings.cache_namespace}l2:{key}"

    def _serialize(self, value: Any) -> str:
        return json.dumps(value, default=str)

    def _deserialize(self, raw: str) -> Any:
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            return _MISS

    async def _read_l2(self, key: str) -> Any:
        if not self._redis:
            return _MISS
        try:
            raw = await self._redis.get(self._l2_key(key))
        except RedisError as e:
            logger.error(f"Redis GET error for {key}: {e}")
            self.stats["errors"] += 1
            return _MISS
        if raw is None:
            return _MISS

        value = self._deserialize(raw)
        if value is _MISS:
            logger.warning(f"Discarding undecodable cache entry {key}")
            self.stats["errors"] += 1
        return value

    async def get(
        self,
        key: str,
        loader: Optional[Callable[[], Awaitable[Any]]] = None,
        ttl: Optional[int] = None,
    ):
        """
        Retrieve value from cache hierarchy: L1 -> L2 -> loader.

        Args:
            key: Cache key (will be namespaced automatically)
            loader: Async function to load value on cache miss
            ttl: TTL for L2 in seconds (uses default if None)

        Returns:
            Cached value or loaded value, or None if not found
        """
        await self.init_cache()
        l1_key = self._l1_key(key)

        if l1_key in self.l1:
            self.stats["l1_hits"] += 1
            logger.debug(f"L1 hit: {key}")
            return self.l1[l1_key]

        value = await self._read_l2(key)
        if value is not _MISS:
            self.stats["l2_hits"] += 1
            logger.debug(f"L2 hit: {key}")
            self.l1[l1_key] = value
            return value

        if loader is None:
            self.stats["misses"] += 1
            logger.debug(f"Cache miss: {key}")
            return None

        # Only one concurrent loader per key hits the store
        async with _get_lock_for_key(key):
            if l1_key in self.l1:
                return self.l1[l1_key]
            value = await self._read_l2(key)
            if value is not _MISS:
                self.l1[l1_key] = value
                return value

            self.stats["misses"] += 1
            logger.debug(f"Loading from source: {key}")
            value = await loader()
            if value is None:
                return None

            await self._set_both_layers(key, value, ttl)
            return value

    async def _set_both_layers(self, key: str, value: Any, ttl: int | None = None):
        self.l1[self._l1_key(key)] = value

        if not self._redis:
            return

        base_ttl = ttl or self._settings.cache_default_ttl_seconds
        try:
            ttl = await self._memory_guard.adjust_ttl(base_ttl)
            if ttl == 0:
                logger.debug(f"Skipping Redis write due to pressure: {key}")
                self.stats["pressure_skips"] += 1
                return
            await self._redis.set(self._l2_key(key), self._serialize(value), ex=ttl)
            logger.debug(f"Stored in L2: {key} (ttl={ttl})")
        except (RedisError, TypeError, ValueError) as e:
            logger.error(f"Cache SET error for {key}: {e}")
            self.stats["errors"] += 1

    async def set(self, key: str, value: Any, ttl: Optional[int] = None):
        """Explicitly set a value in both cache layers."""
        await self.init_cache()
        await self._set_both_layers(key, value, ttl)

    async def delete(self, key: str) -> bool:
        """
        Delete a key from both cache layers.

        Returns False when the Redis delete failed and a stale entry may
        survive until its TTL expires.
        """
        await self.init_cache()
        self.l1.pop(self._l1_key(key), None)

        if not self._redis:
            return True
        try:
            await self._redis.delete(self._l2_key(key))
            logger.debug(f"Deleted from both layers: {key}")
            return True
        except RedisError as e:
            logger.error(f"Redis DELETE error for {key}: {e}")
            self.stats["errors"] += 1
            return False

    async def delete_prefix(self, prefix: str) -> bool:
        """
        Delete every key starting with prefix.

        Walks the Redis keyspace with SCAN, so cost grows with the keyspace.
        """
        await self.init_cache()

        l1_prefix = self._l1_key(prefix)
        for l1_key in [k for k in list(self.l1.keys()) if k.startswith(l1_prefix)]:
            self.l1.pop(l1_key, None)

        if not self._redis:
            return True

        pattern = _GLOB_SPECIALS.sub(r"\\\1", self._l2_key(prefix)) + "*"
        deleted_count = 0
        try:
            cursor = 0
            while True:
                cursor, keys = await self._redis.scan(cursor, match=pattern, count=100)
                if keys:
                    await self._redis.delete(*keys)
                    deleted_count += len(keys)
                if cursor == 0:
                    break
        except RedisError as e:
            logger.error(f"Prefix delete error for {prefix}: {e}")
            self.stats["errors"] += 1
            return False

        logger.debug(f"Prefix delete completed: {prefix} ({deleted_count} keys)")
        return True

    async def close(self):
        """Graceful shutdown of cache connections."""
        if self._redis:
            try:
                await self._redis.aclose()
                logger.info("Redis connection closed")
            except RedisError as e:
                logger.error(f"Error closing Redis: {e}")
        self._redis = None
        self._memory_guard = None
        self._initialized = False

    def get_stats(self) -> dict:
        """Get cache statistics including memory pressure."""
        total = self.stats["l1_hits"] + self.stats["l2_hits"] + self.stats["misses"]
        stats = {
            **self.stats,
            "redis_available": self.redis_available,
            "l1_size": len(self.l1) if self.l1 is not None else 0,
            "l1_maxsize": self.l1.maxsize if self.l1 is not None else 0,
            "hit_rate": (
                (self.stats["l1_hits"] + self.stats["l2_hits"]) / total if total else 0
            ),
        }
        if self._memory_guard and self._memory_guard.last_reading:
            stats["redis_pressure"] = self._memory_guard.last_reading
        return stats


# Per-key locks for stampede protection. setdefault hands every concurrent
# caller the same lock; entries expire after 300s, longer than any store read.
_locks = TTLCache(maxsize=10_000, ttl=300)


def _get_lock_for_key(key: str) -> asyncio.Lock:
    return _locks.setdefault(key, asyncio.Lock())


# Cache layer instance (singleton per worker)
cache_layer = CacheLayer()


def get_cache() -> CacheLayer:
    return cache_layer
