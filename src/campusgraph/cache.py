"""Caching for entity resolution results.

Provides an injectable cache so resolver instances never share ambient
state. Backends:
- InMemoryCache: dict-backed, TTL evaluated lazily against an injected clock
- RedisCache: Redis-backed, TTL enforced by Redis

ResolutionCache layers resolution-specific keys and TTLs on top of a
backend.
"""

import asyncio
import fnmatch
import hashlib
import json
import time
from datetime import datetime, timezone
from typing import Any

from .config import Settings, get_settings
from .logging import get_context_logger

logger = get_context_logger(__name__)

# Cache key prefixes
KEY_PREFIX = "campusgraph:"

# Writes between sweeps of expired in-memory entries
PURGE_INTERVAL = 256


class Clock:
    """Wall-clock source; replaced by a fake clock in tests."""

    def time(self) -> float:
        """Seconds since the epoch."""
        return time.time()

    def now(self) -> datetime:
        """Current UTC datetime."""
        return datetime.fromtimestamp(self.time(), tz=timezone.utc)


class CacheBackend:
    """Abstract cache backend interface."""

    async def get(self, key: str) -> Any | None:
        """Get value from cache."""
        raise NotImplementedError

    async def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        """Set value in cache."""
        raise NotImplementedError

    async def delete(self, key: str) -> bool:
        """Delete value from cache."""
        raise NotImplementedError

    async def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching pattern."""
        raise NotImplementedError

    async def close(self) -> None:
        """Close the cache connection."""
        pass


class InMemoryCache(CacheBackend):
    """In-memory cache with lazy TTL eviction.

    Expired entries are dropped when read, and swept every
    ``purge_interval`` writes so keys that are never read again do not
    accumulate. The lock only guards dict bookkeeping; no I/O happens
    while it is held.
    """

    def __init__(self, clock: Clock | None = None, purge_interval: int = PURGE_INTERVAL):
        self._clock = clock or Clock()
        self._cache: dict[str, tuple[Any, float | None]] = {}
        self._lock = asyncio.Lock()
        self._purge_interval = purge_interval
        self._writes = 0

    def __len__(self) -> int:
        return len(self._cache)

    async def get(self, key: str) -> Any | None:
        async with self._lock:
            if key not in self._cache:
                return None

            value, expires_at = self._cache[key]
            if expires_at is not None and self._clock.time() > expires_at:
                del self._cache[key]
                return None

            return value

    async def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        async with self._lock:
            now = self._clock.time()
            self._cache[key] = (value, now + ttl if ttl else None)
            self._writes += 1
            if self._writes >= self._purge_interval:
                self._writes = 0
                self._drop_expired(now)
            return True

    async def delete(self, key: str) -> bool:
        async with self._lock:
            if key in self._cache:
                del self._cache[key]
                return True
            return False

    async def delete_pattern(self, pattern: str) -> int:
        async with self._lock:
            keys_to_delete = [
                k for k in self._cache.keys() if fnmatch.fnmatch(k, pattern)
            ]
            for key in keys_to_delete:
                del self._cache[key]
            return len(keys_to_delete)

    async def purge_expired(self) -> int:
        """Drop every expired entry; returns the number removed."""
        async with self._lock:
            return self._drop_expired(self._clock.time())

    def _drop_expired(self, now: float) -> int:
        expired = [
            k
            for k, (_, expires_at) in self._cache.items()
            if expires_at is not None and now > expires_at
        ]
        for key in expired:
            del self._cache[key]
        if expired:
            logger.debug(f"Purged {len(expired)} expired cache entries")
        return len(expired)


class RedisCache(CacheBackend):
    """Redis-based cache for production.

    Cache failures degrade to misses; they never fail a resolution.
    """

    def __init__(self, redis_client):
        self._redis = redis_client

    async def get(self, key: str) -> Any | None:
        try:
            data = await self._redis.get(key)
            if data:
                return json.loads(data)
            return None
        except Exception as e:
            logger.warning(f"Redis cache get error: {e}")
            return None

    async def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        try:
            data = json.dumps(value, default=str)
            if ttl:
                await self._redis.setex(key, ttl, data)
            else:
                await self._redis.set(key, data)
            return True
        except Exception as e:
            logger.warning(f"Redis cache set error: {e}")
            return False

    async def delete(self, key: str) -> bool:
        try:
            result = await self._redis.delete(key)
            return result > 0
        except Exception as e:
            logger.warning(f"Redis cache delete error: {e}")
            return False

    async def delete_pattern(self, pattern: str) -> int:
        try:
            cursor = 0
            deleted = 0
            while True:
                cursor, keys = await self._redis.scan(cursor, match=pattern, count=100)
                if keys:
                    deleted += await self._redis.delete(*keys)
                if cursor == 0:
                    break
            return deleted
        except Exception as e:
            logger.warning(f"Redis cache delete pattern error: {e}")
            return 0

    async def close(self) -> None:
        await self._redis.aclose()


def create_cache_backend(
    settings: Settings | None = None,
    clock: Clock | None = None,
) -> CacheBackend:
    """Build the configured cache backend.

    Args:
        settings: Settings to read the backend choice from
        clock: Clock for the in-memory backend

    Returns:
        A fresh backend instance (never a shared global)
    """
    settings = settings or get_settings()

    if settings.cache_backend == "redis":
        import redis.asyncio as redis

        client = redis.from_url(settings.redis_url, decode_responses=True)
        logger.info("Using Redis cache backend")
        return RedisCache(client)

    logger.info("Using in-memory cache backend")
    return InMemoryCache(clock=clock)


# =========================
# Resolution cache
# =========================


def resolution_key(normalized_query: str, entity_type: str, threshold: float) -> str:
    """Build cache key for a resolution.

    The fuzzy threshold is part of the key because it changes the outcome
    of the same query.
    """
    query_hash = hashlib.md5(normalized_query.encode()).hexdigest()[:16]
    return f"{KEY_PREFIX}resolve:{entity_type}:{threshold:.3f}:{query_hash}"


class ResolutionCache:
    """Resolution results keyed by (normalized query, kind, threshold).

    Positive results live for ``ttl`` seconds and misses for the shorter
    ``negative_ttl``. Values are plain JSON dictionaries.
    """

    def __init__(
        self,
        backend: CacheBackend | None = None,
        ttl: int | None = None,
        negative_ttl: int | None = None,
    ):
        settings = get_settings()
        self.backend = backend or InMemoryCache()
        self.ttl = ttl if ttl is not None else settings.resolution_cache_ttl_seconds
        self.negative_ttl = (
            negative_ttl
            if negative_ttl is not None
            else settings.resolution_negative_cache_ttl_seconds
        )

    async def get(
        self, normalized_query: str, entity_type: str, threshold: float
    ) -> dict[str, Any] | None:
        key = resolution_key(normalized_query, entity_type, threshold)
        value = await self.backend.get(key)
        if value is not None:
            logger.debug(f"Cache hit: {key}")
        return value

    async def set(
        self,
        normalized_query: str,
        entity_type: str,
        threshold: float,
        result: dict[str, Any],
    ) -> bool:
        key = resolution_key(normalized_query, entity_type, threshold)
        ttl = self.ttl if result.get("id") else self.negative_ttl
        return await self.backend.set(key, result, ttl)

    async def invalidate(self, entity_type: str | None = None) -> int:
        """Evict cached resolutions for one kind, or all kinds.

        Write paths that rename an entity must call this for its kind.
        """
        kind = entity_type or "*"
        removed = await self.backend.delete_pattern(f"{KEY_PREFIX}resolve:{kind}:*")
        logger.info(
            f"Invalidated {removed} cached resolutions",
            extra={"entity_type": entity_type, "removed": removed},
        )
        return removed
