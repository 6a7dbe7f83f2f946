"""
Result cache for resolved transcripts, track catalogs and video metadata.

This module provides an in-memory cache with per-entry TTL support and a Redis
backend for distributed deployments. Both store JSON text under namespaced
keys so a value written by one instance can be read by another.

Backend failures never propagate: a failed read counts as a miss, a failed
write is dropped, and both are reported through ``get_stats()``.
"""

import json
import logging
import time
from typing import TYPE_CHECKING, Any, Protocol

from cachetools import TLRUCache

from subtitle_mcp.config import Settings
from subtitle_mcp.models import SubtitleType

if TYPE_CHECKING:
    import redis.asyncio as redis

logger = logging.getLogger(__name__)

REDIS_KEY_PREFIX = "subtitle-mcp:"


def subtitles_key(url: str, subtitle_type: SubtitleType | None = None, lang: str | None = None) -> str:
    """
    Cache key for a resolved transcript.

    Auto-discovery results (no type and no lang) share one key per URL so a
    later explicit request never sees a result picked by the cascade.

    Examples:
        >>> subtitles_key("https://youtu.be/x")
        'sub:https://youtu.be/x:auto-discovery'
        >>> subtitles_key("https://youtu.be/x", "official", "de")
        'sub:https://youtu.be/x:official:de'
    """
    if subtitle_type is None and lang is None:
        return f"sub:{url}:auto-discovery"
    return f"sub:{url}:{subtitle_type}:{lang}"


def catalog_key(url: str) -> str:
    return f"avail:{url}"


def info_key(url: str) -> str:
    return f"info:{url}"


def chapters_key(url: str) -> str:
    return f"chapters:{url}"


class CacheProtocol(Protocol):
    """Protocol for cache implementations."""

    async def get(self, key: str) -> Any | None: ...
    async def set(self, key: str, value: Any, ttl: int) -> None: ...
    async def clear(self) -> None: ...
    async def get_stats(self) -> dict[str, Any]: ...
    async def connect(self) -> None: ...
    async def disconnect(self) -> None: ...


class _CacheStats:
    """Hit/miss/error counters shared by the cache backends."""

    backend = "none"

    def __init__(self) -> None:
        self._hits = 0
        self._misses = 0
        self._errors = 0
        self._degraded = False

    def _record_error(self, operation: str, error: Exception) -> None:
        self._errors += 1
        self._degraded = True
        logger.error(f"{self.backend} cache {operation} error: {error}")

    def _stats(self, size: int | str) -> dict[str, Any]:
        total = self._hits + self._misses
        hit_rate = self._hits / total if total > 0 else 0
        return {
            "backend": self.backend,
            "size": size,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": hit_rate,
            "errors": self._errors,
            "degraded": self._degraded,
        }


def _entry_expiry(_key: str, value: tuple[str, int], now: float) -> float:
    return now + value[1]


class MemoryCache(_CacheStats):
    """
    In-process cache with a TTL per entry.

    Uses cachetools.TLRUCache: the expiry of each entry is computed from the
    TTL stored next to its payload, and the least recently used entry is
    evicted when ``maxsize`` is exceeded.
    """

    backend = "memory"

    def __init__(self, maxsize: int = 1000, timer=time.monotonic):
        super().__init__()
        self._maxsize = maxsize
        self._cache: TLRUCache = TLRUCache(maxsize=maxsize, ttu=_entry_expiry, timer=timer)

    @property
    def maxsize(self) -> int:
        return self._maxsize

    async def connect(self) -> None:
        return None

    async def disconnect(self) -> None:
        return None

    async def get(self, key: str) -> Any | None:
        """
        Get a cached value if present and not expired.

        Returns:
            The decoded value, or None on a miss
        """
        entry = self._cache.get(key)
        if entry is None:
            self._misses += 1
            return None

        try:
            value = json.loads(entry[0])
        except ValueError as e:
            self._record_error("get", e)
            self._misses += 1
            return None

        self._hits += 1
        self._degraded = False
        logger.debug(f"Cache hit for key: {key[:48]}")
        return value

    async def set(self, key: str, value: Any, ttl: int) -> None:
        """
        Cache a JSON-serializable value for ``ttl`` seconds.

        When maxsize is exceeded, least recently used items are evicted.
        """
        try:
            self._cache[key] = (json.dumps(value), ttl)
        except (TypeError, ValueError) as e:
            self._record_error("set", e)
            return
        self._degraded = False
        logger.debug(f"Cache set for key: {key[:48]} (ttl={ttl}s)")

    async def clear(self) -> None:
        """Clear all cached data."""
        size = len(self._cache)
        self._cache.clear()
        logger.info(f"Cache cleared: {size} entries removed")

    async def get_stats(self) -> dict[str, Any]:
        """
        Get cache statistics.

        Returns:
            Dictionary with cache size, hits, misses, hit rate and error state
        """
        self._cache.expire()
        return self._stats(len(self._cache))


class RedisCache(_CacheStats):
    """
    Redis-based cache for distributed deployments where instances share results.

    Redis handles expiry itself (SETEX); operations are atomic so no locking
    is needed. Keys are prefixed so clear() never touches foreign data.
    """

    backend = "redis"

    def __init__(self, redis_url: str):
        """Initialize Redis cache for the given URL; call connect() before use."""
        super().__init__()
        self._redis_url = redis_url
        self._pool: "redis.ConnectionPool | None" = None
        self._client: "redis.Redis | None" = None

    async def connect(self) -> None:
        """Create the connection pool and client."""
        import redis.asyncio as redis

        self._pool = redis.ConnectionPool.from_url(
            self._redis_url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=20,
        )
        self._client = redis.Redis(connection_pool=self._pool)
        logger.info("Connected to Redis using connection pool")

    async def disconnect(self) -> None:
        """Close the client and release pooled connections."""
        if self._client:
            await self._client.aclose()
            self._client = None
        if self._pool:
            await self._pool.disconnect()
            self._pool = None
            logger.info("Disconnected from Redis")

    async def get(self, key: str) -> Any | None:
        if not self._client:
            self._misses += 1
            return None

        try:
            data = await self._client.get(REDIS_KEY_PREFIX + key)
        except Exception as e:
            self._record_error("get", e)
            self._misses += 1
            return None

        self._degraded = False
        if data is None:
            self._misses += 1
            return None

        try:
            value = json.loads(data)
        except ValueError as e:
            self._record_error("get", e)
            self._misses += 1
            return None

        self._hits += 1
        logger.debug(f"Redis cache hit for key: {key[:48]}")
        return value

    async def set(self, key: str, value: Any, ttl: int) -> None:
        if not self._client:
            return

        try:
            await self._client.setex(REDIS_KEY_PREFIX + key, ttl, json.dumps(value))
        except Exception as e:
            self._record_error("set", e)
            return
        self._degraded = False
        logger.debug(f"Redis cache set for key: {key[:48]} (ttl={ttl}s)")

    async def clear(self) -> None:
        """Delete every key carrying our prefix."""
        if not self._client:
            return

        try:
            keys = [key async for key in self._client.scan_iter(match=f"{REDIS_KEY_PREFIX}*", count=100)]
            if keys:
                await self._client.delete(*keys)
            logger.info(f"Redis cache cleared: {len(keys)} entries removed")
        except Exception as e:
            self._record_error("clear", e)

    async def get_stats(self) -> dict[str, Any]:
        # Redis handles TTL internally, size tracking adds overhead
        return self._stats("N/A")


class NullCache(_CacheStats):
    """Cache used when caching is disabled: every read is a miss."""

    async def connect(self) -> None:
        return None

    async def disconnect(self) -> None:
        return None

    async def get(self, key: str) -> Any | None:
        self._misses += 1
        return None

    async def set(self, key: str, value: Any, ttl: int) -> None:
        return None

    async def clear(self) -> None:
        return None

    async def get_stats(self) -> dict[str, Any]:
        return self._stats(0)


def create_cache(config: Settings) -> CacheProtocol:
    """Pick the cache backend from configuration (Redis when REDIS_URL is set)."""
    if not config.cache_enabled:
        logger.info("Caching disabled")
        return NullCache()
    if config.redis_url:
        logger.info("Using Redis cache backend")
        return RedisCache(config.redis_url)
    logger.info(f"Using in-memory cache backend (maxsize={config.cache_maxsize})")
    return MemoryCache(maxsize=config.cache_maxsize)
