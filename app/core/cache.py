"""
Key-Value Cache Abstraction

Process-wide caches (geocoding results, provider tokens) go through this
interface so the backing store can be swapped without touching callers.

Implementations:
    - MemoryCache: bounded LRU with per-entry TTL, lock-guarded
    - RedisCache: shared cache across workers via redis.asyncio

Values must be JSON-compatible dicts so both backends accept them.
"""

import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, Callable, Optional

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)


class BaseCache(ABC):
    """Async key-value store with optional expiry."""

    @abstractmethod
    async def get(self, key: str) -> Optional[dict[str, Any]]:
        """Return the stored value, or None when absent or expired."""
        pass

    @abstractmethod
    async def set(
        self,
        key: str,
        value: dict[str, Any],
        ttl_seconds: Optional[float] = None,
    ) -> None:
        """Store a value, replacing any previous one."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        pass

    @abstractmethod
    async def clear(self) -> None:
        pass

    async def aclose(self) -> None:
        """Release backend connections."""
        pass


class MemoryCache(BaseCache):
    """
    In-process LRU cache with TTL.

    Entries are evicted least-recently-used first once ``max_entries`` is
    reached, and lazily dropped on read after they expire. A threading lock
    guards the map so threaded workers can share one instance.

    Example:
        >>> cache = MemoryCache(max_entries=2)
        >>> await cache.set("a", {"lat": 1.0, "lon": 2.0}, ttl_seconds=60)
        >>> await cache.get("a")
        {'lat': 1.0, 'lon': 2.0}
    """

    def __init__(
        self,
        max_entries: int = 10_000,
        default_ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.default_ttl_seconds = default_ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, tuple[Optional[float], dict[str, Any]]] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    async def get(self, key: str) -> Optional[dict[str, Any]]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at is not None and self._clock() >= expires_at:
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return value

    async def set(
        self,
        key: str,
        value: dict[str, Any],
        ttl_seconds: Optional[float] = None,
    ) -> None:
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl_seconds
        expires_at = self._clock() + ttl if ttl is not None else None
        with self._lock:
            self._entries[key] = (expires_at, value)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    async def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    async def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class RedisCache(BaseCache):
    """
    Redis-backed cache shared by every worker process.

    Values are stored as JSON strings under ``prefix + key`` with Redis-side
    expiry.
    """

    def __init__(
        self,
        url: str,
        prefix: str = "shop:",
        default_ttl_seconds: Optional[float] = None,
    ):
        self.prefix = prefix
        self.default_ttl_seconds = default_ttl_seconds
        self._client = aioredis.from_url(url, decode_responses=True)

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def get(self, key: str) -> Optional[dict[str, Any]]:
        raw = await self._client.get(self._key(key))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning(f"Cache: dropping unreadable entry {key}")
            await self._client.delete(self._key(key))
            return None

    async def set(
        self,
        key: str,
        value: dict[str, Any],
        ttl_seconds: Optional[float] = None,
    ) -> None:
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl_seconds
        expire = max(1, int(ttl)) if ttl is not None else None
        await self._client.set(self._key(key), json.dumps(value), ex=expire)

    async def delete(self, key: str) -> None:
        await self._client.delete(self._key(key))

    async def clear(self) -> None:
        async for key in self._client.scan_iter(match=f"{self.prefix}*"):
            await self._client.delete(key)

    async def ping(self) -> bool:
        return bool(await self._client.ping())

    async def aclose(self) -> None:
        await self._client.aclose()


def create_cache(
    backend: str,
    namespace: str,
    redis_url: str,
    max_entries: int = 10_000,
) -> BaseCache:
    """
    Build a cache for the configured backend.

    Args:
        backend: "memory" or "redis"
        namespace: Key prefix for the redis backend (e.g. "geocode")
        redis_url: Redis connection URL
        max_entries: Size bound of the memory backend
    """
    if backend.lower() == "redis":
        logger.info(f"Cache '{namespace}': using RedisCache")
        return RedisCache(redis_url, prefix=f"shop:{namespace}:")
    logger.info(f"Cache '{namespace}': using MemoryCache (max_entries={max_entries})")
    return MemoryCache(max_entries=max_entries)
