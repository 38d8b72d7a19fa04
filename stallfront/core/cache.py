"""
In-Memory Cache

TTL + LRU cache for read-heavy listings (public stalls, product listings,
admin overview). Writes to the underlying data invalidate by key prefix.
"""

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from threading import Lock
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    value: Any
    expires_at: float


class CacheManager:
    """
    Bounded cache with per-entry TTL.

    The least recently used entry is evicted when ``max_size`` is reached.
    Expired entries are dropped lazily on access.
    """

    def __init__(
        self,
        name: str,
        max_size: int = 1000,
        default_ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.max_size = max_size
        self.default_ttl = default_ttl
        self._clock = clock
        self._data: OrderedDict[str, _Entry] = OrderedDict()
        self._lock = Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.expires_at <= self._clock():
                del self._data[key]
                self._misses += 1
                return None
            self._data.move_to_end(key)
            self._hits += 1
            return entry.value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        expires_at = self._clock() + (ttl if ttl is not None else self.default_ttl)
        with self._lock:
            if key in self._data:
                self._data.move_to_end(key)
            elif len(self._data) >= self.max_size:
                evicted, _ = self._data.popitem(last=False)
                self._evictions += 1
                logger.debug(f"Cache {self.name}: evicted {evicted}")
            self._data[key] = _Entry(value=value, expires_at=expires_at)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def invalidate_prefix(self, prefix: str) -> int:
        with self._lock:
            keys = [key for key in self._data if key.startswith(prefix)]
            for key in keys:
                del self._data[key]
        if keys:
            logger.debug(f"Cache {self.name}: invalidated {len(keys)} keys under '{prefix}'")
        return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()
            self._hits = self._misses = self._evictions = 0

    async def get_or_set(
        self,
        key: str,
        factory: Callable[[], Awaitable[Any]],
        ttl: Optional[float] = None,
    ) -> Any:
        """Return the cached value or await ``factory`` and cache its result."""
        cached = self.get(key)
        if cached is not None:
            return cached
        value = await factory()
        if value is not None:
            self.set(key, value, ttl)
        return value

    def stats(self) -> dict:
        with self._lock:
            total = self._hits + self._misses
            return {
                "name": self.name,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "size": len(self._data),
                "max_size": self.max_size,
                "hit_rate": round(self._hits / total, 4) if total else 0.0,
            }


# =============================================================================
# NAMED CACHES
# =============================================================================

stall_cache = CacheManager("stalls", max_size=500, default_ttl=300)
product_cache = CacheManager("products", max_size=2000, default_ttl=600)
admin_cache = CacheManager("admin", max_size=100, default_ttl=60)

ALL_CACHES = (stall_cache, product_cache, admin_cache)


def invalidate_catalog() -> None:
    """Drop cached listings after a business, stall or product write."""
    stall_cache.invalidate_prefix("stalls:")
    product_cache.invalidate_prefix("products:")
    admin_cache.delete("overview")


def cache_stats() -> list[dict]:
    return [cache.stats() for cache in ALL_CACHES]
