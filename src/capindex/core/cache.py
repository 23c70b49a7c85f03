"""
Bounded LRU cache for recomputation shortcuts.

Holds tokenizations and pairwise similarity scores. Eviction only throws
away work that can be redone; it never touches persisted index data.
"""

import hashlib
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Generic, Hashable, Optional, TypedDict, TypeVar

from capindex.core.logging import logger

V = TypeVar("V")


class CacheStats(TypedDict):
    """TypedDict for cache statistics."""

    name: str
    size: int
    max_size: int
    hits: int
    misses: int
    evictions: int
    capacity_used: float


@dataclass
class CacheEntry(Generic[V]):
    """Cache entry.

    Attributes:
        value: Stored value
        created_at: Creation timestamp (for TTL)
    """

    value: V
    created_at: float


def text_key(*parts: str) -> str:
    """Stable short key for arbitrarily long text parts."""
    joined = "\x1f".join(parts)
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()


class LRUCache(Generic[V]):
    """LRU cache with an optional TTL and a hard size cap.

    Uses OrderedDict for O(1) LRU eviction.

    Attributes:
        name: Label used in logs and stats
        max_size: Maximum number of entries
        ttl_seconds: Time to live per entry (None = no expiry)
    """

    def __init__(self, name: str, max_size: int = 500, ttl_seconds: Optional[float] = None):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.name = name
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._cache: "OrderedDict[Hashable, CacheEntry[V]]" = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

        logger.debug("LRUCache initialized", cache=name, max_size=max_size, ttl_seconds=ttl_seconds)

    def get(self, key: Hashable) -> Optional[V]:
        """Return the cached value, or None when missing or expired."""
        entry = self._cache.get(key)
        if entry is None:
            self._misses += 1
            return None

        if self.ttl_seconds is not None and time.time() - entry.created_at > self.ttl_seconds:
            del self._cache[key]
            self._misses += 1
            return None

        self._cache.move_to_end(key)
        self._hits += 1
        return entry.value

    def set(self, key: Hashable, value: V) -> None:
        """Store a value, evicting the least recently used entry when full."""
        if key in self._cache:
            self._cache.move_to_end(key)
        elif len(self._cache) >= self.max_size:
            self._cache.popitem(last=False)
            self._evictions += 1

        self._cache[key] = CacheEntry(value=value, created_at=time.time())

    def get_or_compute(self, key: Hashable, compute: Callable[[], V]) -> V:
        value = self.get(key)
        if value is None:
            value = compute()
            self.set(key, value)
        return value

    def discard(self, key: Hashable) -> None:
        self._cache.pop(key, None)

    def clear(self) -> None:
        """Clears the cache."""
        size = len(self._cache)
        self._cache.clear()
        logger.debug("Cache cleared", cache=self.name, removed=size)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._cache

    def __len__(self) -> int:
        return len(self._cache)

    @property
    def size(self) -> int:
        """Current number of entries in cache."""
        return len(self._cache)

    def get_stats(self) -> CacheStats:
        return {
            "name": self.name,
            "size": len(self._cache),
            "max_size": self.max_size,
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
            "capacity_used": len(self._cache) / self.max_size,
        }
