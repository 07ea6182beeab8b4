"""TTL cache shared by the PyPI client and the lookup service."""

from __future__ import annotations

import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    """A single cache entry with TTL."""

    value: T
    expires_at: float
    created_at: float = field(default_factory=time.time)

    def is_expired(self, now: Optional[float] = None) -> bool:
        """Check if this entry has expired."""
        return (now if now is not None else time.time()) > self.expires_at


class TTLCache(Generic[T]):
    """Bounded TTL cache with least-recently-used eviction.

    Expired entries are dropped lazily on access and by a periodic sweep.
    """

    def __init__(
        self,
        max_entries: int = 1000,
        default_ttl: float = 300,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the cache.

        Args:
            max_entries: Entry count above which the least recently used entry is evicted.
            default_ttl: Default time-to-live in seconds.
            clock: Time source, injectable for tests.
        """
        self._max_entries = max_entries
        self._default_ttl = default_ttl
        self._clock = clock
        self._cache: "OrderedDict[str, CacheEntry[T]]" = OrderedDict()
        self._last_cleanup = clock()
        self._cleanup_interval = 60  # Run cleanup every minute
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Optional[T]:
        """Return the cached value or None if missing/expired."""
        self._maybe_cleanup()

        entry = self._cache.get(key)
        if entry is None:
            self._misses += 1
            return None

        if entry.is_expired(self._clock()):
            del self._cache[key]
            self._misses += 1
            return None

        self._cache.move_to_end(key)
        self._hits += 1
        return entry.value

    def set(self, key: str, value: T, ttl: Optional[float] = None) -> None:
        """Cache ``value`` under ``key``.

        Args:
            key: Cache key.
            value: Value to cache.
            ttl: Optional TTL override in seconds.
        """
        self._maybe_cleanup()

        now = self._clock()
        effective_ttl = ttl if ttl is not None else self._default_ttl
        self._cache[key] = CacheEntry(value=value, expires_at=now + effective_ttl, created_at=now)
        self._cache.move_to_end(key)

        while len(self._cache) > self._max_entries:
            self._cache.popitem(last=False)

    def invalidate(self, key: str) -> None:
        """Invalidate a cached entry."""
        self._cache.pop(key, None)

    def clear(self) -> None:
        """Clear all cached entries."""
        self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)

    def __contains__(self, key: object) -> bool:
        entry = self._cache.get(key)  # type: ignore[arg-type]
        return entry is not None and not entry.is_expired(self._clock())

    def stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        now = self._clock()
        expired_count = sum(1 for e in self._cache.values() if e.is_expired(now))
        return {
            "total_entries": len(self._cache),
            "expired_entries": expired_count,
            "active_entries": len(self._cache) - expired_count,
            "max_entries": self._max_entries,
            "default_ttl": self._default_ttl,
            "hits": self._hits,
            "misses": self._misses,
        }

    def _maybe_cleanup(self) -> None:
        """Run cleanup if enough time has passed."""
        now = self._clock()
        if now - self._last_cleanup > self._cleanup_interval:
            self._cleanup(now)
            self._last_cleanup = now

    def _cleanup(self, now: float) -> None:
        """Remove expired entries."""
        keys_to_remove = [k for k, v in self._cache.items() if v.is_expired(now)]
        for key in keys_to_remove:
            del self._cache[key]
