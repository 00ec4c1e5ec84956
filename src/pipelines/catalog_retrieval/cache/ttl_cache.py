"""Bounded TTL cache for expensive provider results.

Each pipeline owns two instances: one for query embeddings and one for
extracted query attributes. Entries expire ``ttl_seconds`` after they were
stored; expired entries are dropped lazily on read and periodically by the
``CacheSweeper``.

Eviction is by insertion order, not recency: when a new key is inserted into
a full cache, the entry that was inserted first is removed, even if it was
read a moment ago. Reads never reorder entries.
"""

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Hashable, Optional, TypeVar

from ..logging import RetrievalMetricsLogger

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass(frozen=True)
class CacheConfig:
    """Configuration for one cache tier."""

    enabled: bool = True
    ttl_seconds: float = 3600.0
    max_size: int = 1000


@dataclass
class CacheEntry(Generic[V]):
    """Cached value and the monotonic time it was stored."""

    value: V
    stored_at: float


class BoundedTTLCache(Generic[K, V]):
    """Capacity-bounded cache with time-based expiration and hit/miss counters.

    All state changes happen under a per-instance lock so size and counter
    invariants hold for concurrent coroutines and executor threads alike.
    """

    def __init__(
        self,
        name: str,
        config: CacheConfig,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize the cache.

        Args:
            name: Cache name used in stats and logs (e.g. "embeddings")
            config: Cache tier configuration
            clock: Monotonic time source in seconds
        """
        if config.max_size < 1:
            raise ValueError(f"max_size must be at least 1, got {config.max_size}")
        if config.ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {config.ttl_seconds}")

        self.name = name
        self.config = config
        self._clock = clock
        self._entries: "OrderedDict[K, CacheEntry[V]]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._metrics = RetrievalMetricsLogger(f"{name}_cache")

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    @property
    def hits(self) -> int:
        return self._hits

    @property
    def misses(self) -> int:
        return self._misses

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        entry = self._entries.get(key)
        return entry is not None and not self._is_expired(entry, self._clock())

    def get(self, key: K) -> Optional[V]:
        """Return the live value for ``key`` or ``None`` on a miss.

        Counts exactly one hit or one miss. An expired entry is removed and
        counted as a miss.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and self._is_expired(entry, self._clock()):
                del self._entries[key]
                self._metrics.log_cache_operation(self.name, "expire", cache_size=len(self._entries))
                entry = None

            if entry is None:
                self._misses += 1
                self._metrics.log_cache_operation(self.name, "miss", cache_size=len(self._entries))
                return None

            self._hits += 1
            self._metrics.log_cache_operation(self.name, "hit", cache_size=len(self._entries))
            return entry.value

    def put(self, key: K, value: V) -> None:
        """Store ``value`` under ``key``.

        A new key inserted into a full cache evicts exactly one entry, the
        first one in insertion order. Replacing an existing key refreshes its
        value and timestamp without evicting anything.
        """
        with self._lock:
            now = self._clock()
            if key in self._entries:
                self._entries[key] = CacheEntry(value=value, stored_at=now)
                return

            if len(self._entries) >= self.config.max_size:
                self._entries.popitem(last=False)
                self._metrics.log_cache_operation(self.name, "evict", cache_size=len(self._entries))

            self._entries[key] = CacheEntry(value=value, stored_at=now)
            self._metrics.log_cache_operation(self.name, "set", cache_size=len(self._entries))

    def sweep(self) -> int:
        """Remove every expired entry.

        Returns:
            Number of entries removed
        """
        with self._lock:
            now = self._clock()
            expired_keys = [
                key for key, entry in self._entries.items()
                if self._is_expired(entry, now)
            ]
            for key in expired_keys:
                del self._entries[key]

        if expired_keys:
            self._metrics.log_cache_operation(
                self.name, "sweep", cache_size=len(self._entries), removed=len(expired_keys)
            )
        return len(expired_keys)

    def clear(self) -> None:
        """Remove all entries and reset hit/miss counters."""
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0
        self._metrics.log_cache_operation(self.name, "clear", cache_size=0)

    def hit_rate(self) -> float:
        total = self._hits + self._misses
        return round(self._hits / total, 2) if total > 0 else 0.0

    def stats(self) -> Dict[str, Any]:
        """
        Get cache statistics.

        Returns:
            Dictionary with size, max_size, hits, misses and hit_rate
        """
        with self._lock:
            return {
                'size': len(self._entries),
                'max_size': self.config.max_size,
                'hits': self._hits,
                'misses': self._misses,
                'hit_rate': self.hit_rate(),
            }

    def _is_expired(self, entry: CacheEntry[V], now: float) -> bool:
        return now - entry.stored_at >= self.config.ttl_seconds
