"""
Cache backends for derived store data.

Features:
- TTL-based entry expiration with lazy cleanup
- Thread-safe operations with RLock
- LRU eviction when max size reached
- Hit/miss statistics tracking

Entries are never evicted by key pattern. Whole namespaces are abandoned by
bumping the store version held in the property store (see StoreCache).
"""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)


class CacheBackend(Protocol):
    """Key/value store for serialized cache payloads. Failures raise CacheUnavailable."""

    def get(self, key: str) -> str | None: ...

    def put(self, key: str, value: str, ttl_seconds: int) -> None: ...


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    size: int = 0
    hit_rate: float = 0.0

    def to_dict(self) -> dict:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "size": self.size,
            "hit_rate": self.hit_rate,
        }


class MemoryCacheBackend:
    """Thread-safe in-memory string cache with TTL and LRU eviction."""

    def __init__(self, max_size: int = 10000, clock: Callable[[], float] | None = None):
        """
        Initialize the backend.

        Args:
            max_size: Maximum number of entries before LRU eviction.
            clock: Time source in seconds; defaults to time.time.
        """
        self._cache: dict[str, tuple[str, float, float]] = {}  # key -> (value, expiry, access)
        self._lock = threading.RLock()
        self._max_size = max_size
        self._clock = clock or time.time
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> str | None:
        with self._lock:
            if key not in self._cache:
                self._misses += 1
                return None

            value, expiry_time, _access_time = self._cache[key]
            now = self._clock()
            if now >= expiry_time:
                del self._cache[key]
                self._misses += 1
                return None

            self._cache[key] = (value, expiry_time, now)
            self._hits += 1
            return value

    def put(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            now = self._clock()
            self._cache[key] = (value, now + ttl_seconds, now)
            if len(self._cache) > self._max_size:
                self._evict_lru()

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._cache.keys())

    def stats(self) -> CacheStats:
        with self._lock:
            total = self._hits + self._misses
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                size=len(self._cache),
                hit_rate=self._hits / total if total else 0.0,
            )

    def _evict_lru(self) -> None:
        """Evict least-recently-used entry. Caller holds the lock."""
        if not self._cache:
            return
        lru_key = min(self._cache.keys(), key=lambda k: self._cache[k][2])
        del self._cache[lru_key]
        logger.debug(f"Evicted LRU key: {lru_key}")
