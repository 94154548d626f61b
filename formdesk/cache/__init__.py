"""
Cache layer for FormDesk.

Provides:
- CacheBackend: protocol for string key/value backends with TTL
- MemoryCacheBackend: TTL + LRU in-memory backend
- StoreCache: version-prefixed keys, fingerprints and JSON payloads
"""

from .backend import CacheBackend, CacheStats, MemoryCacheBackend
from .store_cache import StoreCache

__all__ = [
    "CacheBackend",
    "CacheStats",
    "MemoryCacheBackend",
    "StoreCache",
]
