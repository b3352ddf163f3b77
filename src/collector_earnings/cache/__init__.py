"""Offline-tolerant snapshot cache."""

from collector_earnings.cache.manager import CacheHit, OfflineCacheManager
from collector_earnings.cache.storage import CacheStorage, FileCacheStorage, MemoryCacheStorage

__all__ = [
    "CacheHit",
    "OfflineCacheManager",
    "CacheStorage",
    "FileCacheStorage",
    "MemoryCacheStorage",
]
