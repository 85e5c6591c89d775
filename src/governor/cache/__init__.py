"""
Cache module for API responses.

Provides a two-tier response cache (process memory plus a durable
key/value store) and pluggable durable backends (JSON file, Redis).
"""

from governor.cache.base import CacheEntry, CacheStrategy, KeyValueStore
from governor.cache.factory import create_store, open_store
from governor.cache.file import JsonFileStore
from governor.cache.memory import MemoryStore, MemoryTier
from governor.cache.redis import RedisStore
from governor.cache.response import CachedResult, ResponseCache, derive_key

__all__ = [
    "CacheEntry",
    "CacheStrategy",
    "CachedResult",
    "JsonFileStore",
    "KeyValueStore",
    "MemoryStore",
    "MemoryTier",
    "RedisStore",
    "ResponseCache",
    "create_store",
    "derive_key",
    "open_store",
]
