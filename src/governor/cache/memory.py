"""In-memory cache tier and store implementations."""

import logging
from typing import Any

from governor.cache.base import CacheEntry, KeyValueStore

logger = logging.getLogger(__name__)


class MemoryTier:
    """
    Ephemeral cache tier holding decoded entries in a dictionary.

    Best for:
    - Serving repeated reads within one process
    - Holding short-lived promotions from the durable tier

    Limitations:
    - Not shared across processes
    - Lost on restart

    Operations are synchronous; nothing here awaits, so each call is
    atomic with respect to the event loop. Expired entries are kept until
    swept or overwritten so they stay available for stale reads.
    """

    def __init__(self, max_size: int | None = None) -> None:
        """
        Initialize the tier.

        Args:
            max_size: Maximum number of entries (None = unlimited)
        """
        self._store: dict[str, CacheEntry] = {}
        self._max_size = max_size

    def get(self, key: str) -> CacheEntry | None:
        """Get an entry regardless of expiry."""
        return self._store.get(key)

    def get_fresh(self, key: str, now: float) -> CacheEntry | None:
        """Get an entry only if it has not expired at `now`."""
        entry = self._store.get(key)
        if entry is None or entry.is_expired(now):
            return None
        return entry

    def set(self, entry: CacheEntry) -> None:
        """Store an entry, evicting the oldest one if full."""
        if (
            self._max_size
            and entry.key not in self._store
            and len(self._store) >= self._max_size
        ):
            self._evict_oldest()
        self._store[entry.key] = entry

    def delete(self, key: str) -> bool:
        """Delete an entry."""
        return self._store.pop(key, None) is not None

    def keys(self, prefix: str = "") -> list[str]:
        return [k for k in self._store if k.startswith(prefix)]

    def clear(self, prefix: str = "") -> int:
        """Delete all entries whose key starts with prefix."""
        keys = self.keys(prefix)
        for key in keys:
            del self._store[key]
        return len(keys)

    def sweep(self, now: float) -> int:
        """Remove all entries expired at `now`."""
        expired_keys = [k for k, v in self._store.items() if v.is_expired(now)]
        for key in expired_keys:
            del self._store[key]

        if expired_keys:
            logger.debug(f"Swept {len(expired_keys)} expired memory cache entries")

        return len(expired_keys)

    def _evict_oldest(self) -> None:
        """Evict the entry with the oldest write time."""
        if not self._store:
            return

        oldest_key = min(self._store, key=lambda k: self._store[k].cached_at)
        del self._store[oldest_key]

    def size(self) -> int:
        """Get current number of entries."""
        return len(self._store)


class MemoryStore(KeyValueStore):
    """
    Dictionary-backed KeyValueStore.

    Stands in for the durable tier when persistence is not wanted
    (development, tests). Contents are lost on restart.
    """

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._connected = True

    @property
    def name(self) -> str:
        return "memory"

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> bool:
        self._data[key] = value
        return True

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    async def keys(self, prefix: str = "") -> list[str]:
        return [k for k in self._data if k.startswith(prefix)]

    async def close(self) -> None:
        self._connected = False

    async def health_check(self) -> dict[str, Any]:
        return {
            "backend": self.name,
            "connected": self.is_connected,
            "total_keys": len(self._data),
        }
