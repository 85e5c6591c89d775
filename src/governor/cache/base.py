"""Cache entries, tier policies and the durable store interface."""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any

from governor.errors import CacheCorruptionError


class CacheStrategy(str, Enum):
    """Which tiers a cache read or write touches."""

    MEMORY_ONLY = "memory"
    DURABLE_ONLY = "durable"
    MEMORY_FIRST = "memory_first"  # Read memory, then durable with promotion
    BOTH = "both"  # Read memory, then durable without promotion

    @property
    def uses_memory(self) -> bool:
        return self is not CacheStrategy.DURABLE_ONLY

    @property
    def uses_durable(self) -> bool:
        return self is not CacheStrategy.MEMORY_ONLY


@dataclass
class CacheEntry:
    """
    A cached value with its lifetime.

    Attributes:
        key: Cache key
        value: Cached data (JSON-serializable)
        cached_at: When the entry was written, epoch milliseconds
        expires_at: When the entry stops being fresh, epoch milliseconds
    """

    key: str
    value: Any
    cached_at: float
    expires_at: float

    @classmethod
    def create(cls, key: str, value: Any, ttl_ms: float, now: float) -> "CacheEntry":
        """Create an entry stamped at `now` that stays fresh for `ttl_ms`."""
        return cls(key=key, value=value, cached_at=now, expires_at=now + ttl_ms)

    def is_expired(self, now: float) -> bool:
        """Check if the entry is past its expiry at `now`."""
        return now > self.expires_at

    def ttl_remaining(self, now: float) -> float:
        """Get milliseconds of freshness left (0 once expired)."""
        return max(0.0, self.expires_at - now)

    def age_ms(self, now: float) -> float:
        """Get entry age in milliseconds."""
        return now - self.cached_at

    def to_json(self) -> str:
        """
        Serialize for the durable tier.

        Raises:
            TypeError: If the value is not JSON-serializable
        """
        return json.dumps(
            {
                "data": self.value,
                "expiresAt": self.expires_at,
                "cachedAt": self.cached_at,
            }
        )

    @classmethod
    def from_json(cls, key: str, raw: str | bytes) -> "CacheEntry":
        """
        Decode a durable-tier record.

        Raises:
            CacheCorruptionError: If the record is not a valid entry
        """
        try:
            parsed = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError, TypeError) as e:
            raise CacheCorruptionError(key, f"invalid JSON ({e})") from e

        if not isinstance(parsed, dict) or "data" not in parsed:
            raise CacheCorruptionError(key, "missing data field")

        try:
            expires_at = float(parsed["expiresAt"])
            cached_at = float(parsed.get("cachedAt", expires_at))
        except (KeyError, TypeError, ValueError) as e:
            raise CacheCorruptionError(key, f"bad timestamps ({e})") from e

        return cls(key=key, value=parsed["data"], cached_at=cached_at, expires_at=expires_at)


class KeyValueStore(ABC):
    """
    Abstract string key/value store backing the durable tier.

    The response cache and the usage tracker both persist through this
    interface. Implementations log and swallow their own I/O errors:
    reads return None and writes return False instead of raising.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """
        Unique identifier for this backend.

        Returns:
            Backend name (e.g., 'file', 'redis')
        """
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """
        Check if the backend is usable.

        Returns:
            True if connected, False otherwise
        """
        ...

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """
        Get a raw value.

        Args:
            key: Store key

        Returns:
            Stored string, or None if missing or unreadable
        """
        ...

    @abstractmethod
    async def set(self, key: str, value: str) -> bool:
        """
        Store a raw value.

        Args:
            key: Store key
            value: String to persist

        Returns:
            True if persisted, False otherwise (e.g. quota exceeded)
        """
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """
        Delete a value.

        Args:
            key: Store key

        Returns:
            True if deleted, False if not found
        """
        ...

    @abstractmethod
    async def keys(self, prefix: str = "") -> list[str]:
        """
        List keys starting with a prefix.

        Args:
            prefix: Key prefix ("" = all keys)

        Returns:
            Matching keys
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release any resources held by the store."""
        ...

    async def clear(self, prefix: str = "") -> int:
        """
        Delete every key starting with a prefix.

        Returns:
            Number of keys deleted
        """
        count = 0
        for key in await self.keys(prefix):
            if await self.delete(key):
                count += 1
        return count

    async def health_check(self) -> dict[str, Any]:
        """
        Perform a health check on the store.

        Returns:
            Dict with health status info
        """
        return {
            "backend": self.name,
            "connected": self.is_connected,
        }


CACHE_KEY_PREFIX = "api_"
"""Namespace shared by every cache key in the durable tier."""

USAGE_KEY_PREFIX = "api_usage_"
"""Namespace of monthly usage counters, which live in the same store."""


def is_cache_key(key: str) -> bool:
    """Check whether a durable-store key belongs to the response cache."""
    return key.startswith(CACHE_KEY_PREFIX) and not key.startswith(USAGE_KEY_PREFIX)
