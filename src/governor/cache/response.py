"""
Two-tier response cache with stale-on-error fallback.

Responses are kept in a process-local memory tier and a durable store.
Fresh hits skip the network entirely; when a live fetch fails, the most
recent cached value is served as stale data instead of the error.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from governor.cache.base import (
    CACHE_KEY_PREFIX,
    CacheEntry,
    CacheStrategy,
    KeyValueStore,
    is_cache_key,
)
from governor.cache.memory import MemoryTier
from governor.clock import Clock, now_ms
from governor.errors import CacheCorruptionError

logger = logging.getLogger(__name__)


@dataclass
class CachedResult:
    """Data envelope returned by fetch_with_cache."""

    data: Any
    """Response payload."""

    cached: bool
    """True if the payload came from the cache."""

    stale: bool = False
    """True if the payload is expired data served after a failed fetch."""

    def to_dict(self) -> dict[str, Any]:
        result = {"data": self.data, "cached": self.cached}
        if self.stale:
            result["stale"] = True
        return result


def format_param(value: Any) -> str:
    """Render a parameter value the way query strings spell it."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return format_param(value.value)
    if isinstance(value, (list, tuple)):
        return ",".join(format_param(v) for v in value)
    return str(value)


def derive_key(
    service: str | Enum,
    endpoint: str,
    params: Mapping[str, Any] | None = None,
) -> str:
    """
    Build the canonical cache key for a request.

    Params are sorted by name so that the same logical request always
    maps to the same key regardless of insertion order.

    Args:
        service: Service id
        endpoint: Endpoint path or operation name
        params: Request parameters

    Returns:
        Key of the form "api_{service}_{endpoint}_{k1=v1&k2=v2}"
    """
    service_name = service.value if isinstance(service, Enum) else service
    param_string = "&".join(
        f"{name}={format_param(value)}" for name, value in sorted((params or {}).items())
    )
    return f"{CACHE_KEY_PREFIX}{service_name}_{endpoint}_{param_string}"


class ResponseCache:
    """
    Response cache over a memory tier and a durable store.

    Reads check memory first and fall back to the durable store; a fresh
    durable hit is copied into memory for a short time. Writes go to the
    tiers selected by the CacheStrategy. Expired entries are not removed
    on read: they stay available for stale fallback until the periodic
    sweep or an explicit invalidation removes them.
    """

    def __init__(
        self,
        store: KeyValueStore,
        memory: MemoryTier | None = None,
        default_ttl_ms: float = 30_000,
        promotion_ttl_ms: float = 30_000,
        sweep_interval_seconds: float = 300,
        default_strategy: CacheStrategy = CacheStrategy.MEMORY_FIRST,
        clock: Clock | None = None,
    ) -> None:
        """
        Initialize the cache.

        Args:
            store: Durable tier
            memory: Ephemeral tier (a fresh MemoryTier if None)
            default_ttl_ms: Lifetime used when a caller gives none
            promotion_ttl_ms: Maximum lifetime of durable -> memory copies
            sweep_interval_seconds: How often the sweeper purges expired entries
            default_strategy: Tier policy used when a caller gives none
            clock: Time source in epoch milliseconds
        """
        self._store = store
        self._memory = memory or MemoryTier()
        self._default_ttl_ms = default_ttl_ms
        self._promotion_ttl_ms = promotion_ttl_ms
        self._sweep_interval = sweep_interval_seconds
        self._default_strategy = default_strategy
        self._clock = clock or now_ms
        self._sweep_task: asyncio.Task | None = None

    derive_key = staticmethod(derive_key)

    @property
    def store(self) -> KeyValueStore:
        return self._store

    @property
    def memory(self) -> MemoryTier:
        return self._memory

    async def _read_durable(self, key: str) -> CacheEntry | None:
        """Read and decode a durable entry, dropping it if corrupt."""
        raw = await self._store.get(key)
        if raw is None:
            return None

        try:
            return CacheEntry.from_json(key, raw)
        except CacheCorruptionError as e:
            logger.warning(f"{e}, removing")
            await self._store.delete(key)
            return None

    async def _write_durable(self, entry: CacheEntry) -> bool:
        """Persist an entry; failures are logged, never raised."""
        try:
            raw = entry.to_json()
        except (TypeError, ValueError) as e:
            logger.warning(f"Cannot persist {entry.key}, value is not JSON-serializable: {e}")
            return False

        if not await self._store.set(entry.key, raw):
            logger.warning(
                f"Durable cache write failed for {entry.key}, keeping memory copy only"
            )
            return False
        return True

    def _promote(self, entry: CacheEntry) -> None:
        """Copy a fresh durable entry into memory for a short time."""
        now = self._clock()
        current = self._memory.get(entry.key)
        if current is not None and current.cached_at > entry.cached_at:
            # A newer set() landed while we were reading the durable tier
            return

        ttl = min(self._promotion_ttl_ms, entry.ttl_remaining(now))
        self._memory.set(
            CacheEntry(
                key=entry.key,
                value=entry.value,
                cached_at=entry.cached_at,
                expires_at=now + ttl,
            )
        )

    async def get_entry(
        self,
        key: str,
        strategy: CacheStrategy | None = None,
    ) -> CacheEntry | None:
        """
        Get a fresh entry.

        Args:
            key: Cache key
            strategy: Tier policy (defaults to the cache's policy)

        Returns:
            The entry, or None if absent or expired in every tier read
        """
        strategy = strategy or self._default_strategy

        if strategy.uses_memory:
            entry = self._memory.get_fresh(key, self._clock())
            if entry is not None:
                return entry

        if strategy.uses_durable:
            entry = await self._read_durable(key)
            if entry is not None and not entry.is_expired(self._clock()):
                if strategy is CacheStrategy.MEMORY_FIRST:
                    self._promote(entry)
                return entry

        return None

    async def get(self, key: str, strategy: CacheStrategy | None = None) -> Any | None:
        """Get a fresh cached value, or None."""
        entry = await self.get_entry(key, strategy)
        return entry.value if entry is not None else None

    async def set(
        self,
        key: str,
        value: Any,
        ttl_ms: float | None = None,
        strategy: CacheStrategy | None = None,
    ) -> CacheEntry:
        """
        Store a value.

        Args:
            key: Cache key
            value: JSON-serializable payload
            ttl_ms: Lifetime in milliseconds (defaults to the cache's TTL)
            strategy: Tier policy (defaults to the cache's policy)

        Returns:
            The stored entry
        """
        strategy = strategy or self._default_strategy
        ttl = ttl_ms if ttl_ms is not None else self._default_ttl_ms
        entry = CacheEntry.create(key, value, ttl, self._clock())

        if strategy.uses_memory:
            self._memory.set(entry)
        if strategy.uses_durable:
            await self._write_durable(entry)

        return entry

    async def get_stale(self, key: str) -> CacheEntry | None:
        """
        Get the newest entry for a key regardless of expiry.

        Use when a live fetch fails and any cached data is better than none.
        """
        candidates = [self._memory.get(key), await self._read_durable(key)]
        present = [entry for entry in candidates if entry is not None]
        if not present:
            return None
        return max(present, key=lambda entry: entry.cached_at)

    async def fetch_with_cache(
        self,
        service: str | Enum,
        endpoint: str,
        params: Mapping[str, Any] | None,
        fetch_fn: Callable[[], Awaitable[Any]],
        *,
        ttl_ms: float | None = None,
        force_refresh: bool = False,
        strategy: CacheStrategy | None = None,
    ) -> CachedResult:
        """
        Serve a request from cache or fetch and cache it.

        Args:
            service: Service id
            endpoint: Endpoint path or operation name
            params: Request parameters (part of the cache key)
            fetch_fn: Zero-argument coroutine function performing the request
            ttl_ms: Lifetime of the fetched value
            force_refresh: Skip the fresh-cache lookup
            strategy: Tier policy

        Returns:
            CachedResult with cached=True on hits and stale=True when
            expired data was served after a failed fetch

        Raises:
            Exception: The fetch error, when no cached data exists
        """
        key = derive_key(service, endpoint, params)

        if not force_refresh:
            entry = await self.get_entry(key, strategy)
            if entry is not None:
                logger.debug(f"Cache hit for {key}")
                return CachedResult(data=entry.value, cached=True)

        try:
            data = await fetch_fn()
        except Exception as e:
            stale = await self.get_stale(key)
            if stale is not None:
                age_s = stale.age_ms(self._clock()) / 1000
                logger.warning(
                    f"Fetch failed for {key}, serving stale cache (age: {age_s:.0f}s): {e}"
                )
                return CachedResult(data=stale.value, cached=True, stale=True)
            raise

        await self.set(key, data, ttl_ms, strategy)
        return CachedResult(data=data, cached=False)

    async def invalidate(self, key: str) -> bool:
        """
        Remove a key from both tiers.

        Returns:
            True if either tier held the key
        """
        in_memory = self._memory.delete(key)
        in_store = await self._store.delete(key)
        return in_memory or in_store

    async def invalidate_request(
        self,
        service: str | Enum,
        endpoint: str,
        params: Mapping[str, Any] | None = None,
    ) -> bool:
        """Remove the cached response for a request from both tiers."""
        return await self.invalidate(derive_key(service, endpoint, params))

    async def sweep_expired(self) -> int:
        """
        Remove expired and corrupt entries from both tiers.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        removed = self._memory.sweep(now)

        for key in await self._store.keys(CACHE_KEY_PREFIX):
            if not is_cache_key(key):
                continue
            raw = await self._store.get(key)
            if raw is None:
                continue
            try:
                entry = CacheEntry.from_json(key, raw)
            except CacheCorruptionError as e:
                logger.warning(f"{e}, removing")
                if await self._store.delete(key):
                    removed += 1
                continue
            if entry.is_expired(now) and await self._store.delete(key):
                removed += 1

        if removed:
            logger.debug(f"Swept {removed} expired cache entries")
        return removed

    async def clear(self) -> int:
        """
        Drop every cached response from both tiers.

        Usage counters sharing the durable store are left untouched.

        Returns:
            Number of entries removed
        """
        removed = self._memory.clear()
        for key in await self._store.keys(CACHE_KEY_PREFIX):
            if is_cache_key(key) and await self._store.delete(key):
                removed += 1
        logger.info(f"Cleared {removed} cache entries")
        return removed

    async def stats(self) -> dict[str, Any]:
        """Get entry counts per tier."""
        durable_keys = [k for k in await self._store.keys(CACHE_KEY_PREFIX) if is_cache_key(k)]
        return {
            "memory": {
                "size": self._memory.size(),
                "entries": self._memory.keys(),
            },
            "durable": {
                "backend": self._store.name,
                "size": len(durable_keys),
            },
        }

    async def start_sweeper(self) -> None:
        """Start background task to periodically purge expired entries."""
        if self._sweep_task is not None:
            return

        async def sweep_loop() -> None:
            while True:
                try:
                    await asyncio.sleep(self._sweep_interval)
                    await self.sweep_expired()
                except asyncio.CancelledError:
                    break
                except Exception as e:
                    logger.error(f"Cache sweep error: {e}")

        self._sweep_task = asyncio.create_task(sweep_loop())

    async def stop_sweeper(self) -> None:
        """Stop the sweeper task."""
        if self._sweep_task is None:
            return

        self._sweep_task.cancel()
        try:
            await self._sweep_task
        except asyncio.CancelledError:
            pass
        self._sweep_task = None
