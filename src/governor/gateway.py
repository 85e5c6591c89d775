"""
Governed request gateway.

Wires the rate card, limiter registry, response cache and usage tracker
together and gives each provider call the full treatment: cache lookup,
monthly cap check, rate-limited fetch, cache store and usage increment,
with stale-cache fallback when the fetch fails.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, TypeVar

from governor.cache import CachedResult, CacheStrategy, KeyValueStore, ResponseCache
from governor.cache.factory import open_store
from governor.cache.memory import MemoryTier
from governor.clock import Clock
from governor.config import Settings
from governor.quota import LimiterRegistry, RateLimitStatus, UsageSnapshot, UsageTracker
from governor.quota.limiter import Sleep
from governor.services import RateCard, ServiceId

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Gateway:
    """
    Composition root of the governance layer for one process.

    Construct once at startup (see `from_settings`) and pass it to the
    provider clients that need it.
    """

    def __init__(
        self,
        rate_card: RateCard,
        store: KeyValueStore,
        *,
        limiters: LimiterRegistry | None = None,
        cache: ResponseCache | None = None,
        usage: UsageTracker | None = None,
        warning_threshold: float = 0.8,
        clock: Clock | None = None,
        sleep: Sleep | None = None,
    ) -> None:
        """
        Initialize the gateway.

        Args:
            rate_card: Service limits table
            store: Durable store shared by the cache and the usage tracker
            limiters: Limiter registry (built from rate_card if None)
            cache: Response cache (built over store if None)
            usage: Usage tracker (built over store if None)
            warning_threshold: Near-limit fraction for the usage tracker
            clock: Time source in epoch milliseconds
            sleep: Sleep coroutine for rate limiter waits
        """
        self.rate_card = rate_card
        self.store = store
        self.limiters = limiters or LimiterRegistry(rate_card, clock=clock, sleep=sleep)
        self.cache = cache or ResponseCache(store, clock=clock)
        self.usage = usage or UsageTracker(
            store,
            rate_card,
            self.limiters,
            warning_threshold=warning_threshold,
            clock=clock,
        )

    @classmethod
    async def from_settings(cls, settings: Settings) -> Gateway:
        """
        Build a gateway from configuration.

        Loads the rate card (with optional JSON overrides) and opens the
        configured durable store.
        """
        rate_card = RateCard.load(settings.rate_card_path)
        store = await open_store(settings)
        limiters = LimiterRegistry(rate_card, max_wait_ms=settings.rate_limit_max_wait_ms)
        cache = ResponseCache(
            store,
            memory=MemoryTier(max_size=settings.memory_cache_max_size),
            default_ttl_ms=settings.cache_default_ttl_ms,
            promotion_ttl_ms=settings.cache_promotion_ttl_ms,
            sweep_interval_seconds=settings.cache_sweep_interval_seconds,
        )
        usage = UsageTracker(
            store,
            rate_card,
            limiters,
            warning_threshold=settings.usage_warning_threshold,
        )
        logger.info(
            f"Gateway ready: {len(rate_card)} services, {store.name} store, "
            f"sweep every {settings.cache_sweep_interval_seconds}s"
        )
        return cls(rate_card, store, limiters=limiters, cache=cache, usage=usage)

    async def fetch(
        self,
        service: str | ServiceId,
        endpoint: str,
        fetch_fn: Callable[[], Awaitable[Any]],
        params: Mapping[str, Any] | None = None,
        *,
        ttl_ms: float | None = None,
        force_refresh: bool = False,
        strategy: CacheStrategy | None = None,
    ) -> CachedResult:
        """
        Get data for a provider request, governed end to end.

        Args:
            service: Service id
            endpoint: Endpoint path or operation name (part of the cache key)
            fetch_fn: Zero-argument coroutine function performing the request
            params: Request parameters (part of the cache key)
            ttl_ms: Cache lifetime (defaults to the service's default TTL)
            force_refresh: Skip the fresh-cache lookup
            strategy: Cache tier policy

        Returns:
            CachedResult envelope

        Raises:
            QuotaExceededError: If the monthly cap is reached and nothing is cached
            Exception: The fetch error, if nothing is cached
        """
        service_id = ServiceId.parse(service)
        limits = self.rate_card[service_id]
        ttl = ttl_ms if ttl_ms is not None else limits.default_ttl_ms

        async def governed_fetch() -> Any:
            return await self.usage.guarded_request(service_id, fetch_fn)

        return await self.cache.fetch_with_cache(
            service_id,
            endpoint,
            params,
            governed_fetch,
            ttl_ms=ttl,
            force_refresh=force_refresh,
            strategy=strategy,
        )

    async def execute_rate_limited(
        self,
        service: str | ServiceId,
        task: Callable[[], Awaitable[T]],
    ) -> T:
        """Run a task under the service's rate limit only."""
        return await self.limiters.execute(service, task)

    async def record_usage(self, service: str | ServiceId) -> int:
        return await self.usage.increment(service)

    async def get_usage(self, service: str | ServiceId) -> UsageSnapshot:
        return await self.usage.usage(service)

    async def is_near_limit(self, service: str | ServiceId) -> bool:
        return await self.usage.is_near_limit(service)

    async def has_exceeded_limit(self, service: str | ServiceId) -> bool:
        return await self.usage.has_exceeded_limit(service)

    def rate_limit_status(self) -> dict[str, RateLimitStatus]:
        return self.limiters.status_all()

    async def start(self) -> None:
        """Start background maintenance (cache sweeper)."""
        await self.cache.start_sweeper()

    async def close(self) -> None:
        """Stop background tasks and close the durable store."""
        await self.cache.stop_sweeper()
        await self.store.close()

    async def __aenter__(self) -> Gateway:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
