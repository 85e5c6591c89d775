"""Tests for the governed request gateway."""

from unittest.mock import AsyncMock

import pytest

from governor.cache.memory import MemoryStore
from governor.config import Settings
from governor.errors import FetchError, QuotaExceededError
from governor.gateway import Gateway
from governor.services import RateCard
from tests.conftest import FakeClock


@pytest.fixture
def gateway(store: MemoryStore, rate_card: RateCard, clock: FakeClock) -> Gateway:
    return Gateway(rate_card, store, clock=clock, sleep=clock.sleep)


class TestGatewayFetch:
    """Tests for Gateway.fetch."""

    @pytest.mark.asyncio
    async def test_miss_fetches_and_counts(self, gateway: Gateway) -> None:
        fetch = AsyncMock(return_value={"bitcoin": {"usd": 42000}})

        result = await gateway.fetch("coingecko", "simple/price", fetch, {"ids": "bitcoin"})

        assert result.data == {"bitcoin": {"usd": 42000}}
        assert not result.cached
        assert (await gateway.get_usage("coingecko")).used == 1

    @pytest.mark.asyncio
    async def test_hit_skips_fetch_limiter_and_usage(self, gateway: Gateway) -> None:
        fetch = AsyncMock(return_value=[1, 2, 3])

        await gateway.fetch("coingecko", "coins/list", fetch)
        result = await gateway.fetch("coingecko", "coins/list", fetch)

        assert result.cached
        fetch.assert_awaited_once()
        assert (await gateway.get_usage("coingecko")).used == 1
        assert gateway.rate_limit_status()["coingecko"].requests == 1

    @pytest.mark.asyncio
    async def test_ttl_defaults_to_service_default(
        self, gateway: Gateway, clock: FakeClock
    ) -> None:
        # Basescan wallet balances live for five minutes
        fetch = AsyncMock(side_effect=["1.5", "2.0"])

        await gateway.fetch("basescan", "balance", fetch, {"address": "0xabc"})
        clock.advance(4 * 60 * 1000)
        assert (await gateway.fetch("basescan", "balance", fetch, {"address": "0xabc"})).cached

        clock.advance(2 * 60 * 1000)
        result = await gateway.fetch("basescan", "balance", fetch, {"address": "0xabc"})

        assert result.data == "2.0"
        assert fetch.await_count == 2

    @pytest.mark.asyncio
    async def test_explicit_ttl(self, gateway: Gateway, clock: FakeClock) -> None:
        fetch = AsyncMock(side_effect=[1, 2])

        await gateway.fetch("defillama", "tvl", fetch, ttl_ms=1000)
        clock.advance(1500)
        result = await gateway.fetch("defillama", "tvl", fetch, ttl_ms=1000)

        assert result.data == 2

    @pytest.mark.asyncio
    async def test_quota_exceeded_without_cache(
        self, gateway: Gateway, store: MemoryStore
    ) -> None:
        await store.set("api_usage_dexcheck_2024-01", "10")
        fetch = AsyncMock()

        with pytest.raises(QuotaExceededError):
            await gateway.fetch("dexcheck", "whales", fetch)

        fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_quota_exceeded_serves_stale(
        self, gateway: Gateway, store: MemoryStore, clock: FakeClock
    ) -> None:
        await gateway.fetch("dexcheck", "whales", AsyncMock(return_value=["0x1"]))
        await store.set("api_usage_dexcheck_2024-01", "10")
        clock.advance(60 * 60 * 1000)

        result = await gateway.fetch("dexcheck", "whales", AsyncMock())

        assert result.stale
        assert result.data == ["0x1"]

    @pytest.mark.asyncio
    async def test_fetch_error_serves_stale(self, gateway: Gateway, clock: FakeClock) -> None:
        await gateway.fetch("coingecko", "p", AsyncMock(return_value="old"))
        clock.advance(60 * 1000)

        result = await gateway.fetch(
            "coingecko", "p", AsyncMock(side_effect=FetchError("coingecko", "429 Too Many Requests"))
        )

        assert result.stale
        assert result.data == "old"


class TestGatewayHelpers:
    """Tests for pass-through helpers and lifecycle."""

    @pytest.mark.asyncio
    async def test_execute_rate_limited_does_not_count(self, gateway: Gateway) -> None:
        result = await gateway.execute_rate_limited("moralis", AsyncMock(return_value="ok"))

        assert result == "ok"
        assert (await gateway.get_usage("moralis")).used == 0

    @pytest.mark.asyncio
    async def test_record_usage(self, gateway: Gateway) -> None:
        await gateway.record_usage("dexcheck")
        for _ in range(8):
            await gateway.record_usage("dexcheck")

        assert await gateway.is_near_limit("dexcheck")
        assert not await gateway.has_exceeded_limit("dexcheck")

        await gateway.record_usage("dexcheck")
        assert await gateway.has_exceeded_limit("dexcheck")

    @pytest.mark.asyncio
    async def test_context_manager(self, store: MemoryStore, rate_card: RateCard) -> None:
        async with Gateway(rate_card, store) as gateway:
            assert gateway.cache._sweep_task is not None

        assert gateway.cache._sweep_task is None
        assert not store.is_connected

    @pytest.mark.asyncio
    async def test_from_settings(self) -> None:
        settings = Settings(_env_file=None, cache_store="memory", rate_limit_max_wait_ms=100)

        gateway = await Gateway.from_settings(settings)
        try:
            assert gateway.store.name == "memory"
            assert len(gateway.rate_card) == 10
        finally:
            await gateway.close()
