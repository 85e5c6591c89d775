"""Tests for the HTTP client and provider glue."""

import httpx
import pytest

from governor.cache.memory import MemoryStore
from governor.config import Settings
from governor.errors import FetchError
from governor.gateway import Gateway
from governor.http.client import HttpClient
from governor.providers import ProviderClient, api_headers, auth_params, build_api_url
from governor.services import RateCard, ServiceId
from tests.conftest import FakeClock


class TestBuildApiUrl:
    """Tests for URL construction."""

    @pytest.fixture
    def card(self) -> RateCard:
        return RateCard.default()

    def test_relative_endpoint(self, card: RateCard) -> None:
        url = build_api_url(card, "defillama", "/v2/chains")

        assert url == "https://api.llama.fi/v2/chains"

    def test_query_params(self, card: RateCard) -> None:
        url = build_api_url(card, "coingecko", "simple/price", {"ids": "bitcoin", "vs_currencies": "usd"})

        assert url == "https://api.coingecko.com/api/v3/simple/price?ids=bitcoin&vs_currencies=usd"

    def test_none_params_dropped(self, card: RateCard) -> None:
        url = build_api_url(card, "coingecko", "coins/list", {"include_platform": None})

        assert url == "https://api.coingecko.com/api/v3/coins/list"

    def test_absolute_endpoint_with_query(self, card: RateCard) -> None:
        url = build_api_url(card, "dexscreener", "https://example.com/x?a=1", {"b": 2})

        assert url == "https://example.com/x?a=1&b=2"


class TestAuth:
    """Tests for provider authentication."""

    def test_headers_without_key(self) -> None:
        assert api_headers("moralis", {}) == {"Accept": "application/json"}

    @pytest.mark.parametrize(
        ("service", "header", "value"),
        [
            (ServiceId.MORALIS, "X-API-Key", "k"),
            (ServiceId.BITQUERY, "X-API-KEY", "k"),
            (ServiceId.DEXCHECK, "Authorization", "Bearer k"),
            (ServiceId.COINGECKO, "x-cg-demo-api-key", "k"),
        ],
    )
    def test_headers_with_key(self, service: ServiceId, header: str, value: str) -> None:
        headers = api_headers(service, {service.value: "k"})

        assert headers[header] == value

    def test_basescan_uses_query_param(self) -> None:
        assert auth_params("basescan", {"basescan": "secret"}) == {"apikey": "secret"}
        assert auth_params("coingecko", {"coingecko": "secret"}) == {}


class TestHttpClient:
    """Tests for HttpClient error mapping."""

    @pytest.mark.asyncio
    async def test_get_json(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"ok": True}))

        async with HttpClient(transport=transport) as client:
            assert await client.get_json("defillama", "https://api.llama.fi/x") == {"ok": True}

    @pytest.mark.asyncio
    async def test_http_error_status(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(429))

        async with HttpClient(transport=transport) as client:
            with pytest.raises(FetchError) as exc_info:
                await client.get_json("coingecko", "https://api.coingecko.com/x")

        assert exc_info.value.status_code == 429
        assert exc_info.value.service == "coingecko"
        assert str(exc_info.value) == "coingecko request failed: 429 Too Many Requests"

    @pytest.mark.asyncio
    async def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with HttpClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(FetchError, match="basescan request failed"):
                await client.get_json("basescan", "https://api.basescan.org/api")

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        async with HttpClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(FetchError, match="timeout"):
                await client.get_json("bitquery", "https://graphql.bitquery.io")

    def test_from_settings_timeouts(self) -> None:
        settings = Settings(_env_file=None, http_timeout_connect=2.0, http_timeout_read=7.5)

        client = HttpClient.from_settings(settings)

        assert client._timeout.connect == 2.0
        assert client._timeout.read == 7.5

    @pytest.mark.asyncio
    async def test_invalid_json(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>"))

        async with HttpClient(transport=transport) as client:
            with pytest.raises(FetchError, match="invalid JSON"):
                await client.get_json("geckoterminal", "https://api.geckoterminal.com/x")


class TestProviderClient:
    """Tests for governed provider requests."""

    @pytest.fixture
    def requests(self) -> list[httpx.Request]:
        return []

    @pytest.fixture
    def http(self, requests: list[httpx.Request]) -> HttpClient:
        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"status": "1", "result": "1000"})

        return HttpClient(transport=httpx.MockTransport(handler))

    @pytest.fixture
    def gateway(self, store: MemoryStore, clock: FakeClock) -> Gateway:
        return Gateway(RateCard.default(), store, clock=clock, sleep=clock.sleep)

    @pytest.mark.asyncio
    async def test_get_json_is_cached(
        self, gateway: Gateway, http: HttpClient, requests: list[httpx.Request]
    ) -> None:
        client = ProviderClient(gateway, http)

        first = await client.get_json("defillama", "/v2/chains")
        second = await client.get_json("defillama", "/v2/chains")
        await http.close()

        assert first.data == {"status": "1", "result": "1000"}
        assert second.cached
        assert len(requests) == 1
        assert str(requests[0].url) == "https://api.llama.fi/v2/chains"

    @pytest.mark.asyncio
    async def test_api_key_kept_out_of_cache_key(
        self,
        gateway: Gateway,
        http: HttpClient,
        requests: list[httpx.Request],
        store: MemoryStore,
    ) -> None:
        client = ProviderClient(gateway, http, {"basescan": "secret"})

        await client.get_json(
            "basescan", "", {"module": "account", "action": "balance", "address": "0xabc"}
        )
        await http.close()

        assert requests[0].url.params["apikey"] == "secret"
        cache_keys = [k for k in await store.keys("api_") if not k.startswith("api_usage_")]
        assert cache_keys == ["api_basescan__action=balance&address=0xabc&module=account"]
        assert (await gateway.get_usage("basescan")).used == 1

    @pytest.mark.asyncio
    async def test_auth_headers_sent(
        self, gateway: Gateway, http: HttpClient, requests: list[httpx.Request]
    ) -> None:
        client = ProviderClient(gateway, http, {"moralis": "m-key"})

        await client.get_json("moralis", "0xabc/balance", {"chain": "base"})
        await http.close()

        assert requests[0].headers["X-API-Key"] == "m-key"
        assert requests[0].url.path == "/api/v2.2/0xabc/balance"
