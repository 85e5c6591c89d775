"""
Provider request glue.

Builds provider URLs and auth headers from the rate card and runs GET
requests through the gateway so every call is cached, rate limited and
counted against the monthly budget.
"""

import logging
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlencode

from governor.cache import CachedResult, CacheStrategy
from governor.gateway import Gateway
from governor.http.client import HttpClient
from governor.services import RateCard, ServiceId

logger = logging.getLogger(__name__)


def build_api_url(
    rate_card: RateCard,
    service: str | ServiceId,
    endpoint: str,
    params: Mapping[str, Any] | None = None,
) -> str:
    """
    Build a full provider URL.

    Args:
        rate_card: Service table holding base URLs
        service: Service id
        endpoint: Path relative to the base URL, or an absolute URL
        params: Query parameters (None values are dropped)

    Returns:
        URL with query string
    """
    if endpoint.startswith(("http://", "https://")):
        url = endpoint
    else:
        base = rate_card[service].base_url.rstrip("/")
        url = f"{base}/{endpoint.lstrip('/')}"

    query = {k: v for k, v in (params or {}).items() if v is not None}
    if not query:
        return url

    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{urlencode(query, doseq=True)}"


def api_headers(service: str | ServiceId, api_keys: Mapping[str, str]) -> dict[str, str]:
    """Get request headers, including provider-specific authentication."""
    service_id = ServiceId.parse(service)
    headers = {"Accept": "application/json"}
    key = api_keys.get(service_id.value)
    if not key:
        return headers

    if service_id is ServiceId.MORALIS:
        headers["X-API-Key"] = key
    elif service_id is ServiceId.BITQUERY:
        headers["X-API-KEY"] = key
    elif service_id is ServiceId.DEXCHECK:
        headers["Authorization"] = f"Bearer {key}"
    elif service_id is ServiceId.COINGECKO:
        headers["x-cg-demo-api-key"] = key

    return headers


def auth_params(service: str | ServiceId, api_keys: Mapping[str, str]) -> dict[str, str]:
    """Get authentication query parameters (kept out of cache keys)."""
    service_id = ServiceId.parse(service)
    if service_id is ServiceId.BASESCAN:
        return {"apikey": api_keys.get(service_id.value, "")}
    return {}


class ProviderClient:
    """
    Governed JSON client for the configured providers.

    Usage:
        async with HttpClient() as http:
            client = ProviderClient(gateway, http, settings.api_keys())
            result = await client.get_json("defillama", "/v2/chains")
    """

    def __init__(
        self,
        gateway: Gateway,
        http: HttpClient,
        api_keys: Mapping[str, str] | None = None,
    ) -> None:
        self._gateway = gateway
        self._http = http
        self._api_keys = dict(api_keys or {})

    async def get_json(
        self,
        service: str | ServiceId,
        endpoint: str,
        params: Mapping[str, Any] | None = None,
        *,
        ttl_ms: float | None = None,
        force_refresh: bool = False,
        strategy: CacheStrategy | None = None,
    ) -> CachedResult:
        """
        GET a provider endpoint through the gateway.

        Args:
            service: Service id
            endpoint: Path relative to the service base URL, or absolute URL
            params: Query parameters (also part of the cache key)
            ttl_ms: Cache lifetime (defaults to the service's default)
            force_refresh: Skip the fresh-cache lookup
            strategy: Cache tier policy

        Returns:
            CachedResult envelope with the decoded JSON body
        """
        service_id = ServiceId.parse(service)
        query = {**(params or {}), **auth_params(service_id, self._api_keys)}
        url = build_api_url(self._gateway.rate_card, service_id, endpoint, query)
        headers = api_headers(service_id, self._api_keys)

        async def fetch() -> Any:
            logger.debug(f"{service_id.value} request: {endpoint}")
            return await self._http.get_json(service_id.value, url, headers=headers)

        return await self._gateway.fetch(
            service_id,
            endpoint,
            fetch,
            params,
            ttl_ms=ttl_ms,
            force_refresh=force_refresh,
            strategy=strategy,
        )
