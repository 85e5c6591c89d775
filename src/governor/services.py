"""
Service rate card.

Typed, validated table of the external data providers the dashboard
talks to, with their free-tier burst limits, monthly budgets and
default cache lifetimes.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator, Mapping
from dataclasses import asdict, dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Any

from governor.errors import ConfigError, UnknownServiceError

logger = logging.getLogger(__name__)

MINUTE_MS = 60 * 1000


class ServiceId(str, Enum):
    """Known external API services."""

    COINGECKO = "coingecko"
    DEFILLAMA = "defillama"
    BASESCAN = "basescan"
    DEXSCREENER = "dexscreener"
    GECKOTERMINAL = "geckoterminal"
    MORALIS = "moralis"
    BITQUERY = "bitquery"
    DEXCHECK = "dexcheck"
    BASE_RPC = "base_rpc"
    ALCHEMY_BASE = "alchemy_base"

    @classmethod
    def parse(cls, value: str | ServiceId) -> ServiceId:
        """
        Resolve a service id from its string value.

        Raises:
            UnknownServiceError: If the value names no known service
        """
        if isinstance(value, ServiceId):
            return value
        try:
            return cls(value)
        except ValueError:
            raise UnknownServiceError(str(value)) from None


class CacheDuration(int, Enum):
    """Default cache lifetimes per data category, in milliseconds."""

    PRICES = 30 * 1000
    WALLET_BALANCES = 5 * MINUTE_MS
    NETWORK_STATS = 2 * MINUTE_MS
    RICH_LISTS = 10 * MINUTE_MS
    HISTORICAL_DATA = 60 * MINUTE_MS
    TOKEN_METADATA = 24 * 60 * MINUTE_MS
    TOKEN_LIST = 7 * 24 * 60 * MINUTE_MS


@dataclass(frozen=True)
class ServiceLimits:
    """
    Limits and defaults for one external service.

    Attributes:
        name: Display name
        base_url: Root URL of the provider API
        capacity: Maximum requests admitted per rolling window
        window_ms: Rolling window length in milliseconds
        monthly_limit: Monthly call budget (None = unbounded)
        default_ttl_ms: Cache lifetime used when a caller gives none
        count_failed_requests: Charge failed attempts against the monthly budget
        requires_auth: Whether the provider needs an API key
    """

    name: str
    base_url: str
    capacity: int
    window_ms: int = MINUTE_MS
    monthly_limit: int | None = None
    default_ttl_ms: int = CacheDuration.PRICES.value
    count_failed_requests: bool = False
    requires_auth: bool = False

    def __post_init__(self) -> None:
        if self.capacity <= 0:
            raise ConfigError(f"{self.name}: capacity must be positive, got {self.capacity}")
        if self.window_ms <= 0:
            raise ConfigError(f"{self.name}: window_ms must be positive, got {self.window_ms}")
        if self.monthly_limit is not None and self.monthly_limit < 0:
            raise ConfigError(
                f"{self.name}: monthly_limit must be >= 0, got {self.monthly_limit}"
            )
        if self.default_ttl_ms < 0:
            raise ConfigError(
                f"{self.name}: default_ttl_ms must be >= 0, got {self.default_ttl_ms}"
            )

    @property
    def is_unbounded(self) -> bool:
        """True when the service has no monthly budget."""
        return self.monthly_limit is None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


DEFAULT_SERVICES: dict[ServiceId, ServiceLimits] = {
    ServiceId.COINGECKO: ServiceLimits(
        name="CoinGecko",
        base_url="https://api.coingecko.com/api/v3",
        capacity=50,  # ~50 calls/minute (safe estimate)
        monthly_limit=10_000,
        default_ttl_ms=CacheDuration.PRICES.value,
    ),
    ServiceId.DEFILLAMA: ServiceLimits(
        name="DeFiLlama",
        base_url="https://api.llama.fi",
        capacity=100,  # No official limit, being conservative
        monthly_limit=None,
        default_ttl_ms=CacheDuration.NETWORK_STATS.value,
    ),
    ServiceId.BASESCAN: ServiceLimits(
        name="Basescan",
        base_url="https://api.basescan.org/api",
        capacity=5,
        monthly_limit=100_000,
        default_ttl_ms=CacheDuration.WALLET_BALANCES.value,
        requires_auth=True,
    ),
    ServiceId.DEXSCREENER: ServiceLimits(
        name="DexScreener",
        base_url="https://api.dexscreener.com/latest/dex",
        capacity=60,
        monthly_limit=None,
        default_ttl_ms=CacheDuration.PRICES.value,
    ),
    ServiceId.GECKOTERMINAL: ServiceLimits(
        name="GeckoTerminal",
        base_url="https://api.geckoterminal.com/api/v2",
        capacity=30,
        monthly_limit=None,
        default_ttl_ms=CacheDuration.PRICES.value,
    ),
    ServiceId.MORALIS: ServiceLimits(
        name="Moralis",
        base_url="https://deep-index.moralis.io/api/v2.2",
        capacity=25,
        monthly_limit=40_000,
        default_ttl_ms=CacheDuration.WALLET_BALANCES.value,
        requires_auth=True,
    ),
    ServiceId.BITQUERY: ServiceLimits(
        name="Bitquery",
        base_url="https://graphql.bitquery.io",
        capacity=10,
        monthly_limit=10_000,
        default_ttl_ms=CacheDuration.NETWORK_STATS.value,
        requires_auth=True,
    ),
    ServiceId.DEXCHECK: ServiceLimits(
        name="DexCheck",
        base_url="https://api.dexcheck.ai/v1",
        capacity=5,
        monthly_limit=1_000,
        default_ttl_ms=CacheDuration.RICH_LISTS.value,
        requires_auth=True,
    ),
    ServiceId.BASE_RPC: ServiceLimits(
        name="Base RPC",
        base_url="https://mainnet.base.org",
        capacity=10,
        monthly_limit=None,
        default_ttl_ms=CacheDuration.NETWORK_STATS.value,
    ),
    ServiceId.ALCHEMY_BASE: ServiceLimits(
        name="Alchemy Base",
        base_url="https://base-mainnet.g.alchemy.com/v2",
        capacity=330,
        monthly_limit=300_000_000,
        default_ttl_ms=CacheDuration.NETWORK_STATS.value,
        requires_auth=True,
    ),
}


class RateCard(Mapping[ServiceId, ServiceLimits]):
    """
    Immutable lookup table of service limits.

    Accepts either ServiceId members or their string values as keys and
    raises UnknownServiceError for anything else, so typos surface at the
    call site instead of silently creating new buckets.
    """

    def __init__(self, services: Mapping[ServiceId, ServiceLimits]) -> None:
        if not services:
            raise ConfigError("Rate card must define at least one service")
        self._services = dict(services)

    def __getitem__(self, service: str | ServiceId) -> ServiceLimits:
        service_id = ServiceId.parse(service)
        try:
            return self._services[service_id]
        except KeyError:
            raise UnknownServiceError(service_id.value) from None

    def __iter__(self) -> Iterator[ServiceId]:
        return iter(self._services)

    def __len__(self) -> int:
        return len(self._services)

    def __contains__(self, service: object) -> bool:
        try:
            return ServiceId.parse(service) in self._services  # type: ignore[arg-type]
        except UnknownServiceError:
            return False

    @classmethod
    def default(cls) -> RateCard:
        """Get the built-in free-tier rate card."""
        return cls(DEFAULT_SERVICES)

    @classmethod
    def from_dict(
        cls,
        data: Mapping[str, Mapping[str, Any]],
        base: Mapping[ServiceId, ServiceLimits] | None = None,
    ) -> RateCard:
        """
        Build a rate card from plain data, overriding a base table.

        Args:
            data: Mapping of service id to field overrides
            base: Rows to start from (defaults to the built-in card)

        Raises:
            UnknownServiceError: If data names an unknown service
            ConfigError: If a row has unknown fields or invalid values
        """
        services = dict(base if base is not None else DEFAULT_SERVICES)
        allowed = set(ServiceLimits.__dataclass_fields__)

        for raw_id, overrides in data.items():
            service_id = ServiceId.parse(raw_id)
            unknown = set(overrides) - allowed
            if unknown:
                raise ConfigError(
                    f"{service_id.value}: unknown rate card fields {sorted(unknown)}"
                )
            current = services.get(service_id)
            if current is None:
                try:
                    services[service_id] = ServiceLimits(**overrides)
                except TypeError as e:
                    raise ConfigError(f"{service_id.value}: {e}") from e
            else:
                services[service_id] = replace(current, **overrides)

        return cls(services)

    @classmethod
    def load(cls, path: Path | None) -> RateCard:
        """
        Load the rate card, applying overrides from a JSON file if given.

        Args:
            path: JSON file of per-service overrides, or None

        Returns:
            Validated RateCard
        """
        if path is None:
            return cls.default()

        with open(path) as f:
            data = json.load(f)

        card = cls.from_dict(data)
        logger.info(f"Loaded rate card overrides for {len(data)} services from {path}")
        return card

    def to_dict(self) -> dict[str, dict[str, Any]]:
        return {service.value: limits.to_dict() for service, limits in self._services.items()}
