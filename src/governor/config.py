"""Configuration module using Pydantic Settings."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Logging
    log_level: str = "INFO"

    # Storage
    data_dir: Path = Path("data")
    cache_store: str = "file"  # Durable tier: "file", "redis" or "memory"
    cache_file_name: str = "api_cache.json"
    cache_file_max_bytes: int | None = 5 * 1024 * 1024  # localStorage-sized quota

    # Redis durable tier
    redis_url: str | None = None  # e.g. redis://localhost:6379/0
    redis_prefix: str = "governor:"

    # Response cache
    cache_default_ttl_ms: int = 30_000
    cache_promotion_ttl_ms: int = 30_000  # TTL for durable -> memory promotion
    cache_sweep_interval_seconds: int = 300
    memory_cache_max_size: int | None = None

    # Usage tracking
    usage_warning_threshold: float = 0.8

    # Rate limiting
    rate_limit_max_wait_ms: float | None = None  # None = queue indefinitely
    rate_card_path: Path | None = None  # JSON overrides for the service rate card

    # HTTP Client
    http_timeout_connect: float = 10.0
    http_timeout_read: float = 30.0

    # Provider API keys
    coingecko_api_key: str | None = None
    basescan_api_key: str | None = None
    moralis_api_key: str | None = None
    bitquery_api_key: str | None = None
    dexcheck_api_key: str | None = None
    alchemy_api_key: str | None = None

    @property
    def cache_file_path(self) -> Path:
        """Get the path of the JSON durable store."""
        return self.data_dir / self.cache_file_name

    def api_keys(self) -> dict[str, str]:
        """Get configured provider API keys keyed by service id."""
        keys = {
            "coingecko": self.coingecko_api_key,
            "basescan": self.basescan_api_key,
            "moralis": self.moralis_api_key,
            "bitquery": self.bitquery_api_key,
            "dexcheck": self.dexcheck_api_key,
            "alchemy_base": self.alchemy_api_key,
        }
        return {service: key for service, key in keys.items() if key}


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
