"""Store factory for creating durable-tier backends from configuration."""

import logging

from governor.cache.base import KeyValueStore
from governor.cache.file import JsonFileStore
from governor.cache.memory import MemoryStore
from governor.cache.redis import RedisStore
from governor.config import Settings

logger = logging.getLogger(__name__)


def create_store(settings: Settings, backend: str | None = None) -> KeyValueStore:
    """
    Create a durable store instance.

    Args:
        settings: Application settings
        backend: Backend type ("file", "redis" or "memory"), defaults to config

    Returns:
        KeyValueStore instance (not yet connected)

    Raises:
        ValueError: If backend type is unknown
    """
    backend_type = backend or settings.cache_store

    if backend_type == "file":
        return JsonFileStore(
            path=settings.cache_file_path,
            max_bytes=settings.cache_file_max_bytes,
        )

    elif backend_type == "redis":
        if not settings.redis_url:
            logger.warning(
                "Redis URL not configured, falling back to file store. "
                "Set REDIS_URL environment variable to enable Redis persistence."
            )
            return create_store(settings, backend="file")

        return RedisStore(url=settings.redis_url, prefix=settings.redis_prefix)

    elif backend_type == "memory":
        return MemoryStore()

    else:
        raise ValueError(f"Unknown cache store: {backend_type}")


async def open_store(settings: Settings, backend: str | None = None) -> KeyValueStore:
    """
    Create a store and establish its connection.

    Falls back to the file store when Redis is configured but unreachable.

    Returns:
        Ready-to-use KeyValueStore
    """
    store = create_store(settings, backend)

    if isinstance(store, RedisStore):
        connected = await store.connect()
        if not connected:
            logger.warning("Failed to connect to Redis, using file store instead")
            return create_store(settings, backend="file")

    logger.info(f"Initialized {store.name} durable store")
    return store
