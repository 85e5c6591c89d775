"""Redis key/value store for the durable tier."""

import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import redis.asyncio as redis

from governor.cache.base import KeyValueStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RedisStore(KeyValueStore):
    """
    Redis-backed KeyValueStore.

    Best for:
    - Cache entries and usage counters shared by several dashboard workers
    - Hosts where a local data directory is not writable

    Every key lives under a namespace prefix. Values are plain strings with
    no Redis-side expiry: freshness is tracked inside each cache record so
    expired responses remain available for stale reads until swept.

    Redis failures never reach the caller. They are logged and reported
    the same way a missing key or a refused write would be.
    """

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        prefix: str = "governor:",
        max_connections: int = 10,
        timeout: float = 5.0,
        retry_interval: float = 30.0,
    ) -> None:
        """
        Initialize the store. No connection is made until first use.

        Args:
            url: Redis connection URL
            prefix: Namespace prepended to every key
            max_connections: Connection pool size
            timeout: Socket and connect timeout in seconds
            retry_interval: Seconds to wait after a failed connect before
                operations try to reconnect
        """
        self._url = url
        self._prefix = prefix
        self._pool_size = max_connections
        self._timeout = timeout
        self._retry_interval = retry_interval
        self._redis: Any = None
        self._failed_at: float | None = None

    @property
    def name(self) -> str:
        return "redis"

    @property
    def is_connected(self) -> bool:
        return self._redis is not None

    def _namespaced(self, key: str) -> str:
        return self._prefix + key

    def _local(self, stored_key: str | bytes) -> str:
        """Map a stored key back to the caller's key space."""
        if isinstance(stored_key, bytes):
            stored_key = stored_key.decode("utf-8")
        return stored_key.removeprefix(self._prefix)

    async def connect(self) -> bool:
        """
        Open the connection pool and verify the server answers.

        Returns:
            True if Redis is reachable
        """
        if self._redis is not None:
            return True

        client = redis.from_url(
            self._url,
            max_connections=self._pool_size,
            socket_timeout=self._timeout,
            socket_connect_timeout=self._timeout,
            decode_responses=True,
        )
        try:
            await client.ping()
        except Exception as e:
            logger.error(f"Redis at {self._url} is unreachable: {e}")
            self._failed_at = time.monotonic()
            try:
                await client.aclose()
            except Exception as close_error:
                logger.debug(f"Error closing failed Redis pool: {close_error}")
            return False

        self._redis = client
        self._failed_at = None
        logger.info(f"Connected to Redis at {self._url}")
        return True

    async def _ensure_connected(self) -> bool:
        """Connect unless a recent attempt failed."""
        if self._redis is not None:
            return True
        if (
            self._failed_at is not None
            and time.monotonic() - self._failed_at < self._retry_interval
        ):
            return False
        return await self.connect()

    async def _call(
        self,
        operation: str,
        action: Callable[[Any], Awaitable[T]],
        fallback: T,
    ) -> T:
        """Run a command against the pool, logging failures as `fallback`."""
        if not await self._ensure_connected():
            return fallback
        try:
            return await action(self._redis)
        except Exception as e:
            logger.error(f"Redis {operation} failed: {e}")
            return fallback

    async def get(self, key: str) -> str | None:
        return await self._call(f"GET {key}", lambda r: r.get(self._namespaced(key)), None)

    async def set(self, key: str, value: str) -> bool:
        async def write(r: Any) -> bool:
            await r.set(self._namespaced(key), value)
            return True

        return await self._call(f"SET {key}", write, False)

    async def delete(self, key: str) -> bool:
        async def remove(r: Any) -> bool:
            return await r.delete(self._namespaced(key)) > 0

        return await self._call(f"DEL {key}", remove, False)

    async def keys(self, prefix: str = "") -> list[str]:
        # SCAN instead of KEYS so large namespaces never block the server
        async def scan(r: Any) -> list[str]:
            pattern = f"{self._namespaced(prefix)}*"
            return [self._local(k) async for k in r.scan_iter(match=pattern)]

        return await self._call(f"SCAN {prefix}*", scan, [])

    async def clear(self, prefix: str = "") -> int:
        found = await self.keys(prefix)
        if not found:
            return 0

        async def remove_all(r: Any) -> int:
            await r.delete(*(self._namespaced(k) for k in found))
            return len(found)

        return await self._call(f"DEL {prefix}*", remove_all, 0)

    async def close(self) -> None:
        if self._redis is None:
            return
        client, self._redis = self._redis, None
        try:
            await client.aclose()
        except Exception as e:
            logger.error(f"Error closing Redis pool: {e}")

    async def health_check(self) -> dict[str, Any]:
        status: dict[str, Any] = {"backend": self.name, "url": self._url}

        async def server_info(r: Any) -> dict[str, Any]:
            info = await r.info("server")
            return {"redis_version": info.get("redis_version")}

        info = await self._call("INFO", server_info, None)
        status["connected"] = info is not None
        if info is not None:
            status.update(info)
            status["total_keys"] = len(await self.keys())
        return status
