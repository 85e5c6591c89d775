"""JSON file key/value store for the durable tier."""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from governor.cache.base import KeyValueStore

logger = logging.getLogger(__name__)


class JsonFileStore(KeyValueStore):
    """
    Key/value store persisted as a single JSON document.

    Best for:
    - Single-process deployments
    - Keeping cache and usage counters across restarts without a server

    The whole document is loaded on first access and rewritten atomically
    (temp file + rename) on every change. An optional byte budget mimics
    browser storage quotas: writes that would grow the document past it
    are refused and reported as failures.
    """

    def __init__(self, path: Path, max_bytes: int | None = None) -> None:
        """
        Initialize the store.

        Args:
            path: JSON file location (created on first write)
            max_bytes: Maximum serialized document size (None = unlimited)
        """
        self._path = Path(path)
        self._max_bytes = max_bytes
        self._data: dict[str, str] | None = None
        self._connected = True

    @property
    def name(self) -> str:
        return "file"

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, str]:
        """Load the document from disk on first use."""
        if self._data is not None:
            return self._data

        self._data = {}
        if not self._path.exists():
            return self._data

        try:
            with open(self._path, encoding="utf-8") as f:
                loaded = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to load store {self._path}: {e}, starting empty")
            return self._data

        if not isinstance(loaded, dict):
            logger.warning(f"Store {self._path} is not a JSON object, starting empty")
            return self._data

        self._data = {str(k): v for k, v in loaded.items() if isinstance(v, str)}
        return self._data

    def _write(self, data: dict[str, str]) -> bool:
        """Persist a document, honoring the byte budget."""
        payload = json.dumps(data)
        size = len(payload.encode("utf-8"))
        if self._max_bytes is not None and size > self._max_bytes:
            logger.warning(
                f"Store {self._path} quota exceeded "
                f"({size} > {self._max_bytes} bytes), write dropped"
            )
            return False

        tmp_path = None
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_path, self._path)
            return True
        except OSError as e:
            logger.warning(f"Failed to persist store {self._path}: {e}")
            if tmp_path is not None and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            return False

    async def get(self, key: str) -> str | None:
        return self._load().get(key)

    async def set(self, key: str, value: str) -> bool:
        data = self._load()
        updated = {**data, key: value}
        if not self._write(updated):
            return False
        self._data = updated
        return True

    async def delete(self, key: str) -> bool:
        data = self._load()
        if key not in data:
            return False
        updated = {k: v for k, v in data.items() if k != key}
        if not self._write(updated):
            return False
        self._data = updated
        return True

    async def keys(self, prefix: str = "") -> list[str]:
        return [k for k in self._load() if k.startswith(prefix)]

    async def clear(self, prefix: str = "") -> int:
        data = self._load()
        remaining = {k: v for k, v in data.items() if not k.startswith(prefix)}
        count = len(data) - len(remaining)
        if not count:
            return 0
        if not self._write(remaining):
            return 0
        self._data = remaining
        return count

    async def close(self) -> None:
        self._connected = False
        self._data = None

    async def health_check(self) -> dict[str, Any]:
        data = self._load()
        return {
            "backend": self.name,
            "connected": self.is_connected,
            "path": str(self._path),
            "total_keys": len(data),
            "max_bytes": self._max_bytes,
        }
