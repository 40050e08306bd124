"""Durable local key-value stores backing the overlay cache."""

import logging
import threading
import time
from pathlib import Path
from typing import Any, Protocol, Self

import aiosqlite

from flockcare.core.config import settings


logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Generic get/set/remove by string key."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def remove(self, key: str) -> None: ...

    async def keys(self, prefix: str = "") -> list[str]: ...


class InMemoryKeyValueStore:
    """Thread-safe in-memory store. Does not survive a restart; used in tests and as a fallback."""

    def __init__(self) -> None:
        """Initialize in-memory store."""
        self._data: dict[str, str] = {}
        self._lock = threading.Lock()

        # Health tracking
        self._last_successful_operation: float | None = None
        self._total_operations = 0

    def get_health_status(self) -> dict[str, Any]:
        """Get store health status."""
        return {
            "backend": "memory",
            "last_successful_operation": self._last_successful_operation,
            "total_operations": self._total_operations,
            "entries": len(self._data),
        }

    def _record_success(self) -> None:
        self._last_successful_operation = time.time()
        self._total_operations += 1

    async def get(self, key: str) -> str | None:
        with self._lock:
            self._record_success()
            return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value
            self._record_success()
            logger.debug("Stored key: %s", key)

    async def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)
            self._record_success()
            logger.debug("Removed key: %s", key)

    async def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            return sorted(key for key in self._data if key.startswith(prefix))


class SqliteKeyValueStore:
    """Key-value store persisted to a local SQLite file.

    Every write is committed before the call returns, so a value written by
    ``set`` is visible after the process is killed and restarted.

    Usage:
        async with SqliteKeyValueStore("data/overlay.db") as store:
            await store.set("overlay:abc", "{...}")
    """

    def __init__(self, path: str | Path | None = None) -> None:
        """Initialize the store; the file is opened lazily by ``open``."""
        self._path = Path(path or settings.overlay_db_path).resolve()
        self._conn: aiosqlite.Connection | None = None

        # Health tracking
        self._last_successful_operation: float | None = None
        self._total_operations = 0

    @property
    def path(self) -> Path:
        return self._path

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def get_health_status(self) -> dict[str, Any]:
        """Get store health status."""
        return {
            "backend": "sqlite",
            "path": str(self._path),
            "open": self.is_open,
            "last_successful_operation": self._last_successful_operation,
            "total_operations": self._total_operations,
        }

    def _record_success(self) -> None:
        self._last_successful_operation = time.time()
        self._total_operations += 1

    async def open(self) -> None:
        """Open the backing file and create the table if needed."""
        if self._conn is not None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(str(self._path))
        await self._conn.execute("PRAGMA journal_mode = WAL")
        await self._conn.execute("CREATE TABLE IF NOT EXISTS kv (key TEXT PRIMARY KEY, value TEXT NOT NULL)")
        await self._conn.commit()
        logger.info("Opened local key-value store", extra={"path": str(self._path)})

    async def close(self) -> None:
        """Close the backing file."""
        if self._conn is None:
            return
        await self._conn.close()
        self._conn = None
        logger.info("Closed local key-value store", extra={"path": str(self._path)})

    async def __aenter__(self) -> Self:
        await self.open()
        return self

    async def __aexit__(self, *_exc: object) -> None:
        await self.close()

    async def _connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            await self.open()
        assert self._conn is not None  # noqa: S101 - set by open()
        return self._conn

    async def get(self, key: str) -> str | None:
        conn = await self._connection()
        cursor = await conn.execute("SELECT value FROM kv WHERE key = ?", (key,))
        row = await cursor.fetchone()
        self._record_success()
        return row[0] if row else None

    async def set(self, key: str, value: str) -> None:
        conn = await self._connection()
        await conn.execute(
            "INSERT INTO kv (key, value) VALUES (?, ?) ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, value),
        )
        await conn.commit()
        self._record_success()
        logger.debug("Stored key: %s", key)

    async def remove(self, key: str) -> None:
        conn = await self._connection()
        await conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        await conn.commit()
        self._record_success()
        logger.debug("Removed key: %s", key)

    async def keys(self, prefix: str = "") -> list[str]:
        conn = await self._connection()
        cursor = await conn.execute("SELECT key FROM kv WHERE substr(key, 1, ?) = ? ORDER BY key", (len(prefix), prefix))
        rows = await cursor.fetchall()
        self._record_success()
        return [row[0] for row in rows]
