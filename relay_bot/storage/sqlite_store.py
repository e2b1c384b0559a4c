from __future__ import annotations

import json
import os
import sqlite3
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator

import aiosqlite

from ..errors import StorageError
from .kv import KeyValueStore


def _sqlite_busy_timeout_ms() -> int:
    raw = os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000").strip()
    try:
        timeout = int(raw)
    except ValueError:
        timeout = 5000
    return max(0, min(timeout, 60000))


@asynccontextmanager
async def _sqlite_connection(db_path: str | Path) -> AsyncIterator[aiosqlite.Connection]:
    async with aiosqlite.connect(db_path) as db:
        timeout_ms = _sqlite_busy_timeout_ms()
        if timeout_ms > 0:
            await db.execute(f"PRAGMA busy_timeout={timeout_ms}")
        yield db


class SqliteKeyValueStore(KeyValueStore):
    """JSON documents in a shared ``kv_store`` table, partitioned by namespace."""

    backend_name = "sqlite"

    def __init__(self, db_path: str | Path, namespace: str) -> None:
        super().__init__()
        self.db_path = Path(db_path)
        self.namespace = namespace
        self._initialized = False

    def describe(self, key: str) -> str:
        return f"{self.db_path}#{self.namespace}/{key}"

    async def init(self) -> None:
        if self._initialized:
            return
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            async with _sqlite_connection(self.db_path) as db:
                await db.execute(
                    """
                    CREATE TABLE IF NOT EXISTS kv_store (
                        namespace TEXT NOT NULL,
                        key TEXT NOT NULL,
                        value TEXT NOT NULL,
                        updated_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
                        PRIMARY KEY (namespace, key)
                    )
                    """
                )
                await db.commit()
        except (OSError, sqlite3.Error) as exc:
            raise StorageError(f"Failed to initialize SQLite store {self.db_path}: {exc}") from exc
        self._initialized = True

    async def _read(self, key: str) -> Any | None:
        await self.init()
        try:
            async with _sqlite_connection(self.db_path) as db:
                async with db.execute(
                    "SELECT value FROM kv_store WHERE namespace = ? AND key = ?",
                    (self.namespace, key),
                ) as cursor:
                    row = await cursor.fetchone()
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to read {self.describe(key)}: {exc}") from exc
        if row is None:
            return None
        try:
            return json.loads(row[0])
        except json.JSONDecodeError as exc:
            raise StorageError(f"Corrupt JSON in {self.describe(key)}: {exc}") from exc

    async def _write(self, key: str, value: Any) -> None:
        await self.init()
        try:
            encoded = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            raise StorageError(f"Failed to encode JSON for {self.describe(key)}: {exc}") from exc
        try:
            async with _sqlite_connection(self.db_path) as db:
                await db.execute(
                    """
                    INSERT INTO kv_store (namespace, key, value, updated_at)
                    VALUES (?, ?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT(namespace, key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (self.namespace, key, encoded),
                )
                await db.commit()
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to write {self.describe(key)}: {exc}") from exc

    async def _remove(self, key: str) -> bool:
        await self.init()
        try:
            async with _sqlite_connection(self.db_path) as db:
                cursor = await db.execute(
                    "DELETE FROM kv_store WHERE namespace = ? AND key = ?",
                    (self.namespace, key),
                )
                await db.commit()
                return cursor.rowcount > 0
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to delete {self.describe(key)}: {exc}") from exc
