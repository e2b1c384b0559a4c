from __future__ import annotations

import asyncio
import contextlib
import re
from typing import Any, AsyncIterator

from ..errors import StorageError

_UNSAFE_KEY_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


def sanitize_chat_key(chat_id: int | str) -> str:
    """Reduce a chat id to ``[A-Za-z0-9_-]`` for use as a storage key.

    Distinct raw ids that reduce to the same string share one key. Existing data
    files are named this way, so the scheme is kept as is.
    """
    return _UNSAFE_KEY_CHARS.sub("", str(chat_id))


class KeyedLocks:
    """One ``asyncio.Lock`` per key, dropped once nobody holds or waits for it."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @contextlib.asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]


class KeyValueStore:
    """JSON-document store keyed by string with a per-key asyncio lock.

    Backends implement ``_read``/``_write``/``_remove``; ``get`` raises
    ``StorageError`` for unreadable or corrupt documents and returns ``None`` for
    missing ones.
    """

    backend_name = "abstract"

    def __init__(self) -> None:
        self._locks = KeyedLocks()

    async def _read(self, key: str) -> Any | None:
        raise NotImplementedError

    async def _write(self, key: str, value: Any) -> None:
        raise NotImplementedError

    async def _remove(self, key: str) -> bool:
        raise NotImplementedError

    def describe(self, key: str) -> str:
        return f"{self.backend_name}:{key}"

    @contextlib.asynccontextmanager
    async def locked(self, key: str) -> AsyncIterator[None]:
        async with self._locks.hold(key):
            yield

    async def get(self, key: str) -> Any | None:
        return await self._read(key)

    async def put(self, key: str, value: Any) -> None:
        async with self.locked(key):
            await self._write(key, value)

    async def delete(self, key: str) -> bool:
        async with self.locked(key):
            return await self._remove(key)

    async def append(self, key: str, item: Any, *, limit: int | None = None) -> tuple[list[Any], StorageError | None]:
        """Append ``item`` to the list stored at ``key`` and keep the last ``limit`` items.

        A corrupt or non-list document is replaced; the read error is returned
        alongside the written list so callers can log it. Write errors raise.
        """
        async with self.locked(key):
            read_error: StorageError | None = None
            try:
                current = await self._read(key)
            except StorageError as exc:
                current, read_error = None, exc
            if current is None:
                items: list[Any] = []
            elif isinstance(current, list):
                items = list(current)
            else:
                items = []
                read_error = StorageError(f"{self.describe(key)} does not hold a JSON array")
            items.append(item)
            if limit is not None and len(items) > limit:
                items = items[-limit:]
            await self._write(key, items)
            return items, read_error

    async def close(self) -> None:
        return None
