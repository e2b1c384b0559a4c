from __future__ import annotations

import logging

from ..errors import StorageError
from .kv import KeyValueStore, sanitize_chat_key

logger = logging.getLogger("relay_bot.storage")


class HistoryStore:
    """Bounded per-chat log of conversation turns.

    Storage failures are logged and never propagate: reads degrade to an empty
    history and writes become no-ops.
    """

    def __init__(self, kv: KeyValueStore, limit: int, bot_prefix: str) -> None:
        if limit < 1:
            raise ValueError("history limit must be >= 1")
        self.kv = kv
        self.limit = limit
        self.bot_prefix = bot_prefix

    async def append(self, chat_id: int | str, text: str) -> None:
        key = sanitize_chat_key(chat_id)
        try:
            _, read_error = await self.kv.append(key, text, limit=self.limit)
        except StorageError as exc:
            logger.error("[history.append] chat=%s failed: %s", chat_id, exc)
            return
        if read_error is not None:
            logger.error("[history.append] chat=%s previous history discarded: %s", chat_id, read_error)

    async def read(self, chat_id: int | str) -> list[str]:
        key = sanitize_chat_key(chat_id)
        try:
            stored = await self.kv.get(key)
        except StorageError as exc:
            logger.error("[history.read] chat=%s failed: %s", chat_id, exc)
            return []
        if stored is None:
            return []
        if not isinstance(stored, list):
            logger.error("[history.read] chat=%s unexpected document type %s", chat_id, type(stored).__name__)
            return []
        return [str(item) for item in stored]

    async def count_since_last_bot_turn(self, chat_id: int | str) -> int:
        history = await self.read(chat_id)
        count = 0
        for turn in reversed(history):
            if turn.startswith(self.bot_prefix):
                return count
            count += 1
        return count

    async def clear(self, chat_id: int | str) -> None:
        key = sanitize_chat_key(chat_id)
        try:
            removed = await self.kv.delete(key)
        except StorageError as exc:
            logger.error("[history.clear] chat=%s failed: %s", chat_id, exc)
            return
        if removed:
            logger.info("[history.clear] chat=%s removed", chat_id)
