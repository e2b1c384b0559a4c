from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any

from ..errors import StorageError
from .kv import KeyValueStore, sanitize_chat_key

logger = logging.getLogger("relay_bot.storage")

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def _optional_int(value: object) -> int | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


@dataclass(frozen=True, slots=True)
class UsageRecord:
    timestamp: str
    provider: str
    model: str
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "UsageRecord":
        return cls(
            timestamp=str(payload.get("timestamp") or ""),
            provider=str(payload.get("provider") or ""),
            model=str(payload.get("model") or ""),
            prompt_tokens=_optional_int(payload.get("prompt_tokens")),
            completion_tokens=_optional_int(payload.get("completion_tokens")),
            total_tokens=_optional_int(payload.get("total_tokens")),
        )


class UsageLedger:
    """Append-only per-chat log of token usage."""

    def __init__(self, kv: KeyValueStore) -> None:
        self.kv = kv

    async def record(
        self,
        chat_id: int | str,
        provider: str,
        model: str,
        prompt_tokens: int | None = None,
        completion_tokens: int | None = None,
        total_tokens: int | None = None,
    ) -> UsageRecord:
        record = UsageRecord(
            timestamp=datetime.now().strftime(TIMESTAMP_FORMAT),
            provider=provider,
            model=model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=total_tokens,
        )
        key = sanitize_chat_key(chat_id)
        try:
            _, read_error = await self.kv.append(key, record.to_dict())
        except StorageError as exc:
            logger.error("[usage.record] chat=%s failed: %s", chat_id, exc)
            return record
        if read_error is not None:
            logger.error("[usage.record] chat=%s unreadable ledger replaced: %s", chat_id, read_error)
        logger.debug(
            "[usage.record] chat=%s provider=%s model=%s total=%s",
            chat_id,
            provider,
            model,
            total_tokens,
        )
        return record

    async def read(self, chat_id: int | str) -> list[UsageRecord]:
        key = sanitize_chat_key(chat_id)
        try:
            stored = await self.kv.get(key)
        except StorageError as exc:
            logger.error("[usage.read] chat=%s failed: %s", chat_id, exc)
            return []
        if not isinstance(stored, list):
            return []
        return [UsageRecord.from_dict(item) for item in stored if isinstance(item, dict)]
