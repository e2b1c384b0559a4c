from __future__ import annotations

import logging

from ..errors import StorageError
from .kv import KeyValueStore

logger = logging.getLogger("relay_bot.storage")

PERSONAS_DOCUMENT_KEY = "chat_roles"


class PersonaStore:
    """Per-chat persona overrides on top of a default persona.

    The whole mapping lives in one document. It is read once by ``load`` and
    rewritten in full after every change; a failed write leaves the in-memory
    mapping updated, so the change is lost on the next restart.
    """

    def __init__(self, kv: KeyValueStore, default_persona: str, document_key: str = PERSONAS_DOCUMENT_KEY) -> None:
        self.kv = kv
        self.default_persona = default_persona
        self.document_key = document_key
        self._personas: dict[str, str] = {}

    async def load(self) -> None:
        try:
            stored = await self.kv.get(self.document_key)
        except StorageError as exc:
            logger.error("[persona.load] failed, using default persona: %s", exc)
            self._personas = {}
            return
        if stored is None:
            logger.info("[persona.load] no stored personas at %s; default persona applies", self.kv.describe(self.document_key))
            self._personas = {}
            return
        if not isinstance(stored, dict):
            logger.error("[persona.load] %s is not a JSON object; ignoring it", self.kv.describe(self.document_key))
            self._personas = {}
            return
        self._personas = {str(chat_id): value for chat_id, value in stored.items() if isinstance(value, str) and value}
        logger.info("[persona.load] loaded=%s", len(self._personas))

    def get(self, chat_id: int | str) -> str:
        persona = self._personas.get(str(chat_id))
        if persona:
            return persona
        return self.default_persona

    def has_override(self, chat_id: int | str) -> bool:
        return str(chat_id) in self._personas

    async def set(self, chat_id: int | str, text: str) -> bool:
        chat_key = str(chat_id)
        if not text:
            self._personas.pop(chat_key, None)
            logger.info("[persona.set] chat=%s reset to default", chat_key)
        else:
            self._personas[chat_key] = text
            logger.info("[persona.set] chat=%s chars=%s", chat_key, len(text))
        return await self._save()

    async def _save(self) -> bool:
        try:
            await self.kv.put(self.document_key, dict(self._personas))
        except StorageError as exc:
            logger.error("[persona.save] failed: %s", exc)
            return False
        return True
