from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from ..config import STORAGE_BACKENDS, Settings
from .history import HistoryStore
from .json_store import JsonFileStore
from .kv import KeyValueStore
from .personas import PERSONAS_DOCUMENT_KEY, PersonaStore
from .sqlite_store import SqliteKeyValueStore
from .usage import UsageLedger


@dataclass(slots=True)
class ChatStores:
    history: HistoryStore
    personas: PersonaStore
    usage: UsageLedger

    async def close(self) -> None:
        for kv in {id(s.kv): s.kv for s in (self.history, self.personas, self.usage)}.values():
            await kv.close()


def _persona_document(path: Path) -> tuple[Path, str, str]:
    # chat_roles.json -> (dir, "{key}.json", "chat_roles")
    return path.parent, "{key}" + path.suffix, path.stem or PERSONAS_DOCUMENT_KEY


def build_kv_stores(settings: Settings) -> tuple[KeyValueStore, KeyValueStore, KeyValueStore, str]:
    backend = settings.storage_backend
    if backend not in STORAGE_BACKENDS:
        raise ValueError("STORAGE_BACKEND must be 'json' or 'sqlite'")

    if backend == "sqlite":
        return (
            SqliteKeyValueStore(settings.sqlite_path, "history"),
            SqliteKeyValueStore(settings.sqlite_path, "personas"),
            SqliteKeyValueStore(settings.sqlite_path, "token_usage"),
            PERSONAS_DOCUMENT_KEY,
        )

    persona_dir, persona_template, persona_key = _persona_document(settings.chat_roles_path)
    return (
        JsonFileStore(settings.history_dir, "chat_{key}.json"),
        JsonFileStore(persona_dir, persona_template),
        JsonFileStore(settings.token_usage_dir, "chat_{key}_tokens.json"),
        persona_key,
    )


def create_chat_stores(settings: Settings) -> ChatStores:
    """Wire the stores without touching storage; personas stay empty until loaded."""
    history_kv, persona_kv, usage_kv, persona_key = build_kv_stores(settings)
    return ChatStores(
        history=HistoryStore(history_kv, settings.message_history_limit, settings.bot_history_prefix),
        personas=PersonaStore(persona_kv, settings.default_persona, document_key=persona_key),
        usage=UsageLedger(usage_kv),
    )


async def build_chat_stores(settings: Settings) -> ChatStores:
    stores = create_chat_stores(settings)
    await stores.personas.load()
    return stores
