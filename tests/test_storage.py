from __future__ import annotations

import asyncio
import json
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from relay_bot.config import Settings  # noqa: E402
from relay_bot.errors import StorageError  # noqa: E402
from relay_bot.storage import (  # noqa: E402
    HistoryStore,
    JsonFileStore,
    KeyedLocks,
    KeyValueStore,
    PersonaStore,
    SqliteKeyValueStore,
    UsageLedger,
    UsageRecord,
    build_chat_stores,
    sanitize_chat_key,
)


class _ReadOnlyStore(KeyValueStore):
    def __init__(self, documents: dict[str, Any] | None = None) -> None:
        super().__init__()
        self.documents = dict(documents or {})
        self.write_attempts = 0

    async def _read(self, key: str) -> Any | None:
        return self.documents.get(key)

    async def _write(self, key: str, value: Any) -> None:
        self.write_attempts += 1
        raise StorageError(f"disk full while writing {key}")

    async def _remove(self, key: str) -> bool:
        raise StorageError(f"cannot remove {key}")


def _history(tmp_path: Path, limit: int = 3) -> HistoryStore:
    return HistoryStore(JsonFileStore(tmp_path / "history", "chat_{key}.json"), limit, "Bot: ")


def test_sanitize_chat_key_keeps_safe_characters_only() -> None:
    assert sanitize_chat_key(-100123) == "-100123"
    assert sanitize_chat_key("a.b/c d_e") == "abcd_e"


def test_history_keeps_last_entries_in_order(tmp_path: Path) -> None:
    history = _history(tmp_path, limit=3)

    async def scenario() -> list[str]:
        for index in range(5):
            await history.append(42, f"user: {index}")
        return await history.read(42)

    assert asyncio.run(scenario()) == ["user: 2", "user: 3", "user: 4"]
    stored = json.loads((tmp_path / "history" / "chat_42.json").read_text(encoding="utf-8"))
    assert stored == ["user: 2", "user: 3", "user: 4"]


def test_history_count_since_last_bot_turn(tmp_path: Path) -> None:
    history = _history(tmp_path, limit=10)

    async def scenario() -> tuple[int, int, int]:
        empty = await history.count_since_last_bot_turn(1)
        for line in ("A: hi", "Bot: hello", "C: yo"):
            await history.append(1, line)
        for line in ("A: one", "B: two"):
            await history.append(2, line)
        return empty, await history.count_since_last_bot_turn(1), await history.count_since_last_bot_turn(2)

    assert asyncio.run(scenario()) == (0, 1, 2)


def test_history_replaces_corrupt_document(tmp_path: Path) -> None:
    history = _history(tmp_path)
    path = tmp_path / "history" / "chat_7.json"
    path.parent.mkdir(parents=True)
    path.write_text("{not json", encoding="utf-8")

    async def scenario() -> tuple[list[str], list[str]]:
        before = await history.read(7)
        await history.append(7, "user: fresh")
        return before, await history.read(7)

    assert asyncio.run(scenario()) == ([], ["user: fresh"])


def test_history_clear_removes_turns(tmp_path: Path) -> None:
    history = _history(tmp_path)

    async def scenario() -> list[str]:
        await history.append(5, "user: hi")
        await history.clear(5)
        await history.clear(5)
        return await history.read(5)

    assert asyncio.run(scenario()) == []
    assert not (tmp_path / "history" / "chat_5.json").exists()


def test_persona_store_falls_back_to_default_and_persists(tmp_path: Path) -> None:
    kv = JsonFileStore(tmp_path, "{key}.json")
    personas = PersonaStore(kv, "Default persona", document_key="chat_roles")

    async def scenario() -> list[str]:
        await personas.load()
        seen = [personas.get(-1001)]
        assert await personas.set(-1001, "X")
        seen.append(personas.get(-1001))

        reloaded = PersonaStore(kv, "Default persona", document_key="chat_roles")
        await reloaded.load()
        seen.append(reloaded.get(-1001))

        assert await personas.set(-1001, "")
        seen.append(personas.get(-1001))
        return seen

    assert asyncio.run(scenario()) == ["Default persona", "X", "X", "Default persona"]
    assert json.loads((tmp_path / "chat_roles.json").read_text(encoding="utf-8")) == {}


def test_persona_store_ignores_non_object_document(tmp_path: Path) -> None:
    (tmp_path / "chat_roles.json").write_text("[1, 2]", encoding="utf-8")
    personas = PersonaStore(JsonFileStore(tmp_path, "{key}.json"), "Default persona")

    asyncio.run(personas.load())

    assert personas.get(1) == "Default persona"
    assert personas.has_override(1) is False


def test_usage_record_keeps_missing_counts_distinct_from_zero(tmp_path: Path) -> None:
    ledger = UsageLedger(JsonFileStore(tmp_path / "token_usage", "chat_{key}_tokens.json"))

    async def scenario() -> list[UsageRecord]:
        await ledger.record(9, "gemini", "gemini-pro", prompt_tokens=0, completion_tokens=None, total_tokens=12)
        await ledger.record(9, "openai", "gpt-4")
        return await ledger.read(9)

    first, second = asyncio.run(scenario())
    assert (first.prompt_tokens, first.completion_tokens, first.total_tokens) == (0, None, 12)
    assert (second.prompt_tokens, second.completion_tokens, second.total_tokens) == (None, None, None)

    raw = json.loads((tmp_path / "token_usage" / "chat_9_tokens.json").read_text(encoding="utf-8"))
    assert raw[0]["prompt_tokens"] == 0
    assert raw[0]["completion_tokens"] is None
    assert len(raw[0]["timestamp"]) == len("2024-01-01 00:00:00")
    assert UsageRecord.from_dict(raw[1]) == second


def test_sqlite_store_round_trips_documents(tmp_path: Path) -> None:
    db_path = tmp_path / "relay.db"
    history = HistoryStore(SqliteKeyValueStore(db_path, "history"), 2, "Bot: ")
    personas_kv = SqliteKeyValueStore(db_path, "personas")

    async def scenario() -> tuple[list[str], object, bool, bool]:
        for line in ("a: 1", "b: 2", "Bot: 3"):
            await history.append("chat", line)
        await personas_kv.put("chat_roles", {"1": "Pirate"})
        turns = await history.read("chat")
        document = await personas_kv.get("chat_roles")
        removed = await personas_kv.delete("chat_roles")
        removed_again = await personas_kv.delete("chat_roles")
        return turns, document, removed, removed_again

    turns, document, removed, removed_again = asyncio.run(scenario())
    assert turns == ["b: 2", "Bot: 3"]
    assert document == {"1": "Pirate"}
    assert removed is True
    assert removed_again is False


def test_json_backend_uses_legacy_file_layout(tmp_path: Path) -> None:
    settings = replace(
        Settings.from_env(),
        storage_backend="json",
        history_dir=tmp_path / "history",
        token_usage_dir=tmp_path / "token_usage",
        chat_roles_path=tmp_path / "chat_roles.json",
        default_persona="Default persona",
    )
    (tmp_path / "chat_roles.json").write_text(json.dumps({"-100": "Sailor"}), encoding="utf-8")

    async def scenario() -> str:
        stores = await build_chat_stores(settings)
        await stores.history.append(-100, "user: hi")
        await stores.usage.record(-100, "openai", "gpt-4", total_tokens=3)
        await stores.close()
        return stores.personas.get(-100)

    assert asyncio.run(scenario()) == "Sailor"
    assert (tmp_path / "history" / "chat_-100.json").exists()
    assert (tmp_path / "token_usage" / "chat_-100_tokens.json").exists()


def test_history_write_failure_is_logged_not_raised() -> None:
    kv = _ReadOnlyStore({"12": ["alice: earlier"]})
    history = HistoryStore(kv, 5, "Bot: ")

    async def scenario() -> list[str]:
        await history.append(12, "alice: new")
        await history.clear(12)
        return await history.read(12)

    assert asyncio.run(scenario()) == ["alice: earlier"]
    assert kv.write_attempts == 1


def test_persona_write_failure_keeps_in_memory_override() -> None:
    personas = PersonaStore(_ReadOnlyStore({"chat_roles": {"3": "Old"}}), "Default persona")

    async def scenario() -> tuple[bool, bool]:
        await personas.load()
        saved = await personas.set(3, "Librarian")
        reset = await personas.set(4, "")
        return saved, reset

    saved, reset = asyncio.run(scenario())

    assert saved is False
    assert reset is False
    assert personas.get(3) == "Librarian"
    assert personas.has_override(3) is True
    assert personas.get(4) == "Default persona"


def test_keyed_locks_serialize_per_key_and_drop_idle_locks() -> None:
    locks = KeyedLocks()
    events: list[str] = []

    async def worker(key: str, name: str) -> None:
        async with locks.hold(key):
            events.append(f"{name}:in")
            await asyncio.sleep(0)
            events.append(f"{name}:out")

    async def scenario() -> int:
        await asyncio.gather(worker("a", "first"), worker("a", "second"), worker("b", "other"))
        return len(locks)

    assert asyncio.run(scenario()) == 0
    assert events.index("first:out") < events.index("second:in")
    assert events.index("other:in") < events.index("first:out")


def test_store_locks_are_released_after_each_write(tmp_path: Path) -> None:
    kv = JsonFileStore(tmp_path, "chat_{key}.json")
    history = HistoryStore(kv, 3, "Bot: ")

    async def scenario() -> None:
        await asyncio.gather(*(history.append(chat_id, "user: hi") for chat_id in range(20)))

    asyncio.run(scenario())

    assert len(kv._locks) == 0
