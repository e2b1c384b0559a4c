from .factory import ChatStores, build_chat_stores, build_kv_stores, create_chat_stores
from .history import HistoryStore
from .json_store import JsonFileStore
from .kv import KeyedLocks, KeyValueStore, sanitize_chat_key
from .personas import PersonaStore
from .sqlite_store import SqliteKeyValueStore
from .usage import UsageLedger, UsageRecord

__all__ = [
    "ChatStores",
    "HistoryStore",
    "JsonFileStore",
    "KeyedLocks",
    "KeyValueStore",
    "PersonaStore",
    "SqliteKeyValueStore",
    "UsageLedger",
    "UsageRecord",
    "build_chat_stores",
    "build_kv_stores",
    "create_chat_stores",
    "sanitize_chat_key",
]
