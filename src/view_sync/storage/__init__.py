"""Key-value persistence port with in-memory and SQLite implementations."""

from view_sync.storage.kv import InMemoryKeyValueStore, KeyValueStore
from view_sync.storage.sqlite_store import SQLiteKeyValueStore

__all__ = ["InMemoryKeyValueStore", "KeyValueStore", "SQLiteKeyValueStore"]
