from __future__ import annotations

import sqlite3
from pathlib import Path

import allure

import view_sync
from view_sync.metrics.ledger import MetricsLedger
from view_sync.storage import InMemoryKeyValueStore, KeyValueStore, SQLiteKeyValueStore
from view_sync.storage.alembic_runner import MIGRATIONS_DIR, alembic_config, current_revision

pytestmark = [
    allure.epic("Persistence"),
    allure.feature("Key-Value Store"),
]


def test_alembic_schema_is_initialized_to_head(tmp_path: Path) -> None:
    db_path = tmp_path / "nested" / "view_sync.db"
    assert current_revision(tmp_path / "fresh.db") is None

    store = SQLiteKeyValueStore.open(db_path, namespace="ledger")
    store.close()

    with sqlite3.connect(db_path) as connection:
        version = connection.execute("SELECT version_num FROM alembic_version").fetchone()
        tables = connection.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name = 'kv_entries'",
        ).fetchall()
    assert version == ("20261019_0001",)
    assert tables == [("kv_entries",)]
    assert current_revision(db_path) == "20261019_0001"


def test_migrations_ship_inside_the_package(tmp_path: Path) -> None:
    package_dir = Path(view_sync.__file__).resolve().parent
    config = alembic_config(tmp_path / "kv.db")

    assert MIGRATIONS_DIR.is_relative_to(package_dir)
    assert (MIGRATIONS_DIR / "env.py").is_file()
    assert list((MIGRATIONS_DIR / "versions").glob("*_kv_entries.py"))
    assert config.config_file_name is None
    assert config.get_main_option("script_location") == str(MIGRATIONS_DIR)


def test_crud_round_trip_and_sorted_keys(tmp_path: Path) -> None:
    store = SQLiteKeyValueStore.open(tmp_path / "kv.db", namespace="cache")
    try:
        assert isinstance(store, KeyValueStore)
        store.set("b", "2")
        store.set("a", "1")
        store.set("a", "one")

        assert store.get("a") == "one"
        assert store.keys() == ["a", "b"]

        store.remove("a")
        store.remove("missing")
        assert store.get("a") is None
        assert store.keys() == ["b"]
    finally:
        store.close()


def test_namespaces_are_isolated(tmp_path: Path) -> None:
    ledger_store = SQLiteKeyValueStore.open(tmp_path / "kv.db", namespace="ledger")
    cache_store = SQLiteKeyValueStore(ledger_store.engine, namespace="views_cache")
    try:
        ledger_store.set("vid", "ledger-value")
        cache_store.set("vid", "cache-value")

        assert ledger_store.get("vid") == "ledger-value"
        assert cache_store.get("vid") == "cache-value"
        cache_store.remove("vid")
        assert ledger_store.keys() == ["vid"]
    finally:
        ledger_store.close()


def test_ledger_survives_reopen(tmp_path: Path, clock) -> None:
    db_path = tmp_path / "kv.db"
    store = SQLiteKeyValueStore.open(db_path, namespace="ledger")
    MetricsLedger(store, clock=clock).set("vid", 77)
    store.close()

    reopened = SQLiteKeyValueStore.open(db_path, namespace="ledger")
    try:
        assert MetricsLedger(reopened, clock=clock).get("vid").views == 77
    finally:
        reopened.close()


def test_in_memory_store_matches_protocol() -> None:
    store = InMemoryKeyValueStore({"z": "1", "a": "2"})
    assert isinstance(store, KeyValueStore)
    assert store.keys() == ["a", "z"]
