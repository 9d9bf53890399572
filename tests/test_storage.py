import sqlite3
from pathlib import Path

import pytest

from gitsim.storage import SCHEMA_VERSION, MemoryStore, SqliteStore


def test_memory_store_basic_operations() -> None:
    store = MemoryStore({"seed": "1"})
    assert store.get("seed") == "1"
    store.set("seed", "2")
    store.set("other", "x")
    assert store.get("seed") == "2"
    store.remove("seed")
    store.remove("never-there")
    assert store.get("seed") is None
    assert store.data == {"other": "x"}


def test_sqlite_store_in_memory() -> None:
    store = SqliteStore(":memory:")
    assert store.get("missing") is None
    store.set("a", "1")
    store.set("a", "2")
    store.set("b", "3")
    assert store.get("a") == "2"
    assert store.get("b") == "3"
    store.remove("a")
    assert store.get("a") is None
    assert store.get("b") == "3"
    store.close()


def test_sqlite_store_persists_to_file(tmp_path: Path) -> None:
    db_path = tmp_path / "nested" / "state.db"
    store = SqliteStore(db_path)
    store.set("git_state", "{}")
    store.close()

    reopened = SqliteStore(db_path)
    assert reopened.get("git_state") == "{}"
    reopened.close()


def test_sqlite_store_records_schema_version(tmp_path: Path) -> None:
    db_path = tmp_path / "state.db"
    SqliteStore(db_path).close()

    conn = sqlite3.connect(db_path)
    try:
        assert conn.execute("PRAGMA user_version").fetchone()[0] == SCHEMA_VERSION
        versions = [row[0] for row in conn.execute("SELECT version FROM schema_migrations")]
        assert versions == [1]
    finally:
        conn.close()


def test_sqlite_store_rejects_newer_schema(tmp_path: Path) -> None:
    db_path = tmp_path / "state.db"
    conn = sqlite3.connect(db_path)
    conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION + 1}")
    conn.close()

    with pytest.raises(RuntimeError, match="newer than supported"):
        SqliteStore(db_path)
