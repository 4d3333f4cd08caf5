"""Tests for record persistence.

Tests cover:
- MemoryRecordStore copy semantics
- SQLiteRecordStore on disk and in memory
- Cross-thread access to an in-memory SQLite database
- create_record_store backend selection
"""

from __future__ import annotations

import threading

import pytest

from recipe_automation.core.config import PersistenceConfig
from recipe_automation.core.persistence import (
    MemoryRecordStore,
    SQLiteRecordStore,
    create_record_store,
)


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        instance = MemoryRecordStore()
    else:
        instance = SQLiteRecordStore(tmp_path / "records.db")
    yield instance
    instance.close()


# ==============================================================================
# Shared contract Tests
# ==============================================================================


class TestRecordStoreContract:
    """Behaviour shared by every backend."""

    def test_save_and_load(self, store):
        """Test a saved record can be loaded back."""
        store.save("recipes", "recipe_1", {"id": "recipe_1", "name": "Urgent mail"})

        assert store.load("recipes", "recipe_1") == {"id": "recipe_1", "name": "Urgent mail"}

    def test_load_missing(self, store):
        """Test loading an unknown record returns None."""
        assert store.load("recipes", "missing") is None

    def test_save_replaces(self, store):
        """Test saving the same id replaces the record."""
        store.save("recipes", "recipe_1", {"version": 1})
        store.save("recipes", "recipe_1", {"version": 2})

        assert store.load("recipes", "recipe_1") == {"version": 2}
        assert len(store.list_all("recipes")) == 1

    def test_kinds_are_separate(self, store):
        """Test records with the same id in different kinds do not collide."""
        store.save("recipes", "x", {"kind": "recipe"})
        store.save("executions", "x", {"kind": "execution"})

        assert store.load("recipes", "x") == {"kind": "recipe"}
        assert store.load("executions", "x") == {"kind": "execution"}

    def test_delete(self, store):
        """Test delete reports whether something was removed."""
        store.save("executions", "exec_1", {"status": "completed"})

        assert store.delete("executions", "exec_1") is True
        assert store.delete("executions", "exec_1") is False
        assert store.load("executions", "exec_1") is None

    def test_list_all(self, store):
        """Test listing every record of a kind."""
        store.save("scheduled_jobs", "a", {"id": "a"})
        store.save("scheduled_jobs", "b", {"id": "b"})

        ids = sorted(record["id"] for record in store.list_all("scheduled_jobs"))

        assert ids == ["a", "b"]
        assert store.list_all("one_time_jobs") == []

    def test_loaded_record_is_a_copy(self, store):
        """Test mutating a loaded record does not change the stored one."""
        store.save("recipes", "recipe_1", {"tags": ["ops"]})

        loaded = store.load("recipes", "recipe_1")
        loaded["tags"].append("mail")

        assert store.load("recipes", "recipe_1") == {"tags": ["ops"]}


# ==============================================================================
# Backend specific Tests
# ==============================================================================


class TestMemoryRecordStore:
    """Tests for MemoryRecordStore."""

    def test_saved_record_is_a_copy(self):
        """Test mutating the original after save does not change the stored one."""
        store = MemoryRecordStore()
        record = {"tags": ["ops"]}

        store.save("recipes", "recipe_1", record)
        record["tags"].append("mail")

        assert store.load("recipes", "recipe_1") == {"tags": ["ops"]}


class TestSQLiteRecordStore:
    """Tests for SQLiteRecordStore."""

    def test_persists_across_instances(self, tmp_path):
        """Test records survive reopening the database file."""
        path = tmp_path / "nested" / "records.db"
        first = SQLiteRecordStore(path)
        first.save("recipes", "recipe_1", {"name": "Daily digest"})
        first.close()

        second = SQLiteRecordStore(path)

        assert second.load("recipes", "recipe_1") == {"name": "Daily digest"}
        second.close()

    def test_in_memory_shared_between_threads(self):
        """Test an in-memory database is visible from worker threads."""
        store = SQLiteRecordStore()
        errors = []

        def worker(index: int) -> None:
            try:
                store.save("one_time_jobs", f"job_{index}", {"index": index})
            except Exception as exc:  # pragma: no cover - surfaced by the assertion
                errors.append(exc)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert len(store.list_all("one_time_jobs")) == 5
        store.close()


class TestCreateRecordStore:
    """Tests for create_record_store."""

    def test_default_is_memory(self):
        assert isinstance(create_record_store(), MemoryRecordStore)

    def test_sqlite_backend(self, tmp_path):
        store = create_record_store(
            PersistenceConfig(backend="sqlite", path=str(tmp_path / "records.db"))
        )

        assert isinstance(store, SQLiteRecordStore)
        store.close()

    def test_sqlite_without_path_uses_memory_database(self):
        store = create_record_store(PersistenceConfig(backend="sqlite"))

        assert isinstance(store, SQLiteRecordStore)
        assert store.db_path == ":memory:"
        store.close()
