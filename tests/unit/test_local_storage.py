# =============================================================================
# tests/unit/test_local_storage.py
# Unit Tests for Local Key-Value Storage
# =============================================================================

import threading

import pytest

from site_core.errors import StorageError
from site_core.offline.local_storage import (
    KeyValueStore,
    MemoryKeyValueStore,
    SQLiteKeyValueStore,
)


class TestMemoryKeyValueStore:
    """Test the in-memory store"""

    def test_satisfies_protocol(self):
        assert isinstance(MemoryKeyValueStore(), KeyValueStore)

    def test_load_missing_key(self):
        assert MemoryKeyValueStore().load("offline_operations") is None

    def test_save_load_delete(self):
        store = MemoryKeyValueStore()
        store.save("k", "[1, 2]")
        assert store.load("k") == "[1, 2]"
        assert "k" in store

        store.delete("k")
        assert store.load("k") is None
        assert "k" not in store

    def test_delete_missing_key_is_noop(self):
        MemoryKeyValueStore().delete("nothing-here")

    def test_initial_contents(self):
        store = MemoryKeyValueStore({"k": "v"})
        assert store.load("k") == "v"


class TestSQLiteKeyValueStore:
    """Test the SQLite-backed store"""

    @pytest.fixture
    def db_path(self, tmp_path):
        return tmp_path / "nested" / "offline.db"

    def test_satisfies_protocol(self, db_path):
        assert isinstance(SQLiteKeyValueStore(db_path), KeyValueStore)

    def test_creates_parent_directory(self, db_path):
        store = SQLiteKeyValueStore(db_path)
        store.save("k", "v")

        assert db_path.exists()
        store.close()

    def test_save_replaces_value(self, db_path):
        store = SQLiteKeyValueStore(db_path)
        store.save("k", "first")
        store.save("k", "second")

        assert store.load("k") == "second"
        store.close()

    def test_survives_new_instance(self, db_path):
        """Test that data written by one instance is read by the next (restart)"""
        first = SQLiteKeyValueStore(db_path)
        first.save("offline_operations", '[{"id": "a"}]')
        first.close()

        second = SQLiteKeyValueStore(db_path)
        assert second.load("offline_operations") == '[{"id": "a"}]'
        second.close()

    def test_delete(self, db_path):
        store = SQLiteKeyValueStore(db_path)
        store.save("k", "v")
        store.delete("k")

        assert store.load("k") is None
        store.close()

    def test_keys_are_independent(self, db_path):
        store = SQLiteKeyValueStore(db_path)
        store.save("a", "1")
        store.save("b", "2")
        store.delete("a")

        assert store.load("a") is None
        assert store.load("b") == "2"
        store.close()

    def test_connection_per_thread(self, db_path):
        store = SQLiteKeyValueStore(db_path)
        store.save("k", "main")
        seen = []

        def reader():
            seen.append(store.load("k"))
            store.close()

        thread = threading.Thread(target=reader)
        thread.start()
        thread.join()

        assert seen == ["main"]
        store.close()

    def test_unusable_path_raises_storage_error(self, tmp_path):
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("file in the way")

        store = SQLiteKeyValueStore(blocker / "offline.db")
        with pytest.raises(StorageError):
            store.save("k", "v")
