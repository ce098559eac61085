# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import json
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional, Set, Tuple
from unittest.mock import MagicMock

import pytest

from site_core.errors import StorageError
from site_core.offline.config import OfflineSyncConfig
from site_core.offline.connection_manager import ConnectionManager
from site_core.offline.local_storage import MemoryKeyValueStore
from site_core.offline.mutation_queue import MutationQueue
from site_core.offline.remote_store import ApplyResult
from site_core.offline.sync_engine import SyncEngine


# =============================================================================
# TEST DOUBLES
# =============================================================================

class FakeRemoteStore:
    """
    RemoteStore that records every call.

    Failures are configured by 1-based call number (fail_on / raise_on) or by
    record key (fail_keys). hooks[n] runs during call n, before it returns,
    which is how tests interleave work with an in-flight sync.
    """

    def __init__(self):
        self.calls: List[Tuple[str, str, Any, Optional[Dict[str, Any]]]] = []
        self.fail_on: Set[int] = set()
        self.raise_on: Set[int] = set()
        self.fail_keys: Set[Any] = set()
        self.hooks: Dict[int, Callable[[], None]] = {}
        self.key_fields: List[str] = []

    def _record(self, kind: str, resource: str, key: Any, payload: Optional[Dict[str, Any]]) -> ApplyResult:
        self.calls.append((kind, resource, key, payload))
        number = len(self.calls)

        hook = self.hooks.get(number)
        if hook is not None:
            hook()

        if number in self.raise_on:
            raise RuntimeError(f"connection reset on call {number}")
        if number in self.fail_on or key in self.fail_keys:
            return ApplyResult.fail(f"remote rejected call {number}")
        return ApplyResult.ok()

    def create(self, resource, payload):
        return self._record("create", resource, payload.get("id"), dict(payload))

    def update(self, resource, key, payload, key_field):
        self.key_fields.append(key_field)
        return self._record("update", resource, key, dict(payload))

    def delete(self, resource, key, key_field):
        self.key_fields.append(key_field)
        return self._record("delete", resource, key, None)

    @property
    def call_count(self) -> int:
        return len(self.calls)


class CountingStorage(MemoryKeyValueStore):
    """Memory store that counts writes."""

    def __init__(self, initial=None):
        super().__init__(initial)
        self.saves = 0
        self.deletes = 0

    def save(self, key, value):
        self.saves += 1
        super().save(key, value)

    def delete(self, key):
        self.deletes += 1
        super().delete(key)


class FailingStorage(MemoryKeyValueStore):
    """Memory store whose reads and/or writes fail."""

    def __init__(self, fail_load=False, fail_save=True, initial=None):
        super().__init__(initial)
        self.fail_load = fail_load
        self.fail_save = fail_save

    def load(self, key):
        if self.fail_load:
            raise StorageError("disk unavailable", key=key)
        return super().load(key)

    def save(self, key, value):
        if self.fail_save:
            raise StorageError("disk full", key=key)
        super().save(key, value)

    def delete(self, key):
        if self.fail_save:
            raise StorageError("disk full", key=key)
        super().delete(key)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def storage():
    return CountingStorage()


@pytest.fixture
def queue(storage):
    return MutationQueue(storage)


@pytest.fixture
def remote():
    return FakeRemoteStore()


@pytest.fixture
def connection():
    """Connection manager that starts offline and is driven by report()."""
    return ConnectionManager(initial_online=False)


@pytest.fixture
def online_connection():
    return ConnectionManager(initial_online=True)


@pytest.fixture
def engine(queue, remote, online_connection):
    return SyncEngine(queue, remote, online_connection, OfflineSyncConfig())


@pytest.fixture
def mock_streamlit(monkeypatch):
    """Replace the Streamlit handle used for user-facing messages."""
    mock_st = MagicMock()
    mock_st.session_state = {}
    monkeypatch.setattr("site_core.errors.handlers.st", mock_st)
    return mock_st


@pytest.fixture
def mock_supabase():
    """Mock Supabase client whose queries succeed"""
    mock_client = MagicMock()
    response = SimpleNamespace(data=[{"id": 1}])
    table = mock_client.table.return_value
    table.insert.return_value.execute.return_value = response
    table.update.return_value.eq.return_value.execute.return_value = response
    table.delete.return_value.eq.return_value.execute.return_value = response
    return mock_client


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def stored_entries(store: MemoryKeyValueStore, key: str = "offline_operations") -> list:
    raw = store.load(key)
    return json.loads(raw) if raw else []
