# =============================================================================
# site_core/offline/local_storage.py
# Durable Key-Value Storage for the Offline Queue
# =============================================================================
"""
Local persistence for offline state.

The mutation queue only needs a tiny key-value capability (load a blob,
save a blob, delete a blob), the same contract the web client had with
localStorage. Two implementations:

- SQLiteKeyValueStore: durable, one `kv_store` table in a local SQLite file
- MemoryKeyValueStore: process memory only, for tests and throwaway sessions
"""

from __future__ import annotations
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterator, Optional, Protocol, runtime_checkable

from site_core.errors import StorageError
from site_core.logging import get_logger

logger = get_logger(__name__)


@runtime_checkable
class KeyValueStore(Protocol):
    """Minimal persistence contract used by MutationQueue."""

    def load(self, key: str) -> Optional[str]:
        ...

    def save(self, key: str, value: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class MemoryKeyValueStore:
    """Dict-backed store. Contents vanish with the process."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def load(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def save(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._data


class SQLiteKeyValueStore:
    """
    SQLite-backed key-value store.

    Each thread gets its own connection; writes run inside a transaction so
    a blob is either fully replaced or left untouched.
    """

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS kv_store (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._local = threading.local()
        self._initialized = False
        self._init_lock = threading.Lock()

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if getattr(self._local, "connection", None) is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._local.connection = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._local.connection.row_factory = sqlite3.Row
        return self._local.connection

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def initialize(self) -> None:
        """Create the kv_store table if needed."""
        with self._init_lock:
            if self._initialized:
                return
            try:
                with self.transaction() as conn:
                    conn.execute(self.SCHEMA)
            except (sqlite3.Error, OSError) as e:
                raise StorageError(f"Could not initialize local store: {e}", path=str(self.db_path)) from e
            self._initialized = True
            logger.info(f"Local offline store initialized at: {self.db_path}")

    def load(self, key: str) -> Optional[str]:
        self.initialize()
        try:
            row = self._get_connection().execute(
                "SELECT value FROM kv_store WHERE key = ?", [key]
            ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Could not read '{key}': {e}", key=key, path=str(self.db_path)) from e
        return row["value"] if row else None

    def save(self, key: str, value: str) -> None:
        self.initialize()
        try:
            with self.transaction() as conn:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO kv_store (key, value, updated_at)
                    VALUES (?, ?, ?)
                    """,
                    [key, value, datetime.now().isoformat()],
                )
        except sqlite3.Error as e:
            raise StorageError(f"Could not write '{key}': {e}", key=key, path=str(self.db_path)) from e

    def delete(self, key: str) -> None:
        self.initialize()
        try:
            with self.transaction() as conn:
                conn.execute("DELETE FROM kv_store WHERE key = ?", [key])
        except sqlite3.Error as e:
            raise StorageError(f"Could not delete '{key}': {e}", key=key, path=str(self.db_path)) from e

    def close(self) -> None:
        """Close this thread's connection."""
        if getattr(self._local, "connection", None) is not None:
            self._local.connection.close()
            self._local.connection = None
