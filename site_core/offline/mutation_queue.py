# =============================================================================
# site_core/offline/mutation_queue.py
# Ordered Queue of Pending Offline Writes
# =============================================================================
"""
MutationQueue - the authoritative in-process list of pending writes.

Every change to the list is followed by a full rewrite of the persisted
blob before the method returns, so memory and disk never disagree by more
than the operation in progress. Persistence failures are logged and
swallowed: for the current session the in-memory list stays authoritative.
"""

from __future__ import annotations
import json
import threading
from typing import Any, Iterable, List, Mapping, Optional, Tuple, Union

import pandas as pd

from site_core.errors import PayloadValidationError, StorageError
from site_core.logging import get_logger
from site_core.offline.config import DEFAULT_STORAGE_KEY
from site_core.offline.local_storage import KeyValueStore
from site_core.offline.operations import (
    OperationKind,
    PendingOperation,
    ResourceSchema,
    build_operation,
    schema_for,
)

logger = get_logger(__name__)

DATAFRAME_COLUMNS = ["id", "resource", "kind", "key", "created_at", "payload"]


class MutationQueue:
    """
    Ordered, durable list of PendingOperations.

    Usage:
        queue = MutationQueue(SQLiteKeyValueStore(path))
        queue.load_from_storage()
        op_id = queue.enqueue("unit_work_logs", "insert", {...})
    """

    def __init__(
        self,
        storage: KeyValueStore,
        storage_key: str = DEFAULT_STORAGE_KEY,
        schemas: Optional[Mapping[str, ResourceSchema]] = None,
    ):
        self.storage = storage
        self.storage_key = storage_key
        self.schemas = schemas
        self._operations: List[PendingOperation] = []
        self._lock = threading.RLock()
        self._last_persist_error: Optional[str] = None

    # =========================================================================
    # READ SIDE
    # =========================================================================

    @property
    def pending(self) -> Tuple[PendingOperation, ...]:
        """Pending operations, oldest first."""
        with self._lock:
            return tuple(self._operations)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._operations)

    @property
    def last_persist_error(self) -> Optional[str]:
        return self._last_persist_error

    def __len__(self) -> int:
        return self.pending_count

    def snapshot(self) -> List[PendingOperation]:
        """Copy of the queue used by a sync pass."""
        with self._lock:
            return list(self._operations)

    def get(self, op_id: str) -> Optional[PendingOperation]:
        with self._lock:
            for op in self._operations:
                if op.id == op_id:
                    return op
        return None

    def key_field(self, resource: str) -> str:
        return schema_for(resource, self.schemas).key_field

    def preview(self, limit: int = 3) -> Tuple[List[PendingOperation], int]:
        """First `limit` operations plus how many more are waiting."""
        with self._lock:
            head = list(self._operations[:limit])
            return head, max(len(self._operations) - limit, 0)

    def to_dataframe(self) -> pd.DataFrame:
        """Pending operations as a DataFrame for display/debugging."""
        rows = [
            {
                "id": op.id,
                "resource": op.resource,
                "kind": op.kind.value,
                "key": op.key(self.key_field(op.resource)),
                "created_at": op.created_at,
                "payload": json.dumps(dict(op.payload), sort_keys=True),
            }
            for op in self.pending
        ]
        return pd.DataFrame(rows, columns=DATAFRAME_COLUMNS)

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    def enqueue(
        self,
        resource: str,
        kind: Union[OperationKind, str],
        payload: Mapping[str, Any],
    ) -> str:
        """
        Append a new operation and persist the queue.

        Raises:
            PayloadValidationError: the mutation is malformed and was not queued
        """
        operation = build_operation(resource, kind, payload, self.schemas)
        with self._lock:
            self._operations.append(operation)
            self._persist()

        logger.debug(f"Queued {operation.describe()} as {operation.id}")
        return operation.id

    def remove(self, ids: Iterable[str]) -> int:
        """Remove operations by id in a single persisted write."""
        targets = set(ids)
        if not targets:
            return 0

        with self._lock:
            before = len(self._operations)
            self._operations = [op for op in self._operations if op.id not in targets]
            removed = before - len(self._operations)
            if removed:
                self._persist()

        return removed

    def clear(self) -> None:
        """Drop every pending operation, in memory and on disk."""
        with self._lock:
            dropped = len(self._operations)
            self._operations = []
            try:
                self.storage.delete(self.storage_key)
                self._last_persist_error = None
            except (StorageError, OSError) as e:
                self._last_persist_error = str(e)
                logger.error(f"Failed to clear persisted operations: {e}")

        logger.info(f"Cleared {dropped} pending operations")

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    def load_from_storage(self) -> int:
        """
        Replace the in-memory queue with the persisted one.

        Corrupted state never raises: an unreadable blob yields an empty
        queue, and individual malformed entries are dropped. Entries already
        marked as synced are not replayed.
        """
        try:
            raw = self.storage.load(self.storage_key)
        except (StorageError, OSError) as e:
            logger.error(f"Failed to load pending operations: {e}")
            raw = None

        operations: List[PendingOperation] = []
        if raw:
            try:
                entries = json.loads(raw)
                if not isinstance(entries, list):
                    raise ValueError(f"expected a list, got {type(entries).__name__}")
            except ValueError as e:
                logger.error(f"Failed to load pending operations: {e}")
                entries = []

            seen = set()
            for entry in entries:
                try:
                    if not isinstance(entry, dict):
                        raise PayloadValidationError("Stored operation is not an object")
                    op = PendingOperation.from_dict(entry)
                except PayloadValidationError as e:
                    logger.warning(f"Dropping malformed stored operation: {e}")
                    continue
                if entry.get("synced") is True:
                    logger.info(f"Dropping stored operation {op.id}: already synced")
                    continue
                if op.id in seen:
                    logger.warning(f"Dropping duplicate stored operation {op.id}")
                    continue
                seen.add(op.id)
                operations.append(op)

        with self._lock:
            self._operations = operations

        logger.info(f"Loaded {len(operations)} pending operations")
        return len(operations)

    def _persist(self) -> None:
        """Rewrite the whole persisted list. Caller holds the lock."""
        blob = json.dumps([op.to_dict() for op in self._operations])
        try:
            self.storage.save(self.storage_key, blob)
            self._last_persist_error = None
        except (StorageError, OSError) as e:
            self._last_persist_error = str(e)
            logger.error(f"Failed to save pending operations: {e}")
