# =============================================================================
# site_core/offline/service.py
# Offline Sync Service - Single API for UI Consumers
# =============================================================================
"""
OfflineSyncService - the object UI code talks to.

It owns the queue, the connection manager and the sync engine and gives
them one explicit lifecycle (start/stop) instead of ambient page state.

Usage:
------
from site_core.offline import get_offline_service

service = get_offline_service()
service.enqueue("unit_work_logs", "insert", {...})

print(service.is_online, service.pending_count, service.is_syncing)
report = service.sync_pending_operations()
"""

from __future__ import annotations
import threading
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from site_core.errors import report_sync_failures, safe_execute
from site_core.logging import get_logger
from site_core.offline.config import OfflineSyncConfig, load_config
from site_core.offline.connection_manager import ConnectionManager, Probe, SocketProbe
from site_core.offline.local_storage import KeyValueStore, SQLiteKeyValueStore
from site_core.offline.mutation_queue import MutationQueue
from site_core.offline.operations import OperationKind, PendingOperation, ResourceSchema
from site_core.offline.remote_store import RemoteStore, SupabaseRemoteStore
from site_core.offline.sync_engine import SyncEngine, SyncReport

logger = get_logger(__name__)


class OfflineSyncService:
    """Facade over MutationQueue, ConnectionManager and SyncEngine."""

    def __init__(
        self,
        queue: MutationQueue,
        engine: SyncEngine,
        connection: ConnectionManager,
        monitor_connection: bool = False,
    ):
        self.queue = queue
        self.engine = engine
        self.connection = connection
        self.monitor_connection = monitor_connection
        self._started = False

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self) -> None:
        """Load persisted operations and begin reacting to reconnects."""
        if self._started:
            return

        self.queue.load_from_storage()
        self.engine.start()
        self.connection.check_connection()
        if self.monitor_connection:
            self.connection.start_monitoring()
        self._started = True
        logger.info(
            f"Offline sync service started ({self.pending_count} pending, "
            f"{'online' if self.is_online else 'offline'})"
        )

    def stop(self) -> None:
        if not self._started:
            return
        if self.monitor_connection:
            self.connection.stop_monitoring()
        self.engine.stop()
        self._started = False
        logger.info("Offline sync service stopped")

    @property
    def is_started(self) -> bool:
        return self._started

    # =========================================================================
    # UI-FACING API
    # =========================================================================

    @property
    def is_online(self) -> bool:
        return self.connection.is_online

    @property
    def is_syncing(self) -> bool:
        return self.engine.is_syncing

    @property
    def pending_count(self) -> int:
        return self.queue.pending_count

    @property
    def pending_operations(self) -> Tuple[PendingOperation, ...]:
        return self.queue.pending

    def enqueue(
        self,
        resource: str,
        kind: Union[OperationKind, str],
        payload: Mapping[str, Any],
    ) -> str:
        """Queue a write for replay. Raises PayloadValidationError if malformed."""
        return self.queue.enqueue(resource, kind, payload)

    def sync_pending_operations(self, notify: bool = False) -> Optional[SyncReport]:
        """
        Manual sync trigger.

        With notify=True (the "Sync now" button) the outcome is shown to the
        user, and an unexpected error is reported with st.error instead of
        propagating; None is returned in that case.
        """
        if not notify:
            return self.engine.sync()

        report = safe_execute(self.engine.sync, error_message="Sync could not be completed")
        if report is not None:
            report_sync_failures(report)
        return report

    def clear_pending_operations(self) -> None:
        """Error-recovery reset: discard everything still queued."""
        self.queue.clear()

    def pending_preview(self, limit: int = 3) -> Tuple[List[PendingOperation], int]:
        return self.queue.preview(limit)

    def get_status_display(self) -> Dict[str, Any]:
        """Combined status for UI badges/indicators."""
        status = self.engine.get_status_display()
        status["is_online"] = self.is_online
        status["connection"] = self.connection.get_status_display()
        head, more = self.pending_preview()
        status["pending_preview"] = [op.describe() for op in head]
        status["pending_more"] = more
        return status


def build_offline_service(
    config: Optional[OfflineSyncConfig] = None,
    remote: Optional[RemoteStore] = None,
    storage: Optional[KeyValueStore] = None,
    probe: Optional[Probe] = None,
    connection: Optional[ConnectionManager] = None,
    schemas: Optional[Mapping[str, ResourceSchema]] = None,
) -> OfflineSyncService:
    """
    Wire an OfflineSyncService from configuration.

    Any collaborator can be injected; the defaults are a SQLite store, a
    TCP connectivity probe and a Supabase-backed remote store.
    """
    config = config or load_config()

    if storage is None:
        storage = SQLiteKeyValueStore(config.db_path)

    if connection is None:
        if probe is None:
            probe = SocketProbe(config.supabase_url, timeout=config.connection_timeout)
        connection = ConnectionManager(
            probe=probe,
            check_interval_online=config.check_interval_online,
            check_interval_offline=config.check_interval_offline,
        )

    queue = MutationQueue(storage, storage_key=config.storage_key, schemas=schemas)

    if remote is None:
        from site_core.data.supabase_client import get_cached_supabase_client

        client = get_cached_supabase_client(config.supabase_url, config.supabase_key, config.remote_timeout)
        remote = SupabaseRemoteStore(client)

    engine = SyncEngine(queue, remote, connection, config)
    return OfflineSyncService(queue, engine, connection, monitor_connection=config.monitor_connection)


# Singleton accessor
_offline_service: Optional[OfflineSyncService] = None
_service_lock = threading.Lock()


def get_offline_service() -> OfflineSyncService:
    """Get the global OfflineSyncService, started on first use."""
    global _offline_service
    if _offline_service is None:
        with _service_lock:
            if _offline_service is None:
                service = build_offline_service()
                service.start()
                _offline_service = service
    return _offline_service


def reset_offline_service() -> None:
    """Stop and forget the global service (tests, settings changes)."""
    global _offline_service
    with _service_lock:
        if _offline_service is not None:
            _offline_service.stop()
        _offline_service = None
