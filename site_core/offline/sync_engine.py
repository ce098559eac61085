# =============================================================================
# site_core/offline/sync_engine.py
# Replay of Queued Writes Against the Remote Store
# =============================================================================
"""
SyncEngine - drains the MutationQueue when the backend is reachable.

Features:
- Non-reentrant passes: a sync() call during a running pass returns at once
- Snapshot semantics: writes queued mid-pass wait for the next pass
- Sequential replay in creation order, one remote call per entry
- Partial failure: failed entries stay queued, successes are removed in one write
- Same-record barrier: after a failure, later edits of that record wait too
- Automatic pass on an offline -> online transition
- Optional per-entry exponential backoff (off by default)
"""

from __future__ import annotations
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from site_core.errors import RemoteApplyError
from site_core.logging import get_logger, LogContext
from site_core.offline.config import OfflineSyncConfig
from site_core.offline.connection_manager import ConnectionManager
from site_core.offline.mutation_queue import MutationQueue
from site_core.offline.operations import OperationKind, PendingOperation
from site_core.offline.remote_store import ApplyResult, RemoteStore

logger = get_logger(__name__)

SKIPPED_ALREADY_SYNCING = "already_syncing"
SKIPPED_OFFLINE = "offline"


@dataclass
class SyncReport:
    """Outcome of one sync() call."""
    attempted: int = 0
    succeeded: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    held: List[str] = field(default_factory=list)
    skipped: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def ok(self) -> bool:
        return self.skipped is None and not self.failed and not self.held

    @property
    def failed_count(self) -> int:
        return len(self.failed)

    @property
    def remaining(self) -> int:
        return len(self.failed) + len(self.held)

    def summary(self) -> str:
        if self.skipped == SKIPPED_OFFLINE:
            return "Sync skipped: offline"
        if self.skipped == SKIPPED_ALREADY_SYNCING:
            return "Sync skipped: a sync is already running"
        if self.remaining:
            noun = "change" if self.remaining == 1 else "changes"
            return f"{self.remaining} {noun} could not be synced"
        return f"Synced {len(self.succeeded)} pending changes"


@dataclass
class SyncState:
    """Current sync state."""
    is_syncing: bool = False
    last_sync: Optional[datetime] = None
    last_sync_success: Optional[datetime] = None
    pending_count: int = 0
    failed_count: int = 0
    total_synced: int = 0
    progress: float = 0.0
    last_report: Optional[SyncReport] = None


@dataclass
class FailureRecord:
    """In-memory retry bookkeeping for one queued operation."""
    attempts: int = 0
    last_error: Optional[str] = None
    next_attempt_at: float = 0.0


class SyncEngine:
    """
    Drains a MutationQueue into a RemoteStore.

    Usage:
        engine = SyncEngine(queue, SupabaseRemoteStore(client), connection)
        engine.start()          # auto-sync on reconnect
        report = engine.sync()  # manual trigger
    """

    def __init__(
        self,
        queue: MutationQueue,
        remote: RemoteStore,
        connection: ConnectionManager,
        config: Optional[OfflineSyncConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.queue = queue
        self.remote = remote
        self.connection = connection
        self.config = config or OfflineSyncConfig()
        self._clock = clock

        self._state = SyncState(pending_count=queue.pending_count)
        self._sync_lock = threading.Lock()
        self._callbacks: List[Callable[[SyncState], None]] = []
        self._failures: Dict[str, FailureRecord] = {}
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._last_online: Optional[bool] = None

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_syncing(self) -> bool:
        return self._state.is_syncing

    @property
    def is_running(self) -> bool:
        return self._unsubscribe is not None

    def failure_info(self, op_id: str) -> Optional[FailureRecord]:
        """Retry bookkeeping for a queued operation that has failed before."""
        return self._failures.get(op_id)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self) -> None:
        """Subscribe to connectivity so reconnects trigger a sync pass."""
        if self._unsubscribe is not None:
            return
        self._unsubscribe = self.connection.subscribe(self._on_connection_change)
        logger.info("SyncEngine started")

    def stop(self) -> None:
        """Stop reacting to connectivity changes. A running pass completes."""
        if self._unsubscribe is None:
            return
        self._unsubscribe()
        self._unsubscribe = None
        self._last_online = None
        logger.info("SyncEngine stopped")

    def _on_connection_change(self, online: bool) -> None:
        was_online = self._last_online
        self._last_online = online

        # The first call is the subscription snapshot, not a transition
        if was_online is None or was_online or not online:
            return

        pending = self.queue.pending_count
        if pending == 0:
            return

        logger.info(f"Back online, syncing {pending} pending changes")
        self.sync()

    # =========================================================================
    # SYNC
    # =========================================================================

    def sync(self) -> SyncReport:
        """
        Run one replay pass over the current queue snapshot.

        Never raises for per-entry problems; the returned report says what
        was applied, what failed and what was held back.
        """
        if not self._sync_lock.acquire(blocking=False):
            logger.debug("Sync already in progress, skipping")
            return SyncReport(skipped=SKIPPED_ALREADY_SYNCING)

        try:
            if not self.connection.is_online:
                logger.debug("Cannot sync: offline")
                return SyncReport(skipped=SKIPPED_OFFLINE)

            return self._perform_sync()
        finally:
            self._sync_lock.release()

    def _perform_sync(self) -> SyncReport:
        report = SyncReport(started_at=datetime.now())
        snapshot = self.queue.snapshot()

        self._state.is_syncing = True
        self._state.last_sync = report.started_at
        self._state.progress = 0.0
        self._notify_callbacks()

        try:
            if snapshot:
                with LogContext(logger, f"Syncing {len(snapshot)} pending operations"):
                    self._replay(snapshot, report)
        finally:
            # Anything applied remotely must leave the queue, even if the pass broke off
            removed = self.queue.remove(report.succeeded)
            if removed != len(report.succeeded):
                logger.warning(
                    f"Expected to remove {len(report.succeeded)} synced operations, removed {removed}"
                )
            self._prune_failures()

            report.finished_at = datetime.now()
            self._state.total_synced += len(report.succeeded)
            self._state.failed_count = report.failed_count
            self._state.pending_count = self.queue.pending_count
            self._state.last_report = report
            if report.ok:
                self._state.last_sync_success = report.finished_at
            self._state.is_syncing = False
            self._state.progress = 0.0
            self._notify_callbacks()

        logger.info(
            f"Sync complete: {len(report.succeeded)} success, "
            f"{report.failed_count} failed, {len(report.held)} held"
        )
        return report

    def _replay(self, snapshot: List[PendingOperation], report: SyncReport) -> None:
        blocked: Set[Tuple[str, str]] = set()
        now = self._clock()

        for index, op in enumerate(snapshot, start=1):
            ref = op.record_ref(self.queue.key_field(op.resource))

            if ref is not None and ref in blocked:
                logger.info(f"Holding {op.describe()} ({op.id}): earlier change to the same record is pending")
                report.held.append(op.id)
            elif self._is_backing_off(op.id, now):
                logger.debug(f"Deferring {op.describe()} ({op.id}) until its backoff expires")
                report.held.append(op.id)
                if ref is not None:
                    blocked.add(ref)
            else:
                report.attempted += 1
                error = self._apply(op)
                if error is None:
                    report.succeeded.append(op.id)
                    self._failures.pop(op.id, None)
                else:
                    report.failed[op.id] = error
                    self._record_failure(op.id, error)
                    if ref is not None:
                        blocked.add(ref)

            self._state.progress = index / len(snapshot) * 100
            self._notify_callbacks()

    def _apply(self, op: PendingOperation) -> Optional[str]:
        """Replay one operation. Returns None on success, else the error text."""
        try:
            result = self._dispatch(op)
            if not isinstance(result, ApplyResult):
                result = ApplyResult.ok(result) if result else ApplyResult.fail("remote store reported failure")
            if result.success:
                return None
            raise RemoteApplyError(
                result.error or "remote store reported failure",
                operation_id=op.id,
                resource=op.resource,
                kind=op.kind.value,
            )
        except RemoteApplyError as e:
            logger.error(f"Failed to sync {op.describe()} ({op.id}): {e.message}", extra={"details": e.details})
            return e.message
        except Exception as e:
            logger.error(f"Unexpected error syncing {op.describe()} ({op.id}): {e}", exc_info=True)
            return str(e) or e.__class__.__name__

    def _dispatch(self, op: PendingOperation) -> Any:
        key_field = self.queue.key_field(op.resource)
        payload = dict(op.payload)

        if op.kind is OperationKind.INSERT:
            return self.remote.create(op.resource, payload)
        if op.kind is OperationKind.UPDATE:
            return self.remote.update(op.resource, payload[key_field], payload, key_field)
        if op.kind is OperationKind.DELETE:
            return self.remote.delete(op.resource, payload[key_field], key_field)

        raise RemoteApplyError(f"Unsupported operation kind: {op.kind}", operation_id=op.id)

    # =========================================================================
    # RETRY BOOKKEEPING
    # =========================================================================

    def _is_backing_off(self, op_id: str, now: float) -> bool:
        record = self._failures.get(op_id)
        return record is not None and record.next_attempt_at > now

    def _record_failure(self, op_id: str, error: str) -> None:
        record = self._failures.setdefault(op_id, FailureRecord())
        record.attempts += 1
        record.last_error = error

        base = self.config.retry_backoff_base
        if base > 0:
            try:
                delay = min(base ** record.attempts, self.config.retry_backoff_max)
            except OverflowError:
                delay = self.config.retry_backoff_max
            record.next_attempt_at = self._clock() + delay

    def _prune_failures(self) -> None:
        """Forget retry records of operations no longer in the queue."""
        queued = {op.id for op in self.queue.pending}
        for op_id in [op_id for op_id in self._failures if op_id not in queued]:
            del self._failures[op_id]

    # =========================================================================
    # CALLBACKS & DISPLAY
    # =========================================================================

    def register_callback(self, callback: Callable[[SyncState], None]) -> None:
        """Register a callback for sync state changes."""
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[SyncState], None]) -> None:
        """Remove a registered callback."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self) -> None:
        for callback in list(self._callbacks):
            try:
                callback(self._state)
            except Exception as e:
                logger.error(f"Error in sync callback: {e}")

    def get_status_display(self) -> Dict[str, Any]:
        """Get sync status for UI display."""
        report = self._state.last_report
        return {
            "is_syncing": self._state.is_syncing,
            "progress": round(self._state.progress),
            "last_sync": self._state.last_sync.isoformat() if self._state.last_sync else None,
            "last_success": self._state.last_sync_success.isoformat() if self._state.last_sync_success else None,
            "pending_count": self.queue.pending_count,
            "failed_count": self._state.failed_count,
            "total_synced": self._state.total_synced,
            "last_result": report.summary() if report else None,
        }
