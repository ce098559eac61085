# =============================================================================
# tests/unit/test_sync_engine.py
# Unit Tests for Queue Replay
# =============================================================================

import threading

import pytest

from site_core.offline.config import OfflineSyncConfig
from site_core.offline.connection_manager import ConnectionManager
from site_core.offline.mutation_queue import MutationQueue
from site_core.offline.sync_engine import (
    SKIPPED_ALREADY_SYNCING,
    SKIPPED_OFFLINE,
    SyncEngine,
    SyncReport,
)
from tests.conftest import CountingStorage, FakeRemoteStore


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class TestSyncPass:
    """Test a single replay pass"""

    def test_all_succeed(self, engine, queue, remote):
        ids = [queue.enqueue("plots", "update", {"id": i, "status": "complete"}) for i in range(3)]

        report = engine.sync()

        assert report.ok
        assert report.succeeded == ids
        assert report.attempted == 3
        assert queue.pending_count == 0
        assert remote.call_count == 3

    def test_empty_queue(self, engine, remote):
        report = engine.sync()

        assert report.ok
        assert report.attempted == 0
        assert remote.call_count == 0
        assert engine.state.last_sync is not None

    def test_partial_failure_keeps_failed_entry(self, engine, queue, remote):
        """Test that exactly the failed entry remains, with its original id"""
        ids = [queue.enqueue("plots", "update", {"id": i}) for i in range(3)]
        remote.fail_on = {2}

        report = engine.sync()

        assert not report.ok
        assert report.succeeded == [ids[0], ids[2]]
        assert list(report.failed) == [ids[1]]
        assert [op.id for op in queue.pending] == [ids[1]]
        assert report.summary() == "1 change could not be synced"

    def test_exception_is_treated_as_failure(self, engine, queue, remote):
        ids = [queue.enqueue("plots", "delete", {"id": i}) for i in range(3)]
        remote.raise_on = {1}

        report = engine.sync()

        assert "connection reset" in report.failed[ids[0]]
        assert report.succeeded == ids[1:]
        assert engine.is_syncing is False

    def test_falsy_plain_return_is_failure(self, queue, online_connection):
        class BoolRemote:
            def create(self, resource, payload):
                return False

            def update(self, resource, key, payload, key_field):
                return True

            def delete(self, resource, key, key_field):
                return True

        engine = SyncEngine(queue, BoolRemote(), online_connection)
        failing = queue.enqueue("projects", "insert", {"name": "Riverside"})
        queue.enqueue("projects", "update", {"id": 1, "name": "Riverside"})

        report = engine.sync()

        assert list(report.failed) == [failing]
        assert len(report.succeeded) == 1

    def test_replays_in_creation_order(self, engine, queue, remote):
        queue.enqueue("plots", "update", {"id": 1, "status": "in_progress"})
        queue.enqueue("plots", "update", {"id": 1, "status": "complete"})

        engine.sync()

        assert [call[3]["status"] for call in remote.calls] == ["in_progress", "complete"]

    def test_dispatch_by_kind(self, engine, queue, remote):
        queue.enqueue("projects", "insert", {"name": "Riverside"})
        queue.enqueue("plots", "update", {"id": 7, "status": "complete"})
        queue.enqueue("levels", "delete", {"id": 3})

        engine.sync()

        assert remote.calls == [
            ("create", "projects", None, {"name": "Riverside"}),
            ("update", "plots", 7, {"id": 7, "status": "complete"}),
            ("delete", "levels", 3, None),
        ]

    def test_custom_key_field(self, online_connection, remote):
        from site_core.offline.operations import ResourceSchema

        schemas = {"assignments": ResourceSchema("assignments", key_field="assignment_id")}
        queue = MutationQueue(CountingStorage(), schemas=schemas)
        engine = SyncEngine(queue, remote, online_connection)
        queue.enqueue("assignments", "delete", {"assignment_id": "a-9"})

        engine.sync()

        assert remote.calls == [("delete", "assignments", "a-9", None)]
        assert remote.key_fields == ["assignment_id"]

    def test_successes_removed_in_one_write(self, engine, queue, storage):
        for i in range(3):
            queue.enqueue("plots", "update", {"id": i})
        saves_before = storage.saves

        engine.sync()

        assert storage.saves == saves_before + 1

    def test_nothing_written_when_everything_fails(self, engine, queue, remote, storage):
        queue.enqueue("plots", "update", {"id": 1})
        remote.fail_on = {1}
        saves_before = storage.saves

        engine.sync()

        assert storage.saves == saves_before

    def test_failed_entries_retried_next_pass(self, engine, queue, remote):
        op_id = queue.enqueue("plots", "update", {"id": 1})
        remote.fail_on = {1}

        engine.sync()
        report = engine.sync()

        assert report.succeeded == [op_id]
        assert queue.pending_count == 0
        assert engine.failure_info(op_id) is None


class TestSkipping:
    """Test offline and re-entrant calls"""

    def test_offline_skips(self, queue, remote, connection):
        engine = SyncEngine(queue, remote, connection)
        queue.enqueue("plots", "update", {"id": 1})

        report = engine.sync()

        assert report.skipped == SKIPPED_OFFLINE
        assert report.summary() == "Sync skipped: offline"
        assert remote.call_count == 0
        assert queue.pending_count == 1

    def test_reentrant_call_is_noop(self, engine, queue, remote):
        """Test that sync() from inside a running pass returns immediately"""
        for i in range(2):
            queue.enqueue("plots", "update", {"id": i})
        inner_reports = []
        remote.hooks[1] = lambda: inner_reports.append(engine.sync())

        report = engine.sync()

        assert inner_reports[0].skipped == SKIPPED_ALREADY_SYNCING
        assert remote.call_count == 2
        assert len(report.succeeded) == 2

    def test_concurrent_call_from_other_thread(self, engine, queue, remote):
        queue.enqueue("plots", "update", {"id": 1})
        entered = threading.Event()
        release = threading.Event()

        def block():
            entered.set()
            release.wait(timeout=5)

        remote.hooks[1] = block
        worker = threading.Thread(target=engine.sync)
        worker.start()
        try:
            assert entered.wait(timeout=5)
            assert engine.is_syncing
            assert engine.sync().skipped == SKIPPED_ALREADY_SYNCING
        finally:
            release.set()
            worker.join(timeout=5)

        assert remote.call_count == 1
        assert queue.pending_count == 0
        assert not engine.is_syncing

    def test_entries_queued_mid_pass_wait_for_next_pass(self, engine, queue, remote):
        queue.enqueue("plots", "update", {"id": 1})
        late_ids = []
        remote.hooks[1] = lambda: late_ids.append(queue.enqueue("plots", "update", {"id": 2}))

        report = engine.sync()

        assert remote.call_count == 1
        assert [op.id for op in queue.pending] == late_ids
        assert late_ids[0] not in report.succeeded


class TestRecordBarrier:
    """Test holding later edits of a record that failed"""

    def test_later_edit_of_failed_record_is_held(self, engine, queue, remote):
        first = queue.enqueue("plots", "update", {"id": 1, "status": "in_progress"})
        second = queue.enqueue("plots", "update", {"id": 1, "status": "complete"})
        other = queue.enqueue("plots", "update", {"id": 2, "status": "complete"})
        remote.fail_on = {1}

        report = engine.sync()

        assert list(report.failed) == [first]
        assert report.held == [second]
        assert report.succeeded == [other]
        assert [op.id for op in queue.pending] == [first, second]
        assert report.summary() == "2 changes could not be synced"

    def test_barrier_is_per_resource(self, engine, queue, remote):
        queue.enqueue("plots", "update", {"id": 1})
        levels = queue.enqueue("levels", "update", {"id": 1})
        remote.fail_on = {1}

        report = engine.sync()

        assert report.succeeded == [levels]

    def test_inserts_without_key_are_never_held(self, engine, queue, remote):
        queue.enqueue("projects", "insert", {"name": "A"})
        second = queue.enqueue("projects", "insert", {"name": "B"})
        remote.fail_on = {1}

        report = engine.sync()

        assert report.succeeded == [second]
        assert report.held == []


class TestBackoff:
    """Test optional exponential backoff"""

    def test_no_backoff_by_default(self, engine, queue, remote):
        op_id = queue.enqueue("plots", "update", {"id": 1})
        remote.fail_on = {1, 2}

        engine.sync()
        report = engine.sync()

        assert report.attempted == 1
        assert engine.failure_info(op_id).attempts == 2

    def test_backoff_defers_until_due(self, queue, remote, online_connection):
        clock = FakeClock()
        config = OfflineSyncConfig(retry_backoff_base=2.0, retry_backoff_max=60.0)
        engine = SyncEngine(queue, remote, online_connection, config, clock=clock)
        op_id = queue.enqueue("plots", "update", {"id": 1})
        follow_up = queue.enqueue("plots", "update", {"id": 1, "status": "complete"})
        remote.fail_on = {1}

        engine.sync()
        assert engine.failure_info(op_id).next_attempt_at == pytest.approx(1002.0)

        deferred = engine.sync()
        assert deferred.attempted == 0
        assert deferred.held == [op_id, follow_up]
        assert remote.call_count == 1

        clock.now += 2.5
        report = engine.sync()
        assert report.succeeded == [op_id, follow_up]

    def test_backoff_is_capped(self, queue, remote, online_connection):
        clock = FakeClock()
        config = OfflineSyncConfig(retry_backoff_base=10.0, retry_backoff_max=30.0)
        engine = SyncEngine(queue, remote, online_connection, config, clock=clock)
        op_id = queue.enqueue("plots", "update", {"id": 1})
        remote.fail_on = {1, 2}

        engine.sync()
        clock.now += 10
        engine.sync()

        record = engine.failure_info(op_id)
        assert record.attempts == 2
        assert record.next_attempt_at == pytest.approx(clock.now + 30.0)

    def test_backoff_survives_very_long_failure_streak(self, queue, remote, online_connection):
        """Test that the delay stays at the cap once base ** attempts no longer fits a float"""
        clock = FakeClock()
        config = OfflineSyncConfig(retry_backoff_base=2.0, retry_backoff_max=60.0)
        engine = SyncEngine(queue, remote, online_connection, config, clock=clock)
        stuck = queue.enqueue("plots", "update", {"id": 1})
        remote.fail_keys = {1}
        for _ in range(1100):
            engine.sync()
            clock.now += 61

        fine = queue.enqueue("plots", "update", {"id": 2})
        report = engine.sync()

        assert report.succeeded == [fine]
        assert [op.id for op in queue.pending] == [stuck]
        record = engine.failure_info(stuck)
        assert record.attempts == 1101
        assert record.next_attempt_at == pytest.approx(clock.now + 60.0)
        assert not engine.is_syncing


class TestInterruptedPass:
    """Test bookkeeping when a pass stops early or the queue changes under it"""

    def test_applied_entries_leave_queue_when_pass_raises(self, engine, queue, remote, monkeypatch):
        applied = queue.enqueue("plots", "update", {"id": 1})
        broken = queue.enqueue("plots", "update", {"id": 2})
        remote.fail_keys = {2}

        def explode(op_id, error):
            raise RuntimeError("bookkeeping failed")

        monkeypatch.setattr(engine, "_record_failure", explode)

        with pytest.raises(RuntimeError, match="bookkeeping failed"):
            engine.sync()

        assert [op.id for op in queue.pending] == [broken]
        assert not engine.is_syncing
        assert engine.state.total_synced == 1

        monkeypatch.undo()
        remote.fail_keys = set()
        report = engine.sync()

        assert report.succeeded == [broken]
        assert [call[2] for call in remote.calls] == [1, 2, 2]
        assert applied not in report.succeeded

    def test_failure_records_dropped_after_clear(self, engine, queue, remote):
        op_id = queue.enqueue("plots", "update", {"id": 1})
        remote.fail_on = {1}
        engine.sync()
        assert engine.failure_info(op_id).attempts == 1

        queue.clear()
        engine.sync()

        assert engine.failure_info(op_id) is None

    def test_failure_records_kept_for_queued_entries(self, engine, queue, remote):
        kept = queue.enqueue("plots", "update", {"id": 1})
        dropped = queue.enqueue("plots", "update", {"id": 2})
        remote.fail_keys = {1, 2}
        engine.sync()

        queue.remove([dropped])
        engine.sync()

        assert engine.failure_info(kept).attempts == 2
        assert engine.failure_info(dropped) is None


class TestAutoSync:
    """Test the reconnect trigger"""

    def test_sync_on_offline_to_online(self, queue, remote, connection):
        engine = SyncEngine(queue, remote, connection)
        queue.enqueue("plots", "update", {"id": 1})
        engine.start()

        connection.report(True)

        assert queue.pending_count == 0
        assert remote.call_count == 1

    def test_subscription_snapshot_does_not_sync(self, queue, remote, online_connection):
        engine = SyncEngine(queue, remote, online_connection)
        queue.enqueue("plots", "update", {"id": 1})

        engine.start()

        assert remote.call_count == 0

    def test_reconnect_with_empty_queue_does_nothing(self, queue, remote, connection):
        engine = SyncEngine(queue, remote, connection)
        engine.start()

        connection.report(True)

        assert engine.state.last_sync is None

    def test_going_offline_does_not_sync(self, queue, remote, online_connection):
        engine = SyncEngine(queue, remote, online_connection)
        queue.enqueue("plots", "update", {"id": 1})
        engine.start()

        online_connection.report(False)

        assert remote.call_count == 0

    def test_stop_unsubscribes(self, queue, remote, connection):
        engine = SyncEngine(queue, remote, connection)
        queue.enqueue("plots", "update", {"id": 1})
        engine.start()
        engine.stop()

        connection.report(True)

        assert not engine.is_running
        assert remote.call_count == 0
        assert connection.subscriber_count == 0

    def test_start_is_idempotent(self, queue, remote, connection):
        engine = SyncEngine(queue, remote, connection)
        engine.start()
        engine.start()

        assert connection.subscriber_count == 1


class TestStateAndCallbacks:
    """Test observable sync state"""

    def test_progress_reported_per_entry(self, engine, queue):
        for i in range(4):
            queue.enqueue("plots", "update", {"id": i})
        seen = []
        engine.register_callback(lambda state: seen.append((state.is_syncing, state.progress)))

        engine.sync()

        assert seen[0] == (True, 0.0)
        assert [progress for _, progress in seen[1:5]] == [25.0, 50.0, 75.0, 100.0]
        assert seen[-1] == (False, 0.0)

    def test_failing_callback_is_logged(self, engine, queue):
        queue.enqueue("plots", "update", {"id": 1})

        def broken(state):
            raise RuntimeError("widget gone")

        engine.register_callback(broken)
        report = engine.sync()

        assert report.ok

    def test_unregister_callback(self, engine, queue):
        seen = []
        engine.register_callback(seen.append)
        engine.unregister_callback(seen.append)

        engine.sync()

        assert seen == []

    def test_state_after_pass(self, engine, queue, remote):
        queue.enqueue("plots", "update", {"id": 1})
        queue.enqueue("plots", "update", {"id": 2})
        remote.fail_on = {2}

        report = engine.sync()
        state = engine.state

        assert state.pending_count == 1
        assert state.failed_count == 1
        assert state.total_synced == 1
        assert state.last_report is report
        assert state.last_sync_success is None

    def test_status_display(self, engine, queue):
        queue.enqueue("plots", "update", {"id": 1})
        engine.sync()

        display = engine.get_status_display()

        assert display["is_syncing"] is False
        assert display["pending_count"] == 0
        assert display["total_synced"] == 1
        assert display["last_result"] == "Synced 1 pending changes"
        assert display["last_success"] is not None


class TestSyncReport:
    """Test SyncReport summaries"""

    def test_already_syncing_summary(self):
        report = SyncReport(skipped=SKIPPED_ALREADY_SYNCING)
        assert not report.ok
        assert report.summary() == "Sync skipped: a sync is already running"

    def test_remaining_counts_failed_and_held(self):
        report = SyncReport(failed={"a": "boom"}, held=["b", "c"])
        assert report.remaining == 3
        assert report.failed_count == 1


def test_fake_remote_store_matches_protocol():
    from site_core.offline.remote_store import RemoteStore

    assert isinstance(FakeRemoteStore(), RemoteStore)
