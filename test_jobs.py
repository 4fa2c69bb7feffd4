"""
SyncJob, sync status and change log storage tests.
"""

from datetime import datetime, timedelta

import pytest


START = datetime(2024, 5, 1)
END = datetime(2024, 5, 31, 23, 59, 59)


class TestSyncJobStore:

    @pytest.fixture
    def jobs(self, temp_db):
        from storage.jobs import SyncJobStore
        return SyncJobStore(temp_db)

    def test_create_pending_job(self, jobs):
        from core.models.mirror import JobStatus

        job, reused = jobs.create_or_reuse("invoice", START, END, created_by="user-1")

        assert reused is False
        assert job.status == JobStatus.PENDING
        assert job.created_by == "user-1"
        assert job.progress.created == 0
        assert job.start_date == START and job.end_date == END

    def test_active_job_for_same_range_is_reused(self, jobs):
        first, _ = jobs.create_or_reuse("invoice", START, END)
        second, reused = jobs.create_or_reuse("invoice", START, END)

        assert reused is True
        assert second.id == first.id

    def test_different_range_or_entity_gets_new_job(self, jobs):
        first, _ = jobs.create_or_reuse("invoice", START, END)
        other_range, reused_range = jobs.create_or_reuse("invoice", START, END - timedelta(days=1))
        other_entity, reused_entity = jobs.create_or_reuse("payment", START, END)

        assert not reused_range and not reused_entity
        assert len({first.id, other_range.id, other_entity.id}) == 3

    def test_old_active_job_expires(self, jobs):
        from core.models.mirror import JobStatus
        from storage.db import utcnow

        old, _ = jobs.create_or_reuse("invoice", START, END, now=utcnow() - timedelta(minutes=45))
        fresh, reused = jobs.create_or_reuse("invoice", START, END, reuse_minutes=30)

        assert reused is False
        assert fresh.id != old.id
        expired = jobs.get(old.id)
        assert expired.status == JobStatus.FAILED
        assert expired.error_message == "Job expired without completing"

    def test_long_running_job_with_recent_progress_is_reused(self, jobs):
        from core.models.mirror import JobStatus
        from storage.jobs import JobProgress
        from storage.db import utcnow

        old, _ = jobs.create_or_reuse("invoice", START, END, now=utcnow() - timedelta(minutes=45))
        jobs.mark_running(old.id)
        jobs.update_progress(old.id, JobProgress(created=500, total=500, next_skip=500))

        again, reused = jobs.create_or_reuse("invoice", START, END, reuse_minutes=30)

        assert reused is True
        assert again.id == old.id
        assert jobs.get(old.id).status == JobStatus.RUNNING
        assert jobs.get(old.id).progress.next_skip == 500

    def test_completed_job_not_reused(self, jobs):
        from storage.jobs import JobProgress

        first, _ = jobs.create_or_reuse("invoice", START, END)
        jobs.mark_running(first.id)
        jobs.complete(first.id, JobProgress(created=3, total=3))
        second, reused = jobs.create_or_reuse("invoice", START, END)

        assert reused is False
        assert second.id != first.id

    def test_lifecycle(self, jobs):
        from core.models.mirror import JobStatus
        from storage.jobs import JobProgress

        job, _ = jobs.create_or_reuse("invoice", START, END)
        assert jobs.mark_running(job.id)
        running = jobs.get(job.id)
        assert running.status == JobStatus.RUNNING
        assert running.started_at is not None

        status = jobs.update_progress(job.id, JobProgress(created=2, total=5, next_skip=2))
        assert status == JobStatus.RUNNING
        assert jobs.get(job.id).progress.next_skip == 2

        assert jobs.complete(job.id, JobProgress(created=5, total=5))
        done = jobs.get(job.id)
        assert done.status == JobStatus.COMPLETED
        assert done.progress.done is True
        assert done.completed_at is not None

    def test_terminal_status_is_final(self, jobs):
        from core.models.mirror import JobStatus
        from storage.jobs import JobProgress

        job, _ = jobs.create_or_reuse("invoice", START, END)
        jobs.mark_running(job.id)
        assert jobs.cancel(job.id)

        assert jobs.mark_running(job.id) is False
        assert jobs.complete(job.id, JobProgress()) is False
        assert jobs.cancel(job.id) is False
        assert jobs.update_progress(job.id, JobProgress(created=9)) == JobStatus.FAILED

        stored = jobs.get(job.id)
        assert stored.status == JobStatus.FAILED
        assert stored.error_message == "Cancelled by user"
        assert stored.progress.created == 0

    def test_progress_not_saved_while_pending(self, jobs):
        from core.models.mirror import JobStatus
        from storage.jobs import JobProgress

        job, _ = jobs.create_or_reuse("invoice", START, END)

        assert jobs.update_progress(job.id, JobProgress(created=1)) == JobStatus.PENDING
        assert jobs.get(job.id).progress.created == 0

    def test_stalled_detection(self, jobs):
        from storage.db import utcnow

        job, _ = jobs.create_or_reuse("invoice", START, END)
        jobs.mark_running(job.id)
        running = jobs.get(job.id)

        assert not running.is_stalled(30)
        assert running.is_stalled(30, now=utcnow() + timedelta(minutes=31))

        jobs.cancel(job.id)
        assert not jobs.get(job.id).is_stalled(30, now=utcnow() + timedelta(minutes=31))

    def test_list_jobs_by_status(self, jobs):
        from core.models.mirror import JobStatus

        a, _ = jobs.create_or_reuse("invoice", START, END)
        b, _ = jobs.create_or_reuse("payment", START, END)
        jobs.cancel(b.id)

        assert [j.id for j in jobs.list_jobs(JobStatus.PENDING)] == [a.id]
        assert [j.id for j in jobs.list_jobs(JobStatus.FAILED)] == [b.id]
        assert len(jobs.list_jobs(limit=1)) == 1

    def test_workflow_id_recorded(self, jobs):
        job, _ = jobs.create_or_reuse("invoice", START, END)
        jobs.set_workflow_id(job.id, "date-range-invoice-job-1")

        assert jobs.get(job.id).to_dict()["workflow_id"] == "date-range-invoice-job-1"


class TestSyncStatusStore:

    @pytest.fixture
    def status(self, temp_db):
        from storage.sync_status import SyncStatusStore
        return SyncStatusStore(temp_db, max_errors=2)

    def test_defaults_for_unknown_entity(self, status):
        row = status.get("invoice")
        assert row.sync_enabled is True
        assert row.lookback_minutes is None
        assert status.lookback_minutes("invoice", 10000) == 10000

    def test_lookback_configuration(self, status):
        status.set_lookback("invoice", 120)
        assert status.lookback_minutes("invoice", 10000) == 120

        with pytest.raises(ValueError):
            status.set_lookback("invoice", 0)

    def test_completion_caps_errors(self, status):
        status.mark_started("payment")
        status.mark_completed("payment", created=1, updated=2, errors=["a", "b", "c"])

        row = status.get("payment")
        assert row.status == "completed_with_errors"
        assert row.records_synced == 3
        assert row.errors == ["a", "b"]
        assert row.last_error == "c"

    def test_disable_keeps_other_columns(self, status):
        status.set_lookback("customer", 60)
        status.set_enabled("customer", False)

        row = status.get("customer")
        assert row.sync_enabled is False
        assert row.lookback_minutes == 60
        assert [s.entity_type for s in status.list_all()] == ["customer"]


class TestChangeLog:

    def test_status_transitions_classified(self):
        from core.audit.events import SyncChangeType, classify_status_change

        assert classify_status_change("Open", "Open") is None
        assert classify_status_change("Open", "Closed") == SyncChangeType.CLOSED
        assert classify_status_change("Closed", "Open") == SyncChangeType.REOPENED
        assert classify_status_change("Open", "On Hold") == SyncChangeType.STATUS_CHANGED

    def test_record_upsert_events(self):
        from core.audit.events import ChangeLogger, InMemoryChangeLogBackend, SyncChangeType

        backend = InMemoryChangeLogBackend()
        changes = ChangeLogger([backend])
        changes.record_upsert("invoice", "Invoice:000001", created=True, new_status="Open")
        changes.record_upsert("invoice", "Invoice:000001", created=False, old_status="Open", new_status="Open")
        changes.record_upsert("invoice", "Invoice:000001", created=False, old_status="Open", new_status="Closed")

        kinds = [e.change_type for e in changes.query("invoice")]
        assert kinds == [SyncChangeType.CLOSED, SyncChangeType.UPDATED, SyncChangeType.CREATED]

    def test_sqlite_backend_round_trip(self, temp_db):
        from core.audit.events import ChangeLogger, SqliteChangeLogBackend, SyncChangeType

        changes = ChangeLogger([SqliteChangeLogBackend(temp_db)])
        changes.record_upsert(
            "payment", "Payment:000010", created=False, old_status="Open", new_status="Closed",
            sync_source="reconciliation", details={"before": {"status": "Open"}},
        )

        event = changes.query(entity_key="Payment:000010")[0]
        assert event.change_type == SyncChangeType.CLOSED
        assert event.details == {"before": {"status": "Open"}}

    def test_failing_backend_does_not_raise(self):
        from core.audit.events import ChangeLogBackend, ChangeLogger, InMemoryChangeLogBackend

        class BrokenBackend(ChangeLogBackend):
            def log(self, event):
                raise RuntimeError("disk full")

            def query(self, entity_type=None, entity_key=None, limit=100):
                return []

        memory = InMemoryChangeLogBackend()
        changes = ChangeLogger([BrokenBackend(), memory])
        changes.record_upsert("invoice", "Invoice:000001", created=True)

        assert len(memory.query()) == 1

    def test_engine_logs_status_change(self, runtime, fake_erp):
        import asyncio
        from conftest import invoice
        from core.audit.events import SyncChangeType

        fake_erp.entities["Invoice"] = [invoice("000001", status="Open")]
        engine = runtime.engine("invoice")
        asyncio.run(engine.run_incremental(60))
        fake_erp.entities["Invoice"] = [invoice("000001", status="Closed")]
        asyncio.run(engine.run_incremental(60))

        events = runtime.change_logger.query(entity_type="invoice")
        assert [e.change_type for e in events] == [SyncChangeType.CLOSED, SyncChangeType.CREATED]
        assert events[0].entity_key == "Invoice:000001"
