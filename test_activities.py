"""
Temporal Activity Tests

Activities are executed in temporalio's ActivityEnvironment (no server);
each builds its own SyncRuntime, which is patched to the test runtime.
"""

import asyncio
from datetime import datetime
from unittest.mock import patch

from temporalio.testing import ActivityEnvironment

from conftest import customer, invoice, payment


def _run(activity_fn, arg):
    return asyncio.run(ActivityEnvironment().run(activity_fn, arg))


class TestSyncActivities:

    def test_incremental_activity(self, runtime, fake_erp):
        from activities.sync import IncrementalSyncInput, run_incremental_sync

        fake_erp.entities["Customer"] = [customer("C001"), customer("C002")]

        with patch("activities.sync.SyncRuntime", return_value=runtime):
            result = _run(run_incremental_sync, IncrementalSyncInput(entity_type="customers", lookback_minutes=60))

        assert result["success"] is True
        assert result["created"] == 2
        assert result["entityType"] == "customer"

    def test_date_range_chunk_completes_job(self, runtime, fake_erp):
        from activities.sync import DateRangeChunkInput, run_date_range_chunk
        from core.models.mirror import JobStatus

        fake_erp.entities["Invoice"] = [invoice("000001"), invoice("000002"), invoice("000003")]
        job, _ = runtime.jobs.create_or_reuse("invoice", datetime(2024, 5, 1), datetime(2024, 5, 31, 23, 59, 59))

        with patch("activities.sync.SyncRuntime", return_value=runtime):
            output = _run(run_date_range_chunk, DateRangeChunkInput(
                entity_type="invoice", start_date="2024-05-01", end_date="2024-05-31", job_id=job.id,
            ))

        assert output.done is True
        assert output.cancelled is False
        assert output.created == 3
        assert runtime.jobs.get(job.id).status == JobStatus.COMPLETED

    def test_single_document_activity(self, runtime, fake_erp):
        from activities.sync import SingleDocumentInput, sync_single_document

        fake_erp.add_payment(payment("000010", history=[]), listed=False)

        with patch("activities.sync.SyncRuntime", return_value=runtime):
            result = _run(sync_single_document, SingleDocumentInput(entity_type="payment", key=["Payment", "10"]))

        assert result["created"] == 1
        assert result["mode"] == "webhook"

    def test_fail_job_activity_is_noop_when_finished(self, runtime):
        from activities.sync import FailJobInput, fail_sync_job
        from core.models.mirror import JobStatus

        job, _ = runtime.jobs.create_or_reuse("invoice", datetime(2024, 5, 1), datetime(2024, 5, 2))

        with patch("activities.sync.SyncRuntime", return_value=runtime):
            assert _run(fail_sync_job, FailJobInput(job_id=job.id, error_message="worker gave up")) is True
            assert _run(fail_sync_job, FailJobInput(job_id=job.id, error_message="again")) is False

        stored = runtime.jobs.get(job.id)
        assert stored.status == JobStatus.FAILED
        assert stored.error_message == "worker gave up"

    def test_master_sync_activity(self, runtime, fake_erp):
        from activities.sync import MasterSyncInput, run_master_sync

        fake_erp.entities["Invoice"] = [invoice("000001")]

        with patch("activities.sync.SyncRuntime", return_value=runtime):
            summary = _run(run_master_sync, MasterSyncInput())

        assert summary["success"] is True
        assert summary["totalCreated"] == 1


class TestReconcileActivities:

    def test_verify_payment_dates_activity(self, runtime, fake_erp):
        from activities.reconcile import VerifyPaymentDatesInput, verify_payment_dates

        fake_erp.add_payment(payment("000010"))

        with patch("activities.reconcile.SyncRuntime", return_value=runtime):
            report = _run(verify_payment_dates, VerifyPaymentDatesInput(start_date="2024-05-01", end_date="2024-05-31"))

        assert report["inAcumaticaNotDb"] == ["Payment:000010"]
        assert report["fixMode"] is False

    def test_sync_health_activity_uses_default_sample(self, runtime):
        from activities.reconcile import SyncHealthInput, verify_sync_health

        with patch("activities.reconcile.SyncRuntime", return_value=runtime):
            report = _run(verify_sync_health, SyncHealthInput())

        assert report["healthStatus"] == "no_data"


class TestWorkflowRegistry:

    def test_worker_registers_everything(self):
        from activities import ALL_ACTIVITIES
        from workflows import ALL_WORKFLOWS

        assert len(ALL_ACTIVITIES) == 8
        assert len(ALL_WORKFLOWS) == 6
        assert len({a.__name__ for a in ALL_ACTIVITIES}) == 8

    def test_non_retryable_errors_match_exception_names(self):
        from connectors.acumatica import acu_client
        from workflows.sync_workflow import NON_RETRYABLE_ERRORS

        for name in NON_RETRYABLE_ERRORS:
            assert isinstance(getattr(acu_client, name), type)

    def test_workflow_id_for_job(self):
        from api.services.background import workflow_id_for

        assert workflow_id_for("invoice", 42) == "date-range-invoice-job-42"
