"""
Acumatica Sync Workflows

- IncrementalSyncWorkflow: one entity, recently modified records
- MasterSyncWorkflow: customers, invoices and payments in turn
- DateRangeSyncWorkflow: drives a SyncJob chunk by chunk until it is done
  or cancelled; each chunk is bounded by a soft deadline and resumes from
  the offset stored on the job
- SingleDocumentWorkflow: webhook-triggered single document resync
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional, Dict, Any, List

from temporalio import workflow
from temporalio.common import RetryPolicy
from temporalio.exceptions import ActivityError

with workflow.unsafe.imports_passed_through():
    from activities.sync import (
        run_incremental_sync,
        run_date_range_chunk,
        run_master_sync,
        sync_single_document,
        fail_sync_job,
        IncrementalSyncInput,
        DateRangeChunkInput,
        MasterSyncInput,
        SingleDocumentInput,
        FailJobInput,
    )


# Errors a retry cannot fix
NON_RETRYABLE_ERRORS = [
    "AuthenticationError",
    "LoginLimitError",
    "ConfigurationError",
    "NotFoundError",
]

# Chunks per workflow run before continue-as-new keeps history bounded
MAX_CHUNKS_PER_RUN = 50


def sync_activity_options(timeout: timedelta = timedelta(minutes=10)) -> Dict[str, Any]:
    return {
        "start_to_close_timeout": timeout,
        "retry_policy": RetryPolicy(
            maximum_attempts=3,
            initial_interval=timedelta(seconds=5),
            maximum_interval=timedelta(minutes=1),
            backoff_coefficient=2.0,
            non_retryable_error_types=NON_RETRYABLE_ERRORS,
        ),
    }


# Marking a job failed is a single DB write
JOB_ACTIVITY_OPTIONS = {
    "start_to_close_timeout": timedelta(seconds=30),
    "retry_policy": RetryPolicy(
        maximum_attempts=3,
        initial_interval=timedelta(seconds=1),
        backoff_coefficient=2.0,
    ),
}


# =============================================================================
# Workflow Input/Output
# =============================================================================

@dataclass
class DateRangeSyncInput:
    """Input for DateRangeSyncWorkflow"""
    entity_type: str
    start_date: str
    end_date: str
    job_id: int
    deadline_seconds: Optional[float] = None
    tenant_id: Optional[str] = None


@dataclass
class DateRangeSyncOutput:
    """Output from DateRangeSyncWorkflow"""
    job_id: int
    status: str
    chunks: int = 0
    created: int = 0
    updated: int = 0
    total_fetched: int = 0
    total_errors: int = 0


@dataclass
class SingleDocumentSyncInput:
    """Input for SingleDocumentWorkflow"""
    entity_type: str
    key: List[str] = field(default_factory=list)
    source: str = "webhook"
    tenant_id: Optional[str] = None


# =============================================================================
# Workflows
# =============================================================================

@workflow.defn
class IncrementalSyncWorkflow:
    """Incremental sync of one entity."""

    @workflow.run
    async def run(self, input: IncrementalSyncInput) -> Dict[str, Any]:
        workflow.logger.info(f"Incremental sync for {input.entity_type}")
        return await workflow.execute_activity(
            run_incremental_sync,
            input,
            **sync_activity_options(),
        )


@workflow.defn
class MasterSyncWorkflow:
    """Customers, then invoices, then payments."""

    @workflow.run
    async def run(self, input: MasterSyncInput) -> Dict[str, Any]:
        workflow.logger.info("Starting master sync")
        return await workflow.execute_activity(
            run_master_sync,
            input,
            **sync_activity_options(timedelta(minutes=30)),
        )


@workflow.defn
class SingleDocumentWorkflow:
    """Resync one document (webhook notifications land here)."""

    @workflow.run
    async def run(self, input: SingleDocumentSyncInput) -> Dict[str, Any]:
        return await workflow.execute_activity(
            sync_single_document,
            SingleDocumentInput(
                entity_type=input.entity_type,
                key=input.key,
                source=input.source,
                tenant_id=input.tenant_id,
            ),
            **sync_activity_options(timedelta(minutes=2)),
        )


@workflow.defn
class DateRangeSyncWorkflow:
    """
    Date-range backfill driven by a persistent SyncJob.

    Each activity call advances the job until its soft deadline passes and
    checkpoints the next offset on the job row, so a retried or continued
    run picks up where the previous chunk stopped. Cancelling the job
    through the API ends the workflow at the next checkpoint.
    """

    def __init__(self):
        self.chunks = 0
        self.output: Optional[DateRangeSyncOutput] = None
        self.next_skip = 0
        self.done = False

    @workflow.query
    def progress(self) -> Dict[str, Any]:
        return {
            "chunks": self.chunks,
            "nextSkip": self.next_skip,
            "done": self.done,
            "created": self.output.created if self.output else 0,
            "updated": self.output.updated if self.output else 0,
        }

    @workflow.run
    async def run(self, input: DateRangeSyncInput) -> DateRangeSyncOutput:
        workflow.logger.info(
            f"Date-range sync job {input.job_id}: {input.entity_type} {input.start_date}..{input.end_date}"
        )
        self.output = DateRangeSyncOutput(job_id=input.job_id, status="running")

        try:
            while self.chunks < MAX_CHUNKS_PER_RUN:
                chunk = await workflow.execute_activity(
                    run_date_range_chunk,
                    DateRangeChunkInput(
                        entity_type=input.entity_type,
                        start_date=input.start_date,
                        end_date=input.end_date,
                        job_id=input.job_id,
                        deadline_seconds=input.deadline_seconds,
                        tenant_id=input.tenant_id,
                    ),
                    **sync_activity_options(),
                )
                self.chunks += 1
                self.next_skip = chunk.next_skip
                self.output.chunks = self.chunks
                self.output.created += chunk.created
                self.output.updated += chunk.updated
                self.output.total_fetched += chunk.total_fetched
                self.output.total_errors += chunk.total_errors

                if chunk.cancelled:
                    workflow.logger.info(f"Job {input.job_id} cancelled after {self.chunks} chunks")
                    self.output.status = "cancelled"
                    return self.output
                if chunk.done:
                    self.done = True
                    self.output.status = "completed"
                    return self.output
        except ActivityError as e:
            workflow.logger.error(f"Job {input.job_id} failed: {e}")
            await workflow.execute_activity(
                fail_sync_job,
                FailJobInput(job_id=input.job_id, error_message=str(e.cause or e)),
                **JOB_ACTIVITY_OPTIONS,
            )
            raise

        workflow.logger.info(f"Job {input.job_id} continuing as new after {self.chunks} chunks")
        workflow.continue_as_new(input)
