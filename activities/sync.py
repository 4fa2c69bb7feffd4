"""Sync activities.

Temporal activities wrapping the entity sync engines:
- run_incremental_sync: one incremental window for one entity
- run_date_range_chunk: one deadline-bounded chunk of a SyncJob
- run_master_sync: customers, invoices and payments in turn
- sync_single_document: webhook / manual single-document resync
- fail_sync_job: mark a job failed when its workflow gives up
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from temporalio import activity

from core.models.mirror import SyncMode
from core.observability.logging import with_correlation
from sync.engine import entity_spec, run_master_sync as run_master
from sync.runtime import SyncRuntime


# =============================================================================
# Activity Input/Output Models
# =============================================================================

@dataclass
class IncrementalSyncInput:
    """Input for run_incremental_sync activity"""
    entity_type: str
    lookback_minutes: Optional[int] = None
    tenant_id: Optional[str] = None


@dataclass
class DateRangeChunkInput:
    """Input for run_date_range_chunk activity.

    Attributes:
        job_id: SyncJob to advance; progress and resume offset live on the job
        deadline_seconds: soft deadline for this chunk
    """
    entity_type: str
    start_date: str
    end_date: str
    job_id: int
    deadline_seconds: Optional[float] = None
    tenant_id: Optional[str] = None


@dataclass
class DateRangeChunkOutput:
    """Output from run_date_range_chunk activity"""
    job_id: int
    done: bool
    cancelled: bool
    next_skip: int
    created: int
    updated: int
    total_fetched: int
    total_errors: int


@dataclass
class MasterSyncInput:
    """Input for run_master_sync activity"""
    tenant_id: Optional[str] = None


@dataclass
class SingleDocumentInput:
    """Input for sync_single_document activity.

    ``key`` is [customer_id] for customers, [type, reference_number] for
    invoices and payments.
    """
    entity_type: str
    key: List[str] = field(default_factory=list)
    source: str = SyncMode.WEBHOOK.value
    tenant_id: Optional[str] = None


@dataclass
class FailJobInput:
    """Input for fail_sync_job activity"""
    job_id: int
    error_message: str


# =============================================================================
# Activities
# =============================================================================

@activity.defn
async def run_incremental_sync(input: IncrementalSyncInput) -> Dict[str, Any]:
    """Sync one entity's recently modified records."""
    runtime = SyncRuntime()
    try:
        engine = runtime.engine(input.entity_type, input.tenant_id)
        with with_correlation(tenant_id=runtime.tenant(input.tenant_id), activity_name="run_incremental_sync"):
            result = await engine.run_incremental(input.lookback_minutes)
        activity.logger.info(
            f"Incremental {input.entity_type} sync: {result.created} created, {result.updated} updated"
        )
        return result.to_response(runtime.settings.max_response_errors)
    finally:
        await runtime.close()


@activity.defn
async def run_date_range_chunk(input: DateRangeChunkInput) -> DateRangeChunkOutput:
    """Advance a date-range SyncJob until it finishes or the soft deadline passes."""
    runtime = SyncRuntime()
    try:
        engine = runtime.engine(input.entity_type, input.tenant_id)
        deadline = input.deadline_seconds or runtime.settings.soft_deadline_seconds
        with with_correlation(tenant_id=runtime.tenant(input.tenant_id), activity_name="run_date_range_chunk"):
            result = await engine.run_date_range(
                input.start_date,
                input.end_date,
                job_id=input.job_id,
                deadline_seconds=deadline,
            )
        activity.logger.info(
            f"Job {input.job_id} chunk finished: done={result.done} next_skip={result.next_skip}"
        )
        return DateRangeChunkOutput(
            job_id=input.job_id,
            done=result.done,
            cancelled=result.cancelled,
            next_skip=result.next_skip,
            created=result.created,
            updated=result.updated,
            total_fetched=result.total_fetched,
            total_errors=result.total_errors,
        )
    finally:
        await runtime.close()


@activity.defn
async def run_master_sync(input: MasterSyncInput) -> Dict[str, Any]:
    """Incremental sync of customers, invoices and payments."""
    runtime = SyncRuntime()
    try:
        with with_correlation(tenant_id=runtime.tenant(input.tenant_id), activity_name="run_master_sync"):
            return await run_master(runtime.engines(input.tenant_id), runtime.status)
    finally:
        await runtime.close()


@activity.defn
async def sync_single_document(input: SingleDocumentInput) -> Dict[str, Any]:
    """Fetch one document by key and upsert it."""
    spec = entity_spec(input.entity_type)
    runtime = SyncRuntime()
    try:
        engine = runtime.engine(spec.entity_type, input.tenant_id)
        result = await engine.sync_document(*input.key, source=SyncMode(input.source))
        return result.to_response(runtime.settings.max_response_errors)
    finally:
        await runtime.close()


@activity.defn
async def fail_sync_job(input: FailJobInput) -> bool:
    """Mark a SyncJob failed (no-op if it already finished)."""
    runtime = SyncRuntime()
    try:
        failed = runtime.jobs.fail(input.job_id, input.error_message)
        if failed:
            activity.logger.warning(f"Job {input.job_id} marked failed: {input.error_message}")
        return failed
    finally:
        await runtime.close()


SYNC_ACTIVITIES = [
    run_incremental_sync,
    run_date_range_chunk,
    run_master_sync,
    sync_single_document,
    fail_sync_job,
]

