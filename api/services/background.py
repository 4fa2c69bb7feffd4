"""Background execution of date-range SyncJobs.

With Temporal enabled a DateRangeSyncWorkflow drives the job; otherwise the
API process runs the chunks itself after the response has been sent.
"""

import sqlite3
from typing import Optional

from connectors.acumatica.acu_client import AcumaticaError, ConfigurationError
from core.observability.logging import get_logger, with_correlation
from sync.runtime import SyncRuntime
from temporal_client import get_temporal_client
from workflows.sync_workflow import DateRangeSyncInput, DateRangeSyncWorkflow

logger = get_logger(__name__)


def workflow_id_for(entity_type: str, job_id: int) -> str:
    return f"date-range-{entity_type}-job-{job_id}"


async def start_date_range_workflow(
    runtime: SyncRuntime,
    entity_type: str,
    start_date: str,
    end_date: str,
    job_id: int,
    tenant_id: Optional[str] = None,
) -> str:
    """Start the workflow for a job and record its id on the job."""
    workflow_id = workflow_id_for(entity_type, job_id)
    client = await get_temporal_client()
    await client.start_workflow(
        DateRangeSyncWorkflow.run,
        DateRangeSyncInput(
            entity_type=entity_type,
            start_date=start_date,
            end_date=end_date,
            job_id=job_id,
            deadline_seconds=runtime.settings.soft_deadline_seconds,
            tenant_id=tenant_id,
        ),
        id=workflow_id,
        task_queue=runtime.settings.task_queue,
    )
    runtime.jobs.set_workflow_id(job_id, workflow_id)
    logger.info(f"Started workflow {workflow_id}")
    return workflow_id


async def run_job_in_process(
    runtime: SyncRuntime,
    entity_type: str,
    start_date: str,
    end_date: str,
    job_id: int,
    tenant_id: Optional[str] = None,
) -> None:
    """Run a job chunk by chunk until it is done, cancelled or failed."""
    with with_correlation(tenant_id=runtime.tenant(tenant_id), job_id=str(job_id)):
        try:
            engine = runtime.engine(entity_type, tenant_id)
            while True:
                result = await engine.run_date_range(
                    start_date,
                    end_date,
                    job_id=job_id,
                    deadline_seconds=runtime.settings.soft_deadline_seconds,
                )
                if result.done or result.cancelled:
                    return
        except (AcumaticaError, ConfigurationError, sqlite3.Error) as e:
            logger.error(f"Background job {job_id} failed: {e}")
            runtime.jobs.fail(job_id, str(e))
