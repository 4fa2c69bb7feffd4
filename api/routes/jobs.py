"""SyncJob endpoints: polling, listing and cancellation."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from core.models.mirror import JobStatus
from storage.jobs import SyncJob
from sync.runtime import SyncRuntime
from api.services.runtime import get_runtime


router = APIRouter()


def _job_view(job: SyncJob, stall_minutes: int) -> Dict[str, Any]:
    data = job.to_dict()
    data["stalled"] = job.is_stalled(stall_minutes)
    return data


@router.get("")
async def list_jobs(
    status: Optional[JobStatus] = Query(default=None, description="Filter by status"),
    limit: int = Query(default=50, ge=1, le=500),
    runtime: SyncRuntime = Depends(get_runtime),
) -> Dict[str, Any]:
    """Most recent jobs first; running jobs without progress are flagged stalled."""
    stall = runtime.settings.job_stall_minutes
    return {
        "success": True,
        "jobs": [_job_view(job, stall) for job in runtime.jobs.list_jobs(status, limit)],
    }


@router.get("/{job_id}")
async def get_job(job_id: int, runtime: SyncRuntime = Depends(get_runtime)) -> Dict[str, Any]:
    job = runtime.jobs.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Sync job {job_id} not found")
    return {"success": True, "job": _job_view(job, runtime.settings.job_stall_minutes)}


@router.post("/{job_id}/cancel")
async def cancel_job(job_id: int, runtime: SyncRuntime = Depends(get_runtime)) -> Dict[str, Any]:
    """Cancel a pending or running job.

    The job is marked failed; a running engine notices at its next
    progress checkpoint and stops.
    """
    job = runtime.jobs.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Sync job {job_id} not found")
    if not runtime.jobs.cancel(job_id):
        raise HTTPException(status_code=409, detail=f"Sync job {job_id} is already {job.status.value}")
    return {"success": True, "job": runtime.jobs.get(job_id).to_dict()}
