"""Sync endpoints.

Incremental, date-range, master and single-payment syncs, plus the
per-entity sync status rows.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from api.services.background import run_job_in_process, start_date_range_workflow
from api.services.runtime import get_runtime, get_tenant_id, get_user_id, parse_window
from connectors.acumatica.acu_client import ConfigurationError
from core.models.mirror import SyncMode
from sync.engine import entity_spec, run_master_sync
from sync.runtime import SyncRuntime


router = APIRouter()


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class IncrementalSyncRequest(CamelModel):
    """Request body for an incremental sync."""
    lookback_minutes: Optional[int] = Field(default=None, alias="lookbackMinutes")


class DateRangeSyncRequest(CamelModel):
    """Request body for a date-range sync.

    ``pollStatus`` with ``jobId`` returns the job instead of starting work;
    ``jobId`` alone continues that job in the background.
    """
    start_date: Optional[str] = Field(default=None, alias="startDate")
    end_date: Optional[str] = Field(default=None, alias="endDate")
    background: bool = False
    poll_status: bool = Field(default=False, alias="pollStatus")
    job_id: Optional[int] = Field(default=None, alias="jobId")


class LookbackRequest(CamelModel):
    lookback_minutes: int = Field(..., alias="lookbackMinutes")


class EnabledRequest(CamelModel):
    enabled: bool


# =============================================================================
# Status
# =============================================================================

@router.get("/status")
async def list_sync_status(runtime: SyncRuntime = Depends(get_runtime)) -> Dict[str, Any]:
    """Sync status rows for every entity that has run at least once."""
    return {"success": True, "statuses": [s.to_dict() for s in runtime.status.list_all()]}


@router.put("/status/{entity}/lookback")
async def set_lookback(
    entity: str,
    request: LookbackRequest,
    runtime: SyncRuntime = Depends(get_runtime),
) -> Dict[str, Any]:
    """Set the lookback used by incremental syncs that do not pass one."""
    if request.lookback_minutes <= 0:
        raise ConfigurationError("lookbackMinutes must be a positive number")
    name = entity_spec(entity).entity_type.value
    runtime.status.set_lookback(name, request.lookback_minutes)
    return {"success": True, "status": runtime.status.get(name).to_dict()}


@router.put("/status/{entity}/enabled")
async def set_enabled(
    entity: str,
    request: EnabledRequest,
    runtime: SyncRuntime = Depends(get_runtime),
) -> Dict[str, Any]:
    """Include or skip an entity in master syncs."""
    name = entity_spec(entity).entity_type.value
    runtime.status.set_enabled(name, request.enabled)
    return {"success": True, "status": runtime.status.get(name).to_dict()}


# =============================================================================
# Master / single document
# =============================================================================

@router.post("/master")
async def master_sync(
    runtime: SyncRuntime = Depends(get_runtime),
    tenant_id: Optional[str] = Depends(get_tenant_id),
) -> Dict[str, Any]:
    """Incremental sync of customers, invoices and payments in turn."""
    return await run_master_sync(runtime.engines(tenant_id), runtime.status)


@router.post("/payments/{payment_type}/{reference_number}")
async def resync_payment(
    payment_type: str,
    reference_number: str,
    runtime: SyncRuntime = Depends(get_runtime),
    tenant_id: Optional[str] = Depends(get_tenant_id),
) -> Dict[str, Any]:
    """Re-fetch one payment with its application history."""
    engine = runtime.engine("payment", tenant_id)
    result = await engine.sync_document(payment_type, reference_number, source=SyncMode.SINGLE)
    return result.to_response(runtime.settings.max_response_errors)


# =============================================================================
# Per-entity syncs
# =============================================================================

@router.post("/{entity}/incremental")
async def incremental_sync(
    entity: str,
    request: Optional[IncrementalSyncRequest] = None,
    runtime: SyncRuntime = Depends(get_runtime),
    tenant_id: Optional[str] = Depends(get_tenant_id),
) -> Dict[str, Any]:
    """Sync records modified within the lookback window."""
    lookback = request.lookback_minutes if request else None
    engine = runtime.engine(entity, tenant_id)
    result = await engine.run_incremental(lookback)
    return result.to_response(runtime.settings.max_response_errors)


@router.post("/{entity}/date-range")
async def date_range_sync(
    entity: str,
    request: DateRangeSyncRequest,
    background_tasks: BackgroundTasks,
    runtime: SyncRuntime = Depends(get_runtime),
    tenant_id: Optional[str] = Depends(get_tenant_id),
    user_id: Optional[str] = Depends(get_user_id),
):
    """Sync records modified within [startDate, endDate].

    Small windows run inline and return the sync envelope. Large windows
    (or ``background``) create a SyncJob and return 202 with its id.
    """
    spec = entity_spec(entity)
    name = spec.entity_type.value

    if request.poll_status and request.job_id is not None:
        job = runtime.jobs.get(request.job_id)
        if job is None:
            raise HTTPException(status_code=404, detail=f"Sync job {request.job_id} not found")
        return {"success": True, "job": job.to_dict()}

    reused = False
    if request.job_id is not None:
        job = runtime.jobs.get(request.job_id)
        if job is None:
            raise HTTPException(status_code=404, detail=f"Sync job {request.job_id} not found")
        window_start, window_end = job.start_date, job.end_date
        runtime.credentials.require_active(runtime.tenant(tenant_id))
    else:
        window_start, window_end = parse_window(request.start_date, request.end_date)
        days = (window_end - window_start).days + 1
        if not request.background and days <= runtime.settings.inline_max_days:
            engine = runtime.engine(name, tenant_id)
            result = await engine.run_date_range(window_start, window_end)
            return result.to_response(runtime.settings.max_response_errors)

        runtime.credentials.require_active(runtime.tenant(tenant_id))
        job, reused = runtime.jobs.create_or_reuse(
            name,
            window_start,
            window_end,
            created_by=user_id,
            reuse_minutes=runtime.settings.job_reuse_minutes,
        )

    body: Dict[str, Any] = {"success": True, "jobId": job.id, "async": True}
    if reused:
        body["reused"] = True
        return JSONResponse(status_code=202, content=body)

    start_iso, end_iso = window_start.isoformat(), window_end.isoformat()
    if runtime.settings.use_temporal:
        body["workflowId"] = await start_date_range_workflow(
            runtime, name, start_iso, end_iso, job.id, tenant_id,
        )
    else:
        background_tasks.add_task(run_job_in_process, runtime, name, start_iso, end_iso, job.id, tenant_id)
    return JSONResponse(status_code=202, content=body)
