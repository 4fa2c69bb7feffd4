"""Reconciliation endpoints.

Run the payment repair jobs on demand. Reports are returned as produced by
``PaymentReconciler``.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from api.services.runtime import get_runtime, get_tenant_id, parse_window
from connectors.acumatica.acu_client import ConfigurationError
from sync.runtime import SyncRuntime


router = APIRouter()


class PaymentDatesRequest(BaseModel):
    """Request body for payment date verification."""
    model_config = ConfigDict(populate_by_name=True)

    start_date: Optional[str] = Field(default=None, alias="startDate")
    end_date: Optional[str] = Field(default=None, alias="endDate")
    fix: bool = False


class SyncHealthRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sample_size: Optional[int] = Field(default=None, alias="sampleSize")


class ResyncPaymentsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    start_date: Optional[str] = Field(default=None, alias="startDate")
    end_date: Optional[str] = Field(default=None, alias="endDate")


@router.post("/payment-dates")
async def verify_payment_dates(
    request: PaymentDatesRequest,
    runtime: SyncRuntime = Depends(get_runtime),
    tenant_id: Optional[str] = Depends(get_tenant_id),
) -> Dict[str, Any]:
    """Compare Acumatica and mirror payments applied within the range."""
    window_start, window_end = parse_window(request.start_date, request.end_date)
    reconciler = runtime.reconciler(tenant_id)
    return await reconciler.verify_payment_dates(window_start.date(), window_end.date(), fix=request.fix)


@router.post("/sync-health")
async def verify_sync_health(
    request: Optional[SyncHealthRequest] = None,
    runtime: SyncRuntime = Depends(get_runtime),
    tenant_id: Optional[str] = Depends(get_tenant_id),
) -> Dict[str, Any]:
    sample_size = (request.sample_size if request else None) or runtime.settings.health_sample_size
    if sample_size <= 0:
        raise ConfigurationError("sampleSize must be a positive number")
    return await runtime.reconciler(tenant_id).verify_sync_health(sample_size)


@router.post("/resync-payments")
async def resync_payments(
    request: ResyncPaymentsRequest,
    runtime: SyncRuntime = Depends(get_runtime),
    tenant_id: Optional[str] = Depends(get_tenant_id),
) -> Dict[str, Any]:
    """Re-fetch a bounded batch of mirror payments in the range."""
    window_start, window_end = parse_window(request.start_date, request.end_date)
    reconciler = runtime.reconciler(tenant_id)
    return await reconciler.resync_payment_range(window_start.date(), window_end.date())
