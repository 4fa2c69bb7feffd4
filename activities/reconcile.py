"""Reconciliation activities.

Temporal activities that compare Acumatica payments with the mirror and
optionally repair drift.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from temporalio import activity

from core.observability.logging import with_correlation
from sync.runtime import SyncRuntime


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class VerifyPaymentDatesInput:
    """Input for verify_payment_dates activity.

    Attributes:
        start_date: First application date (YYYY-MM-DD)
        end_date: Last application date, inclusive
        fix: Overwrite drifted mirror fields when True; report only otherwise
    """
    start_date: str
    end_date: str
    fix: bool = False
    tenant_id: Optional[str] = None


@dataclass
class SyncHealthInput:
    """Input for verify_sync_health activity"""
    sample_size: Optional[int] = None
    tenant_id: Optional[str] = None


@dataclass
class ResyncPaymentsInput:
    """Input for resync_payment_range activity"""
    start_date: str
    end_date: str
    tenant_id: Optional[str] = None


# =============================================================================
# Activity Definitions
# =============================================================================

@activity.defn
async def verify_payment_dates(input: VerifyPaymentDatesInput) -> Dict[str, Any]:
    """Report (and with ``fix``, repair) payment drift in a date range."""
    runtime = SyncRuntime()
    try:
        with with_correlation(tenant_id=runtime.tenant(input.tenant_id), activity_name="verify_payment_dates"):
            report = await runtime.reconciler(input.tenant_id).verify_payment_dates(
                input.start_date, input.end_date, fix=input.fix,
            )
        activity.logger.info(
            f"Payment verification {input.start_date}..{input.end_date}: "
            f"{len(report['stalePayments']) + len(report['mismatchedPayments'])} drifted, "
            f"{len(report['fixedPayments'])} fixed"
        )
        return report
    finally:
        await runtime.close()


@activity.defn
async def verify_sync_health(input: SyncHealthInput) -> Dict[str, Any]:
    """Sample recent mirror payments and compare their status with Acumatica."""
    runtime = SyncRuntime()
    try:
        sample_size = input.sample_size or runtime.settings.health_sample_size
        with with_correlation(tenant_id=runtime.tenant(input.tenant_id), activity_name="verify_sync_health"):
            return await runtime.reconciler(input.tenant_id).verify_sync_health(sample_size)
    finally:
        await runtime.close()


@activity.defn
async def resync_payment_range(input: ResyncPaymentsInput) -> Dict[str, Any]:
    """Re-fetch up to the per-run limit of mirrored payments in a range."""
    runtime = SyncRuntime()
    try:
        with with_correlation(tenant_id=runtime.tenant(input.tenant_id), activity_name="resync_payment_range"):
            return await runtime.reconciler(input.tenant_id).resync_payment_range(input.start_date, input.end_date)
    finally:
        await runtime.close()


RECONCILE_ACTIVITIES = [
    verify_payment_dates,
    verify_sync_health,
    resync_payment_range,
]
