"""
Payment Reconciliation Workflow

Verifies mirror payments against Acumatica for a date range. With ``fix``
set, drifted rows are overwritten. With ``resync`` set and drift left
unresolved, a bounded resync of the range follows.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional, Dict, Any

from temporalio import workflow
from temporalio.common import RetryPolicy

with workflow.unsafe.imports_passed_through():
    from activities.reconcile import (
        verify_payment_dates,
        resync_payment_range,
        verify_sync_health,
        VerifyPaymentDatesInput,
        ResyncPaymentsInput,
        SyncHealthInput,
    )


RECONCILE_ACTIVITY_OPTIONS = {
    "start_to_close_timeout": timedelta(minutes=15),
    "retry_policy": RetryPolicy(
        maximum_attempts=2,
        initial_interval=timedelta(seconds=10),
        backoff_coefficient=2.0,
        non_retryable_error_types=["AuthenticationError", "LoginLimitError", "ConfigurationError"],
    ),
}


@dataclass
class ReconciliationInput:
    """Input for ReconciliationWorkflow"""
    start_date: str
    end_date: str
    fix: bool = False
    resync: bool = False
    tenant_id: Optional[str] = None


@workflow.defn
class ReconciliationWorkflow:
    """Verify (and optionally repair) payments in a date range."""

    @workflow.run
    async def run(self, input: ReconciliationInput) -> Dict[str, Any]:
        workflow.logger.info(
            f"Reconciling payments {input.start_date}..{input.end_date} (fix={input.fix})"
        )
        report = await workflow.execute_activity(
            verify_payment_dates,
            VerifyPaymentDatesInput(
                start_date=input.start_date,
                end_date=input.end_date,
                fix=input.fix,
                tenant_id=input.tenant_id,
            ),
            **RECONCILE_ACTIVITY_OPTIONS,
        )

        result: Dict[str, Any] = {"verification": report}
        unresolved = report.get("stalePayments") or report.get("inAcumaticaNotDb")
        if input.resync and unresolved:
            result["resync"] = await workflow.execute_activity(
                resync_payment_range,
                ResyncPaymentsInput(
                    start_date=input.start_date,
                    end_date=input.end_date,
                    tenant_id=input.tenant_id,
                ),
                **RECONCILE_ACTIVITY_OPTIONS,
            )
        return result


@workflow.defn
class SyncHealthWorkflow:
    """Sample recent payments and rate how well the mirror tracks Acumatica."""

    @workflow.run
    async def run(self, input: SyncHealthInput) -> Dict[str, Any]:
        return await workflow.execute_activity(
            verify_sync_health,
            input,
            **RECONCILE_ACTIVITY_OPTIONS,
        )
