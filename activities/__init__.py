"""Activity definitions module."""

from activities.sync import (
    SYNC_ACTIVITIES,
    DateRangeChunkInput,
    DateRangeChunkOutput,
    FailJobInput,
    IncrementalSyncInput,
    MasterSyncInput,
    SingleDocumentInput,
    fail_sync_job,
    run_date_range_chunk,
    run_incremental_sync,
    run_master_sync,
    sync_single_document,
)
from activities.reconcile import (
    RECONCILE_ACTIVITIES,
    ResyncPaymentsInput,
    SyncHealthInput,
    VerifyPaymentDatesInput,
    resync_payment_range,
    verify_payment_dates,
    verify_sync_health,
)

ALL_ACTIVITIES = SYNC_ACTIVITIES + RECONCILE_ACTIVITIES

__all__ = [
    # Sync activities
    "SYNC_ACTIVITIES",
    "DateRangeChunkInput",
    "DateRangeChunkOutput",
    "FailJobInput",
    "IncrementalSyncInput",
    "MasterSyncInput",
    "SingleDocumentInput",
    "fail_sync_job",
    "run_date_range_chunk",
    "run_incremental_sync",
    "run_master_sync",
    "sync_single_document",
    # Reconciliation activities
    "RECONCILE_ACTIVITIES",
    "ResyncPaymentsInput",
    "SyncHealthInput",
    "VerifyPaymentDatesInput",
    "resync_payment_range",
    "verify_payment_dates",
    "verify_sync_health",
    "ALL_ACTIVITIES",
]
