"""Workflow definitions module."""

from workflows.sync_workflow import (
    DateRangeSyncInput,
    DateRangeSyncWorkflow,
    IncrementalSyncWorkflow,
    MasterSyncWorkflow,
    SingleDocumentSyncInput,
    SingleDocumentWorkflow,
)
from workflows.reconciliation_workflow import (
    ReconciliationInput,
    ReconciliationWorkflow,
    SyncHealthWorkflow,
)

ALL_WORKFLOWS = [
    IncrementalSyncWorkflow,
    MasterSyncWorkflow,
    DateRangeSyncWorkflow,
    SingleDocumentWorkflow,
    ReconciliationWorkflow,
    SyncHealthWorkflow,
]

__all__ = [
    "DateRangeSyncInput",
    "DateRangeSyncWorkflow",
    "IncrementalSyncWorkflow",
    "MasterSyncWorkflow",
    "SingleDocumentSyncInput",
    "SingleDocumentWorkflow",
    "ReconciliationInput",
    "ReconciliationWorkflow",
    "SyncHealthWorkflow",
    "ALL_WORKFLOWS",
]
