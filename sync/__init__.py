"""Entity sync engines and the payment application-history linker."""

from sync.applications import ApplicationHistoryLinker, LinkResult
from sync.engine import (
    ENTITY_SPECS,
    EntitySyncEngine,
    EntitySyncSpec,
    SyncResult,
    entity_spec,
    run_master_sync,
    webhook_key,
)
from sync.records import map_record

__all__ = [
    "ApplicationHistoryLinker",
    "LinkResult",
    "ENTITY_SPECS",
    "EntitySyncEngine",
    "EntitySyncSpec",
    "SyncResult",
    "entity_spec",
    "run_master_sync",
    "webhook_key",
    "map_record",
]
