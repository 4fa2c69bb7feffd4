"""Core audit module - sync change log tracking and persistence."""

from core.audit.events import (
    ChangeLogger,
    InMemoryChangeLogBackend,
    SqliteChangeLogBackend,
    SyncChangeEvent,
    SyncChangeType,
    classify_status_change,
)

__all__ = [
    "ChangeLogger",
    "InMemoryChangeLogBackend",
    "SqliteChangeLogBackend",
    "SyncChangeEvent",
    "SyncChangeType",
    "classify_status_change",
]
