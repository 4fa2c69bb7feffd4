"""Sync change log.

Records what each sync pass did to the mirror: documents created, updated,
or whose status moved (closed, reopened, ...). Supports multiple
persistence backends.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from core.observability.logging import get_logger
from storage.db import DEFAULT_DB_PATH, PathLike, connect, from_iso, to_iso

logger = get_logger(__name__)


class SyncChangeType(str, Enum):
    """Kinds of mirror changes."""
    CREATED = "created"
    UPDATED = "updated"
    STATUS_CHANGED = "status_changed"
    CLOSED = "closed"
    REOPENED = "reopened"


@dataclass
class SyncChangeEvent:
    """One change to one mirrored document."""
    entity_type: str
    entity_key: str
    change_type: SyncChangeType
    old_status: Optional[str] = None
    new_status: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    sync_source: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_type": self.entity_type,
            "entity_key": self.entity_key,
            "change_type": self.change_type.value,
            "old_status": self.old_status,
            "new_status": self.new_status,
            "details": self.details,
            "sync_source": self.sync_source,
            "created_at": self.created_at.isoformat(),
        }


def classify_status_change(old_status: Optional[str], new_status: Optional[str]) -> Optional[SyncChangeType]:
    """Map a status transition to a change type, or None if unchanged."""
    if old_status == new_status:
        return None
    if (new_status or "").lower() == "closed":
        return SyncChangeType.CLOSED
    if (old_status or "").lower() == "closed":
        return SyncChangeType.REOPENED
    return SyncChangeType.STATUS_CHANGED


class ChangeLogBackend(ABC):
    """Abstract base class for change log persistence."""

    @abstractmethod
    def log(self, event: SyncChangeEvent) -> None:
        pass

    @abstractmethod
    def query(
        self,
        entity_type: Optional[str] = None,
        entity_key: Optional[str] = None,
        limit: int = 100,
    ) -> List[SyncChangeEvent]:
        pass


class SqliteChangeLogBackend(ChangeLogBackend):
    """Stores events in the ``sync_change_logs`` table."""

    def __init__(self, db_path: PathLike = DEFAULT_DB_PATH):
        self.db_path = db_path

    def log(self, event: SyncChangeEvent) -> None:
        conn = connect(self.db_path)
        try:
            conn.execute(
                """
                INSERT INTO sync_change_logs
                    (entity_type, entity_key, change_type, old_status, new_status, details, sync_source, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event.entity_type,
                    event.entity_key,
                    event.change_type.value,
                    event.old_status,
                    event.new_status,
                    json.dumps(event.details, default=str),
                    event.sync_source,
                    to_iso(event.created_at),
                ),
            )
            conn.commit()
        finally:
            conn.close()

    def query(
        self,
        entity_type: Optional[str] = None,
        entity_key: Optional[str] = None,
        limit: int = 100,
    ) -> List[SyncChangeEvent]:
        sql = "SELECT * FROM sync_change_logs WHERE 1 = 1"
        params: List[Any] = []
        if entity_type:
            sql += " AND entity_type = ?"
            params.append(entity_type)
        if entity_key:
            sql += " AND entity_key = ?"
            params.append(entity_key)
        sql += " ORDER BY id DESC LIMIT ?"
        params.append(limit)

        conn = connect(self.db_path)
        try:
            rows = conn.execute(sql, params).fetchall()
        finally:
            conn.close()
        return [
            SyncChangeEvent(
                entity_type=r["entity_type"],
                entity_key=r["entity_key"],
                change_type=SyncChangeType(r["change_type"]),
                old_status=r["old_status"],
                new_status=r["new_status"],
                details=json.loads(r["details"] or "{}"),
                sync_source=r["sync_source"],
                created_at=from_iso(r["created_at"]),
            )
            for r in rows
        ]


class InMemoryChangeLogBackend(ChangeLogBackend):
    """In-memory backend for testing."""

    def __init__(self):
        self._events: List[SyncChangeEvent] = []

    def log(self, event: SyncChangeEvent) -> None:
        self._events.append(event)

    def query(
        self,
        entity_type: Optional[str] = None,
        entity_key: Optional[str] = None,
        limit: int = 100,
    ) -> List[SyncChangeEvent]:
        results = []
        for event in reversed(self._events):
            if entity_type and event.entity_type != entity_type:
                continue
            if entity_key and event.entity_key != entity_key:
                continue
            results.append(event)
            if len(results) >= limit:
                break
        return results


class ChangeLogger:
    """Fans change events out to every backend.

    Usage:
        changes = ChangeLogger()
        changes.add_backend(SqliteChangeLogBackend(db_path))
        changes.record_upsert("invoice", "Invoice:001234", created=False,
                              old_status="Open", new_status="Closed", sync_source="incremental")
    """

    def __init__(self, backends: Optional[List[ChangeLogBackend]] = None):
        self._backends: List[ChangeLogBackend] = list(backends or [])

    def add_backend(self, backend: ChangeLogBackend) -> None:
        self._backends.append(backend)

    def log(self, event: SyncChangeEvent) -> None:
        for backend in self._backends:
            try:
                backend.log(event)
            except Exception as e:
                # a change log write must not fail the row it describes
                logger.warning(f"Change log write failed for backend {type(backend).__name__}: {e}")

    def record_upsert(
        self,
        entity_type: str,
        entity_key: str,
        created: bool,
        old_status: Optional[str] = None,
        new_status: Optional[str] = None,
        sync_source: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Log a created event, or an updated event plus any status transition."""
        if created:
            self.log(SyncChangeEvent(entity_type, entity_key, SyncChangeType.CREATED,
                                     new_status=new_status, sync_source=sync_source, details=details or {}))
            return

        status_change = classify_status_change(old_status, new_status)
        change_type = status_change or SyncChangeType.UPDATED
        self.log(SyncChangeEvent(entity_type, entity_key, change_type, old_status=old_status,
                                 new_status=new_status, sync_source=sync_source, details=details or {}))

    def query(self, entity_type: Optional[str] = None, entity_key: Optional[str] = None, limit: int = 100) -> List[SyncChangeEvent]:
        if not self._backends:
            return []
        return self._backends[0].query(entity_type, entity_key, limit)
