"""Per-entity sync status and lookback configuration."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from storage.db import DEFAULT_DB_PATH, PathLike, connect, from_iso, to_iso, utcnow


@dataclass
class SyncStatus:
    entity_type: str
    lookback_minutes: Optional[int] = None
    sync_enabled: bool = True
    status: str = "idle"
    last_sync_started_at: Optional[datetime] = None
    last_successful_sync: Optional[datetime] = None
    records_synced: int = 0
    records_created: int = 0
    records_updated: int = 0
    errors: List[str] = field(default_factory=list)
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_type": self.entity_type,
            "lookback_minutes": self.lookback_minutes,
            "sync_enabled": self.sync_enabled,
            "status": self.status,
            "last_sync_started_at": to_iso(self.last_sync_started_at),
            "last_successful_sync": to_iso(self.last_successful_sync),
            "records_synced": self.records_synced,
            "records_created": self.records_created,
            "records_updated": self.records_updated,
            "errors": self.errors,
            "last_error": self.last_error,
        }


class SyncStatusStore:
    """Reads and writes the ``sync_status`` table."""

    def __init__(self, db_path: PathLike = DEFAULT_DB_PATH, max_errors: int = 150):
        self.db_path = db_path
        self.max_errors = max_errors

    def get(self, entity_type: str) -> SyncStatus:
        conn = connect(self.db_path)
        try:
            row = conn.execute("SELECT * FROM sync_status WHERE entity_type = ?", (entity_type,)).fetchone()
        finally:
            conn.close()
        if row is None:
            return SyncStatus(entity_type=entity_type)
        return SyncStatus(
            entity_type=row["entity_type"],
            lookback_minutes=row["lookback_minutes"],
            sync_enabled=bool(row["sync_enabled"]),
            status=row["status"],
            last_sync_started_at=from_iso(row["last_sync_started_at"]),
            last_successful_sync=from_iso(row["last_successful_sync"]),
            records_synced=row["records_synced"],
            records_created=row["records_created"],
            records_updated=row["records_updated"],
            errors=json.loads(row["errors"] or "[]"),
            last_error=row["last_error"],
        )

    def list_all(self) -> List[SyncStatus]:
        conn = connect(self.db_path)
        try:
            rows = conn.execute("SELECT entity_type FROM sync_status ORDER BY entity_type").fetchall()
        finally:
            conn.close()
        return [self.get(r["entity_type"]) for r in rows]

    def lookback_minutes(self, entity_type: str, default: int) -> int:
        configured = self.get(entity_type).lookback_minutes
        return configured if configured else default

    def set_lookback(self, entity_type: str, minutes: int) -> None:
        if minutes <= 0:
            raise ValueError("lookback_minutes must be positive")
        self._upsert(entity_type, {"lookback_minutes": minutes})

    def set_enabled(self, entity_type: str, enabled: bool) -> None:
        self._upsert(entity_type, {"sync_enabled": int(enabled)})

    def mark_started(self, entity_type: str) -> None:
        self._upsert(entity_type, {"status": "running", "last_sync_started_at": to_iso(utcnow())})

    def mark_completed(self, entity_type: str, created: int, updated: int, errors: List[str]) -> None:
        self._upsert(entity_type, {
            "status": "completed" if not errors else "completed_with_errors",
            "last_successful_sync": to_iso(utcnow()),
            "records_synced": created + updated,
            "records_created": created,
            "records_updated": updated,
            "errors": json.dumps(errors[: self.max_errors]),
            "last_error": errors[-1] if errors else None,
        })

    def mark_failed(self, entity_type: str, error: str) -> None:
        self._upsert(entity_type, {"status": "failed", "last_error": error})

    def _upsert(self, entity_type: str, values: Dict[str, Any]) -> None:
        values = dict(values, updated_at=to_iso(utcnow()))
        columns = ["entity_type"] + list(values)
        placeholders = ", ".join("?" for _ in columns)
        updates = ", ".join(f"{c} = excluded.{c}" for c in values)
        conn = connect(self.db_path)
        try:
            conn.execute(
                f"INSERT INTO sync_status ({', '.join(columns)}) VALUES ({placeholders}) "
                f"ON CONFLICT(entity_type) DO UPDATE SET {updates}",
                [entity_type] + list(values.values()),
            )
            conn.commit()
        finally:
            conn.close()
