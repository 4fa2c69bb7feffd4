"""Persistent SyncJob records for long-running date-range syncs.

Status transitions are monotonic (pending -> running -> completed | failed).
Every update statement carries a ``status IN (...)`` guard, so a job that
has been cancelled or expired cannot be moved back to running.
"""

import json
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from core.models.mirror import JobStatus
from storage.db import DEFAULT_DB_PATH, PathLike, connect, from_iso, immediate_transaction, to_iso, utcnow


ACTIVE_STATUSES = (JobStatus.PENDING.value, JobStatus.RUNNING.value)


@dataclass
class JobProgress:
    """Counts a client can poll while the job runs."""
    created: int = 0
    updated: int = 0
    total: int = 0
    errors: List[str] = field(default_factory=list)
    total_errors: int = 0
    next_skip: int = 0
    done: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "created": self.created,
            "updated": self.updated,
            "total": self.total,
            "errors": self.errors,
            "total_errors": self.total_errors,
            "next_skip": self.next_skip,
            "done": self.done,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "JobProgress":
        data = data or {}
        return cls(
            created=data.get("created", 0),
            updated=data.get("updated", 0),
            total=data.get("total", 0),
            errors=list(data.get("errors", [])),
            total_errors=data.get("total_errors", len(data.get("errors", []))),
            next_skip=data.get("next_skip", 0),
            done=data.get("done", False),
        )


@dataclass
class SyncJob:
    """One date-range sync request."""
    id: int
    entity_type: str
    start_date: datetime
    end_date: datetime
    status: JobStatus
    progress: JobProgress
    created_at: datetime
    updated_at: datetime
    error_message: Optional[str] = None
    created_by: Optional[str] = None
    workflow_id: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def is_stalled(self, stall_minutes: int, now: Optional[datetime] = None) -> bool:
        """A running job whose progress has not moved within the stall window."""
        if self.status != JobStatus.RUNNING:
            return False
        return (now or utcnow()) - self.updated_at > timedelta(minutes=stall_minutes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "status": self.status.value,
            "progress": self.progress.to_dict(),
            "error_message": self.error_message,
            "created_by": self.created_by,
            "workflow_id": self.workflow_id,
            "created_at": self.created_at.isoformat(),
            "started_at": to_iso(self.started_at),
            "completed_at": to_iso(self.completed_at),
            "updated_at": self.updated_at.isoformat(),
        }


def _row_to_job(row: sqlite3.Row) -> SyncJob:
    return SyncJob(
        id=row["id"],
        entity_type=row["entity_type"],
        start_date=from_iso(row["start_date"]),
        end_date=from_iso(row["end_date"]),
        status=JobStatus(row["status"]),
        progress=JobProgress.from_dict(json.loads(row["progress"])),
        error_message=row["error_message"],
        created_by=row["created_by"],
        workflow_id=row["workflow_id"],
        created_at=from_iso(row["created_at"]),
        started_at=from_iso(row["started_at"]),
        completed_at=from_iso(row["completed_at"]),
        updated_at=from_iso(row["updated_at"]),
    )


class SyncJobStore:
    """SQLite-backed SyncJob store."""

    def __init__(self, db_path: PathLike = DEFAULT_DB_PATH):
        self.db_path = db_path

    def create_or_reuse(
        self,
        entity_type: str,
        start_date: datetime,
        end_date: datetime,
        created_by: Optional[str] = None,
        reuse_minutes: int = 30,
        now: Optional[datetime] = None,
    ) -> Tuple[SyncJob, bool]:
        """Create a pending job, or return an active one for the same range.

        Active jobs for the range with no progress update in the last
        ``reuse_minutes`` are expired to failed first, so a dead invocation
        does not block new requests while a long live one keeps its claim.

        Returns:
            (job, reused)
        """
        now = now or utcnow()
        cutoff = to_iso(now - timedelta(minutes=reuse_minutes))
        range_params = (entity_type, to_iso(start_date), to_iso(end_date))
        active = ", ".join("?" for _ in ACTIVE_STATUSES)

        with immediate_transaction(self.db_path) as conn:
            conn.execute(
                f"""
                UPDATE async_sync_jobs
                SET status = 'failed', error_message = 'Job expired without completing',
                    completed_at = ?, updated_at = ?
                WHERE entity_type = ? AND start_date = ? AND end_date = ?
                  AND status IN ({active}) AND updated_at < ?
                """,
                (to_iso(now), to_iso(now)) + range_params + ACTIVE_STATUSES + (cutoff,),
            )
            row = conn.execute(
                f"""
                SELECT * FROM async_sync_jobs
                WHERE entity_type = ? AND start_date = ? AND end_date = ?
                  AND status IN ({active})
                ORDER BY created_at DESC LIMIT 1
                """,
                range_params + ACTIVE_STATUSES,
            ).fetchone()
            if row:
                return _row_to_job(row), True

            cursor = conn.execute(
                """
                INSERT INTO async_sync_jobs
                    (entity_type, start_date, end_date, status, progress, created_by, created_at, updated_at)
                VALUES (?, ?, ?, 'pending', ?, ?, ?, ?)
                """,
                range_params + (json.dumps(JobProgress().to_dict()), created_by, to_iso(now), to_iso(now)),
            )
            job_id = cursor.lastrowid
            row = conn.execute("SELECT * FROM async_sync_jobs WHERE id = ?", (job_id,)).fetchone()
            return _row_to_job(row), False

    def get(self, job_id: int) -> Optional[SyncJob]:
        conn = connect(self.db_path)
        try:
            row = conn.execute("SELECT * FROM async_sync_jobs WHERE id = ?", (job_id,)).fetchone()
            return _row_to_job(row) if row else None
        finally:
            conn.close()

    def list_jobs(self, status: Optional[JobStatus] = None, limit: int = 50) -> List[SyncJob]:
        query = "SELECT * FROM async_sync_jobs"
        params: List[Any] = []
        if status:
            query += " WHERE status = ?"
            params.append(status.value)
        query += " ORDER BY created_at DESC, id DESC LIMIT ?"
        params.append(limit)

        conn = connect(self.db_path)
        try:
            return [_row_to_job(r) for r in conn.execute(query, params).fetchall()]
        finally:
            conn.close()

    def set_workflow_id(self, job_id: int, workflow_id: str) -> None:
        self._update(job_id, "workflow_id = ?", (workflow_id,), ACTIVE_STATUSES)

    def mark_running(self, job_id: int) -> bool:
        """pending -> running (idempotent for an already running job)."""
        now = to_iso(utcnow())
        return self._update(
            job_id,
            "status = 'running', started_at = COALESCE(started_at, ?)",
            (now,),
            ACTIVE_STATUSES,
        )

    def update_progress(self, job_id: int, progress: JobProgress) -> JobStatus:
        """Persist progress and return the job's current status.

        A caller that gets anything but RUNNING back has been cancelled.
        """
        self._update(job_id, "progress = ?", (json.dumps(progress.to_dict()),), (JobStatus.RUNNING.value,))
        job = self.get(job_id)
        return job.status if job else JobStatus.FAILED

    def complete(self, job_id: int, progress: JobProgress) -> bool:
        progress.done = True
        return self._update(
            job_id,
            "status = 'completed', progress = ?, completed_at = ?",
            (json.dumps(progress.to_dict()), to_iso(utcnow())),
            ACTIVE_STATUSES,
        )

    def fail(self, job_id: int, error_message: str, progress: Optional[JobProgress] = None) -> bool:
        assignments = "status = 'failed', error_message = ?, completed_at = ?"
        params: Tuple[Any, ...] = (error_message, to_iso(utcnow()))
        if progress is not None:
            assignments += ", progress = ?"
            params += (json.dumps(progress.to_dict()),)
        return self._update(job_id, assignments, params, ACTIVE_STATUSES)

    def cancel(self, job_id: int) -> bool:
        return self.fail(job_id, "Cancelled by user")

    def _update(self, job_id: int, assignments: str, params: Tuple[Any, ...], allowed: Tuple[str, ...]) -> bool:
        placeholders = ", ".join("?" for _ in allowed)
        conn = connect(self.db_path)
        try:
            cursor = conn.execute(
                f"UPDATE async_sync_jobs SET {assignments}, updated_at = ? "
                f"WHERE id = ? AND status IN ({placeholders})",
                params + (to_iso(utcnow()), job_id) + tuple(allowed),
            )
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()
