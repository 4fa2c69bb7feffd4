"""Persistent cache of Acumatica session cookies.

The cache is shared by every concurrent sync invocation. Two database
constraints keep it consistent:

- a unique partial index allows one ``is_valid = 1`` row per tenant
- a login lease row lets exactly one caller log in while the others wait
  for the session it produces

Both the lease and the session swap run under ``BEGIN IMMEDIATE``.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

from core.security.encryption import SecretEncryption, seal, unseal
from storage.db import (
    DEFAULT_DB_PATH,
    PathLike,
    connect,
    from_iso,
    immediate_transaction,
    to_iso,
    utcnow,
)


@dataclass
class CachedSession:
    """One cached ERP session cookie."""
    id: int
    tenant_id: str
    session_cookie: str
    created_at: datetime
    expires_at: datetime
    last_used_at: datetime
    is_valid: bool = True

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    @property
    def is_usable(self) -> bool:
        return self.is_valid and not self.is_expired()

    def to_dict(self, include_cookie: bool = False) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "last_used_at": self.last_used_at.isoformat(),
            "is_valid": self.is_valid,
        }
        if include_cookie:
            data["session_cookie"] = self.session_cookie
        return data


class SessionCache:
    """SQLite-backed session cache."""

    def __init__(self, db_path: PathLike = DEFAULT_DB_PATH, encryption: Optional[SecretEncryption] = None):
        self.db_path = db_path
        self._encryption = encryption

    def _row_to_session(self, row) -> CachedSession:
        return CachedSession(
            id=row["id"],
            tenant_id=row["tenant_id"],
            session_cookie=unseal(self._encryption, row["session_cookie"], row["tenant_id"]),
            created_at=from_iso(row["created_at"]),
            expires_at=from_iso(row["expires_at"]),
            last_used_at=from_iso(row["last_used_at"]),
            is_valid=bool(row["is_valid"]),
        )

    # =========================================================================
    # Reads
    # =========================================================================

    def find_valid(self, tenant_id: str, now: Optional[datetime] = None) -> Optional[CachedSession]:
        """Most recently used valid, unexpired session for the tenant."""
        now = now or utcnow()
        conn = connect(self.db_path)
        try:
            row = conn.execute(
                """
                SELECT * FROM acumatica_sessions
                WHERE tenant_id = ? AND is_valid = 1 AND expires_at > ?
                ORDER BY last_used_at DESC
                LIMIT 1
                """,
                (tenant_id, to_iso(now)),
            ).fetchone()
            return self._row_to_session(row) if row else None
        finally:
            conn.close()

    def get(self, session_id: int) -> Optional[CachedSession]:
        conn = connect(self.db_path)
        try:
            row = conn.execute("SELECT * FROM acumatica_sessions WHERE id = ?", (session_id,)).fetchone()
            return self._row_to_session(row) if row else None
        finally:
            conn.close()

    def list_sessions(self, tenant_id: Optional[str] = None, only_valid: bool = False) -> List[CachedSession]:
        query = "SELECT * FROM acumatica_sessions WHERE 1 = 1"
        params: List[Any] = []
        if tenant_id:
            query += " AND tenant_id = ?"
            params.append(tenant_id)
        if only_valid:
            query += " AND is_valid = 1"
        query += " ORDER BY created_at DESC"

        conn = connect(self.db_path)
        try:
            return [self._row_to_session(r) for r in conn.execute(query, params).fetchall()]
        finally:
            conn.close()

    # =========================================================================
    # Writes
    # =========================================================================

    def touch(self, session_id: int, now: Optional[datetime] = None) -> None:
        """Bump last_used_at on reuse."""
        conn = connect(self.db_path)
        try:
            conn.execute(
                "UPDATE acumatica_sessions SET last_used_at = ? WHERE id = ?",
                (to_iso(now or utcnow()), session_id),
            )
            conn.commit()
        finally:
            conn.close()

    def acquire_login_lease(
        self,
        tenant_id: str,
        holder: str,
        lease_seconds: int,
        now: Optional[datetime] = None,
    ) -> Tuple[Optional[CachedSession], bool]:
        """Atomically look for a valid session or claim the right to log in.

        Returns:
            (session, False) if a valid session exists (its last_used_at is bumped),
            (None, True) if the caller now holds the tenant's login lease,
            (None, False) if another caller holds a live lease.
        """
        now = now or utcnow()
        now_iso = to_iso(now)
        with immediate_transaction(self.db_path) as conn:
            conn.execute(
                "UPDATE acumatica_sessions SET is_valid = 0 "
                "WHERE tenant_id = ? AND is_valid = 1 AND expires_at <= ?",
                (tenant_id, now_iso),
            )
            row = conn.execute(
                "SELECT * FROM acumatica_sessions WHERE tenant_id = ? AND is_valid = 1 "
                "ORDER BY last_used_at DESC LIMIT 1",
                (tenant_id,),
            ).fetchone()
            if row:
                conn.execute("UPDATE acumatica_sessions SET last_used_at = ? WHERE id = ?", (now_iso, row["id"]))
                return self._row_to_session(row), False

            lease = conn.execute(
                "SELECT holder, expires_at FROM acumatica_login_leases WHERE tenant_id = ?",
                (tenant_id,),
            ).fetchone()
            if lease and lease["holder"] != holder and from_iso(lease["expires_at"]) > now:
                return None, False

            conn.execute(
                """
                INSERT INTO acumatica_login_leases (tenant_id, holder, expires_at)
                VALUES (?, ?, ?)
                ON CONFLICT(tenant_id) DO UPDATE SET holder = excluded.holder, expires_at = excluded.expires_at
                """,
                (tenant_id, holder, to_iso(now + timedelta(seconds=lease_seconds))),
            )
            return None, True

    def release_lease(self, tenant_id: str, holder: str) -> None:
        conn = connect(self.db_path)
        try:
            conn.execute(
                "DELETE FROM acumatica_login_leases WHERE tenant_id = ? AND holder = ?",
                (tenant_id, holder),
            )
            conn.commit()
        finally:
            conn.close()

    def store_new_session(
        self,
        tenant_id: str,
        session_cookie: str,
        ttl: timedelta,
        holder: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CachedSession:
        """Replace the tenant's valid session with a freshly created one.

        Previous valid rows are invalidated and the new row inserted in one
        transaction, then the caller's login lease is released.
        """
        now = now or utcnow()
        with immediate_transaction(self.db_path) as conn:
            conn.execute(
                "UPDATE acumatica_sessions SET is_valid = 0 WHERE tenant_id = ? AND is_valid = 1",
                (tenant_id,),
            )
            cursor = conn.execute(
                """
                INSERT INTO acumatica_sessions
                    (tenant_id, session_cookie, created_at, expires_at, last_used_at, is_valid)
                VALUES (?, ?, ?, ?, ?, 1)
                """,
                (
                    tenant_id,
                    seal(self._encryption, session_cookie, tenant_id),
                    to_iso(now),
                    to_iso(now + ttl),
                    to_iso(now),
                ),
            )
            session_id = cursor.lastrowid
            if holder:
                conn.execute(
                    "DELETE FROM acumatica_login_leases WHERE tenant_id = ? AND holder = ?",
                    (tenant_id, holder),
                )

        return CachedSession(
            id=session_id,
            tenant_id=tenant_id,
            session_cookie=session_cookie,
            created_at=now,
            expires_at=now + ttl,
            last_used_at=now,
            is_valid=True,
        )

    def invalidate(self, session_id: int) -> int:
        return self._execute("UPDATE acumatica_sessions SET is_valid = 0 WHERE id = ? AND is_valid = 1", (session_id,))

    def invalidate_expired(self, tenant_id: Optional[str] = None, now: Optional[datetime] = None) -> int:
        query = "UPDATE acumatica_sessions SET is_valid = 0 WHERE is_valid = 1 AND expires_at <= ?"
        params: List[Any] = [to_iso(now or utcnow())]
        if tenant_id:
            query += " AND tenant_id = ?"
            params.append(tenant_id)
        return self._execute(query, params)

    def invalidate_all(self, tenant_id: Optional[str] = None) -> int:
        query = "UPDATE acumatica_sessions SET is_valid = 0 WHERE is_valid = 1"
        params: List[Any] = []
        if tenant_id:
            query += " AND tenant_id = ?"
            params.append(tenant_id)
        return self._execute(query, params)

    def delete_sessions(self, session_ids: Sequence[int]) -> int:
        """Physically remove rows. Only force-logout does this."""
        if not session_ids:
            return 0
        placeholders = ", ".join("?" for _ in session_ids)
        return self._execute(f"DELETE FROM acumatica_sessions WHERE id IN ({placeholders})", list(session_ids))

    def _execute(self, query: str, params) -> int:
        conn = connect(self.db_path)
        try:
            cursor = conn.execute(query, params)
            conn.commit()
            return cursor.rowcount
        finally:
            conn.close()
