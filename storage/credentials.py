"""Credential store: one active Acumatica credential set per tenant."""

import sqlite3
from typing import List, Optional

from connectors.acumatica.acu_auth import AcumaticaCredentials, normalize_host
from connectors.acumatica.acu_client import ConfigurationError
from core.security.encryption import SecretEncryption, seal, unseal
from storage.db import DEFAULT_DB_PATH, PathLike, connect, from_iso, immediate_transaction, to_iso


class CredentialStore:
    """SQLite credential store.

    ``set_active`` deactivates the tenant's current row and inserts the new
    one in a single transaction; a unique partial index rejects any second
    active row, so "which row wins" is never ambiguous.
    """

    def __init__(self, db_path: PathLike = DEFAULT_DB_PATH, encryption: Optional[SecretEncryption] = None):
        self.db_path = db_path
        self._encryption = encryption

    def _row_to_credentials(self, row: sqlite3.Row) -> AcumaticaCredentials:
        return AcumaticaCredentials(
            id=row["id"],
            tenant_id=row["tenant_id"],
            host_url=row["host_url"],
            username=row["username"],
            password=unseal(self._encryption, row["password"], row["tenant_id"]),
            company=row["company"],
            branch=row["branch"],
            is_active=bool(row["is_active"]),
            created_at=from_iso(row["created_at"]),
        )

    def set_active(self, credentials: AcumaticaCredentials) -> AcumaticaCredentials:
        """Store credentials as the tenant's only active set."""
        credentials.validate()
        credentials.host_url = normalize_host(credentials.host_url)

        with immediate_transaction(self.db_path) as conn:
            conn.execute(
                "UPDATE acumatica_credentials SET is_active = 0 WHERE tenant_id = ? AND is_active = 1",
                (credentials.tenant_id,),
            )
            cursor = conn.execute(
                """
                INSERT INTO acumatica_credentials
                    (tenant_id, host_url, username, password, company, branch, is_active, created_at)
                VALUES (?, ?, ?, ?, ?, ?, 1, ?)
                """,
                (
                    credentials.tenant_id,
                    credentials.host_url,
                    credentials.username,
                    seal(self._encryption, credentials.password, credentials.tenant_id),
                    credentials.company,
                    credentials.branch,
                    to_iso(credentials.created_at),
                ),
            )
            credentials.id = cursor.lastrowid
            credentials.is_active = True
        return credentials

    def get_active(self, tenant_id: str) -> Optional[AcumaticaCredentials]:
        conn = connect(self.db_path)
        try:
            row = conn.execute(
                "SELECT * FROM acumatica_credentials WHERE tenant_id = ? AND is_active = 1",
                (tenant_id,),
            ).fetchone()
            return self._row_to_credentials(row) if row else None
        finally:
            conn.close()

    def require_active(self, tenant_id: str) -> AcumaticaCredentials:
        """Active credentials for the tenant, or ConfigurationError."""
        credentials = self.get_active(tenant_id)
        if credentials is None:
            raise ConfigurationError(f"No active Acumatica credentials configured for tenant '{tenant_id}'")
        credentials.validate()
        return credentials

    def deactivate(self, tenant_id: str) -> int:
        conn = connect(self.db_path)
        try:
            cursor = conn.execute(
                "UPDATE acumatica_credentials SET is_active = 0 WHERE tenant_id = ? AND is_active = 1",
                (tenant_id,),
            )
            conn.commit()
            return cursor.rowcount
        finally:
            conn.close()

    def list_tenants(self) -> List[str]:
        conn = connect(self.db_path)
        try:
            rows = conn.execute(
                "SELECT tenant_id FROM acumatica_credentials WHERE is_active = 1 ORDER BY tenant_id"
            ).fetchall()
            return [r["tenant_id"] for r in rows]
        finally:
            conn.close()
