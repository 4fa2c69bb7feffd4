"""Local mirror of Acumatica customers, invoices, payments and applications.

Rows are upserted by business key (customer_id, or type + reference_number),
never by an internal ERP id, because the same document is fetched many
times. Decimals and dates are stored as text, booleans as integers and
``raw_data`` as JSON.
"""

import json
import sqlite3
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple, Type

from core.models.mirror import (
    ApplicationRecord,
    CustomerRecord,
    InvoiceRecord,
    MirrorRecord,
    PaymentRecord,
)
from storage.db import DEFAULT_DB_PATH, PathLike, connect, immediate_transaction, to_iso, utcnow


TABLES: Dict[Type[MirrorRecord], Tuple[str, Tuple[str, ...]]] = {
    CustomerRecord: ("acumatica_customers", ("customer_id",)),
    InvoiceRecord: ("acumatica_invoices", ("type", "reference_number")),
    PaymentRecord: ("acumatica_payments", ("type", "reference_number")),
}


def to_db_value(value: Any) -> Any:
    """Convert a typed column value to its sqlite representation."""
    if value is None:
        return None
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return value


@dataclass
class UpsertOutcome:
    """What an upsert did to the mirror."""
    action: str  # "created" | "updated"
    row_id: int
    previous: Optional[Dict[str, Any]] = None

    @property
    def created(self) -> bool:
        return self.action == "created"

    @property
    def previous_status(self) -> Optional[str]:
        if not self.previous:
            return None
        return self.previous.get("status") or self.previous.get("customer_status")


class MirrorStore:
    """SQLite-backed mirror store."""

    def __init__(self, db_path: PathLike = DEFAULT_DB_PATH):
        self.db_path = db_path

    # =========================================================================
    # Generic entity access
    # =========================================================================

    @staticmethod
    def _row_to_dict(row: sqlite3.Row) -> Dict[str, Any]:
        data = dict(row)
        if data.get("raw_data"):
            data["raw_data"] = json.loads(data["raw_data"])
        return data

    def _find(self, conn: sqlite3.Connection, record_type: Type[MirrorRecord], key: Tuple[str, ...]) -> Optional[sqlite3.Row]:
        table, key_columns = TABLES[record_type]
        where = " AND ".join(f"{c} = ?" for c in key_columns)
        return conn.execute(f"SELECT * FROM {table} WHERE {where}", key).fetchone()

    def get(self, record_type: Type[MirrorRecord], *key: str) -> Optional[Dict[str, Any]]:
        conn = connect(self.db_path)
        try:
            row = self._find(conn, record_type, tuple(key))
            return self._row_to_dict(row) if row else None
        finally:
            conn.close()

    def get_record(self, record_type: Type[MirrorRecord], *key: str) -> Optional[MirrorRecord]:
        """Like ``get`` but returns the typed record."""
        data = self.get(record_type, *key)
        if data is None:
            return None
        data.pop("id", None)
        return record_type.model_validate(data)

    def upsert(self, record: MirrorRecord) -> UpsertOutcome:
        """Insert or update one record by its business key.

        A unique-key collision on insert (another invocation inserted the
        same document meanwhile) falls back to an update.
        """
        record_type = type(record)
        table, key_columns = TABLES[record_type]
        key = record.business_key()

        values = {k: to_db_value(v) for k, v in record.columns().items()}
        values["raw_data"] = json.dumps(record.raw_data, default=str)
        values["last_sync_timestamp"] = to_iso(record.last_sync_timestamp or utcnow())

        conn = connect(self.db_path)
        try:
            existing = self._find(conn, record_type, key)
            if existing is None:
                columns = ", ".join(values)
                placeholders = ", ".join("?" for _ in values)
                try:
                    cursor = conn.execute(
                        f"INSERT INTO {table} ({columns}) VALUES ({placeholders})",
                        list(values.values()),
                    )
                    conn.commit()
                    return UpsertOutcome(action="created", row_id=cursor.lastrowid)
                except sqlite3.IntegrityError:
                    conn.rollback()
                    existing = self._find(conn, record_type, key)
                    if existing is None:
                        raise

            assignments = ", ".join(f"{c} = ?" for c in values if c not in key_columns)
            params = [v for c, v in values.items() if c not in key_columns] + [existing["id"]]
            conn.execute(f"UPDATE {table} SET {assignments} WHERE id = ?", params)
            conn.commit()
            return UpsertOutcome(action="updated", row_id=existing["id"], previous=self._row_to_dict(existing))
        finally:
            conn.close()

    def count(self, record_type: Type[MirrorRecord]) -> int:
        table, _ = TABLES[record_type]
        conn = connect(self.db_path)
        try:
            return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
        finally:
            conn.close()

    # =========================================================================
    # Invoices
    # =========================================================================

    def invoice_exists(self, reference_number: str) -> bool:
        """True if any invoice-type document with this reference is mirrored."""
        conn = connect(self.db_path)
        try:
            row = conn.execute(
                "SELECT 1 FROM acumatica_invoices WHERE reference_number = ? LIMIT 1",
                (reference_number,),
            ).fetchone()
            return row is not None
        finally:
            conn.close()

    # =========================================================================
    # Payments
    # =========================================================================

    def get_payment_id(self, payment_type: str, reference_number: str) -> Optional[int]:
        conn = connect(self.db_path)
        try:
            row = conn.execute(
                "SELECT id FROM acumatica_payments WHERE type = ? AND reference_number = ?",
                (payment_type, reference_number),
            ).fetchone()
            return row["id"] if row else None
        finally:
            conn.close()

    def list_payments_between(self, start: date, end: date) -> List[PaymentRecord]:
        """Mirror payments whose application_date falls in [start, end]."""
        conn = connect(self.db_path)
        try:
            rows = conn.execute(
                """
                SELECT * FROM acumatica_payments
                WHERE application_date >= ? AND application_date <= ? AND type != 'Credit Memo'
                ORDER BY application_date, reference_number
                """,
                (start.isoformat(), end.isoformat()),
            ).fetchall()
        finally:
            conn.close()
        return [self._to_payment(r) for r in rows]

    def recent_payments(self, limit: int) -> List[PaymentRecord]:
        """Most recently modified payments, for health sampling."""
        conn = connect(self.db_path)
        try:
            rows = conn.execute(
                """
                SELECT * FROM acumatica_payments
                ORDER BY COALESCE(last_modified_datetime, last_sync_timestamp) DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        finally:
            conn.close()
        return [self._to_payment(r) for r in rows]

    def update_payment_fields(self, payment_type: str, reference_number: str, fields: Dict[str, Any]) -> bool:
        """Overwrite selected columns of one payment (reconciliation fixes)."""
        if not fields:
            return False
        allowed = set(PaymentRecord.model_fields) - {"type", "reference_number", "raw_data"}
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Unknown payment columns: {', '.join(sorted(unknown))}")

        values = {k: to_db_value(v) for k, v in fields.items()}
        values["last_sync_timestamp"] = to_iso(utcnow())
        assignments = ", ".join(f"{c} = ?" for c in values)

        conn = connect(self.db_path)
        try:
            cursor = conn.execute(
                f"UPDATE acumatica_payments SET {assignments} WHERE type = ? AND reference_number = ?",
                list(values.values()) + [payment_type, reference_number],
            )
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    def _to_payment(self, row: sqlite3.Row) -> PaymentRecord:
        data = self._row_to_dict(row)
        data.pop("id", None)
        return PaymentRecord.model_validate(data)

    # =========================================================================
    # Applications
    # =========================================================================

    def replace_applications(self, payment_id: int, applications: List[ApplicationRecord]) -> int:
        """Delete every application row of the payment, then insert the new set.

        Runs in one transaction: readers see either the old or the new set.
        """
        now = to_iso(utcnow())
        with immediate_transaction(self.db_path) as conn:
            conn.execute("DELETE FROM payment_invoice_applications WHERE payment_id = ?", (payment_id,))
            for app in applications:
                values = {k: to_db_value(v) for k, v in app.model_dump().items()}
                values["payment_id"] = payment_id
                values["created_at"] = now
                columns = ", ".join(values)
                placeholders = ", ".join("?" for _ in values)
                conn.execute(
                    f"INSERT INTO payment_invoice_applications ({columns}) VALUES ({placeholders})",
                    list(values.values()),
                )
        return len(applications)

    def list_applications(self, payment_id: int) -> List[Dict[str, Any]]:
        conn = connect(self.db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM payment_invoice_applications WHERE payment_id = ? ORDER BY id",
                (payment_id,),
            ).fetchall()
            return [self._row_to_dict(r) for r in rows]
        finally:
            conn.close()
