"""SQLite schema and connection helpers for the mirror database.

Every store opens a short-lived connection per operation, so concurrent
sync invocations only share state through the database file.
"""

import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional, Union


DEFAULT_DB_PATH = Path(__file__).resolve().parents[1] / "acumatica_sync.db"

PathLike = Union[str, Path]


def utcnow() -> datetime:
    return datetime.utcnow()


def to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def from_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def connect(db_path: PathLike = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Open a connection with Row access and a busy timeout."""
    conn = sqlite3.connect(str(db_path), timeout=30)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def immediate_transaction(db_path: PathLike) -> Iterator[sqlite3.Connection]:
    """Run a block under ``BEGIN IMMEDIATE``.

    The write lock is taken up front, so read-then-write sequences inside
    the block cannot interleave with another writer.
    """
    conn = connect(db_path)
    conn.isolation_level = None
    try:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")
    finally:
        conn.close()


SCHEMA = [
    # ------------------------------------------------------------------
    # Credentials: at most one active row per tenant
    # ------------------------------------------------------------------
    """
    CREATE TABLE IF NOT EXISTS acumatica_credentials (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        tenant_id TEXT NOT NULL,
        host_url TEXT NOT NULL,
        username TEXT NOT NULL,
        password TEXT NOT NULL,
        company TEXT,
        branch TEXT,
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_credentials_active_tenant
    ON acumatica_credentials(tenant_id) WHERE is_active = 1
    """,
    # ------------------------------------------------------------------
    # Session cache: at most one valid row per tenant
    # ------------------------------------------------------------------
    """
    CREATE TABLE IF NOT EXISTS acumatica_sessions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        tenant_id TEXT NOT NULL,
        session_cookie TEXT NOT NULL,
        created_at TEXT NOT NULL,
        expires_at TEXT NOT NULL,
        last_used_at TEXT NOT NULL,
        is_valid INTEGER NOT NULL DEFAULT 1
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_sessions_valid_tenant
    ON acumatica_sessions(tenant_id) WHERE is_valid = 1
    """,
    """
    CREATE TABLE IF NOT EXISTS acumatica_login_leases (
        tenant_id TEXT PRIMARY KEY,
        holder TEXT NOT NULL,
        expires_at TEXT NOT NULL
    )
    """,
    # ------------------------------------------------------------------
    # Mirror tables
    # ------------------------------------------------------------------
    """
    CREATE TABLE IF NOT EXISTS acumatica_customers (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        customer_id TEXT NOT NULL UNIQUE,
        customer_name TEXT,
        customer_status TEXT,
        customer_class TEXT,
        credit_limit TEXT,
        credit_days_past_due INTEGER,
        credit_verification_rules TEXT,
        credit_hold INTEGER,
        terms TEXT,
        currency_id TEXT,
        statement_type TEXT,
        print_statements INTEGER,
        send_statements_by_email INTEGER,
        primary_contact TEXT,
        phone_1 TEXT,
        email_address TEXT,
        price_class_id TEXT,
        last_modified_datetime TEXT,
        raw_data TEXT,
        last_sync_timestamp TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS acumatica_invoices (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        type TEXT NOT NULL,
        reference_number TEXT NOT NULL,
        status TEXT,
        invoice_date TEXT,
        post_period TEXT,
        customer TEXT,
        customer_name TEXT,
        customer_order TEXT,
        currency TEXT,
        amount TEXT,
        balance TEXT,
        due_date TEXT,
        cash_discount_date TEXT,
        terms TEXT,
        description TEXT,
        last_modified_datetime TEXT,
        raw_data TEXT,
        last_sync_timestamp TEXT NOT NULL,
        UNIQUE(type, reference_number)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_invoices_reference
    ON acumatica_invoices(reference_number)
    """,
    """
    CREATE TABLE IF NOT EXISTS acumatica_payments (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        type TEXT NOT NULL,
        reference_number TEXT NOT NULL,
        status TEXT,
        hold INTEGER,
        application_date TEXT,
        payment_amount TEXT,
        available_balance TEXT,
        customer_id TEXT,
        customer_name TEXT,
        payment_method TEXT,
        cash_account TEXT,
        payment_ref TEXT,
        description TEXT,
        currency_id TEXT,
        last_modified_datetime TEXT,
        raw_data TEXT,
        last_sync_timestamp TEXT NOT NULL,
        UNIQUE(type, reference_number)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_payments_application_date
    ON acumatica_payments(application_date)
    """,
    """
    CREATE TABLE IF NOT EXISTS payment_invoice_applications (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        payment_id INTEGER NOT NULL,
        payment_reference_number TEXT NOT NULL,
        payment_type TEXT NOT NULL,
        invoice_reference_number TEXT,
        customer_id TEXT,
        doc_type TEXT,
        amount_paid TEXT,
        balance TEXT,
        cash_discount_taken TEXT,
        application_date TEXT,
        application_period TEXT,
        post_period TEXT,
        due_date TEXT,
        invoice_date TEXT,
        customer_order TEXT,
        description TEXT,
        invoice_missing INTEGER NOT NULL DEFAULT 0,
        raw_data TEXT,
        created_at TEXT NOT NULL,
        FOREIGN KEY (payment_id) REFERENCES acumatica_payments(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_applications_payment
    ON payment_invoice_applications(payment_id)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_applications_invoice
    ON payment_invoice_applications(invoice_reference_number)
    """,
    # ------------------------------------------------------------------
    # Sync bookkeeping
    # ------------------------------------------------------------------
    """
    CREATE TABLE IF NOT EXISTS sync_status (
        entity_type TEXT PRIMARY KEY,
        lookback_minutes INTEGER,
        sync_enabled INTEGER NOT NULL DEFAULT 1,
        status TEXT NOT NULL DEFAULT 'idle',
        last_sync_started_at TEXT,
        last_successful_sync TEXT,
        records_synced INTEGER NOT NULL DEFAULT 0,
        records_created INTEGER NOT NULL DEFAULT 0,
        records_updated INTEGER NOT NULL DEFAULT 0,
        errors TEXT NOT NULL DEFAULT '[]',
        last_error TEXT,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS async_sync_jobs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        entity_type TEXT NOT NULL,
        start_date TEXT NOT NULL,
        end_date TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending'
            CHECK(status IN ('pending', 'running', 'completed', 'failed')),
        progress TEXT NOT NULL,
        error_message TEXT,
        created_by TEXT,
        workflow_id TEXT,
        created_at TEXT NOT NULL,
        started_at TEXT,
        completed_at TEXT,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_jobs_range
    ON async_sync_jobs(entity_type, start_date, end_date, status)
    """,
    """
    CREATE TABLE IF NOT EXISTS sync_change_logs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        entity_type TEXT NOT NULL,
        entity_key TEXT NOT NULL,
        change_type TEXT NOT NULL,
        old_status TEXT,
        new_status TEXT,
        details TEXT,
        sync_source TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_change_logs_entity
    ON sync_change_logs(entity_type, entity_key)
    """,
]


def init_db(db_path: PathLike = DEFAULT_DB_PATH) -> None:
    """Create all tables and indexes if they don't exist."""
    conn = sqlite3.connect(str(db_path))
    try:
        cursor = conn.cursor()
        for statement in SCHEMA:
            cursor.execute(statement)
        conn.commit()
    finally:
        conn.close()
