"""Typed mirror records.

Each record is a local projection of one Acumatica document. The flattened
columns come from the field mapping tables in ``core.mapping.tables``;
``raw_data`` keeps the untransformed ERP payload for fields nobody has
mapped yet.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class EntityType(str, Enum):
    """Entities mirrored from Acumatica."""
    CUSTOMER = "customer"
    INVOICE = "invoice"
    PAYMENT = "payment"
    PREPAYMENT = "prepayment"


class SyncMode(str, Enum):
    INCREMENTAL = "incremental"
    DATE_RANGE = "date_range"
    SINGLE = "single"
    WEBHOOK = "webhook"
    RECONCILIATION = "reconciliation"


class JobStatus(str, Enum):
    """SyncJob lifecycle: pending -> running -> completed | failed."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class MirrorRecord(BaseModel):
    """Base for mirror records."""

    model_config = ConfigDict(populate_by_name=True)

    raw_data: Dict[str, Any] = Field(default_factory=dict)
    last_sync_timestamp: Optional[datetime] = None

    def business_key(self) -> Tuple[str, ...]:
        raise NotImplementedError

    def columns(self) -> Dict[str, Any]:
        """Typed columns only, without raw payload or sync timestamp."""
        return self.model_dump(exclude={"raw_data", "last_sync_timestamp"})


class CustomerRecord(MirrorRecord):
    """Acumatica Customer. Keyed by customer_id."""
    customer_id: str
    customer_name: Optional[str] = None
    customer_status: Optional[str] = None
    customer_class: Optional[str] = None
    credit_limit: Optional[Decimal] = None
    credit_days_past_due: Optional[int] = None
    credit_verification_rules: Optional[str] = None
    credit_hold: Optional[bool] = None
    terms: Optional[str] = None
    currency_id: Optional[str] = None
    statement_type: Optional[str] = None
    print_statements: Optional[bool] = None
    send_statements_by_email: Optional[bool] = None
    primary_contact: Optional[str] = None
    phone_1: Optional[str] = None
    email_address: Optional[str] = None
    price_class_id: Optional[str] = None
    last_modified_datetime: Optional[datetime] = None

    def business_key(self) -> Tuple[str, ...]:
        return (self.customer_id,)


class InvoiceRecord(MirrorRecord):
    """Acumatica AR Invoice. Keyed by (type, reference_number)."""
    type: str = "Invoice"
    reference_number: str
    status: Optional[str] = None
    invoice_date: Optional[date] = None
    post_period: Optional[str] = None
    customer: Optional[str] = None
    customer_name: Optional[str] = None
    customer_order: Optional[str] = None
    currency: Optional[str] = None
    amount: Optional[Decimal] = None
    balance: Optional[Decimal] = None
    due_date: Optional[date] = None
    cash_discount_date: Optional[date] = None
    terms: Optional[str] = None
    description: Optional[str] = None
    last_modified_datetime: Optional[datetime] = None

    def business_key(self) -> Tuple[str, ...]:
        return (self.type, self.reference_number)


class PaymentRecord(MirrorRecord):
    """Acumatica AR Payment or Prepayment. Keyed by (type, reference_number)."""
    type: str = "Payment"
    reference_number: str
    status: Optional[str] = None
    hold: Optional[bool] = None
    application_date: Optional[date] = None
    payment_amount: Optional[Decimal] = None
    available_balance: Optional[Decimal] = None
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    payment_method: Optional[str] = None
    cash_account: Optional[str] = None
    payment_ref: Optional[str] = None
    description: Optional[str] = None
    currency_id: Optional[str] = None
    last_modified_datetime: Optional[datetime] = None

    def business_key(self) -> Tuple[str, ...]:
        return (self.type, self.reference_number)


class ApplicationRecord(BaseModel):
    """One line of a payment's application history."""

    model_config = ConfigDict(populate_by_name=True)

    payment_id: Optional[int] = None
    payment_reference_number: str
    payment_type: str = "Payment"
    invoice_reference_number: Optional[str] = None
    customer_id: Optional[str] = None
    doc_type: str = "Invoice"
    amount_paid: Optional[Decimal] = None
    balance: Optional[Decimal] = None
    cash_discount_taken: Optional[Decimal] = None
    application_date: Optional[date] = None
    application_period: Optional[str] = None
    post_period: Optional[str] = None
    due_date: Optional[date] = None
    invoice_date: Optional[date] = None
    customer_order: Optional[str] = None
    description: Optional[str] = None
    invoice_missing: bool = False
    raw_data: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_invoice(self) -> bool:
        return "invoice" in (self.doc_type or "").lower()
