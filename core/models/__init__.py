"""Core data models - typed mirror records of Acumatica documents."""

from core.models.mirror import (
    ApplicationRecord,
    CustomerRecord,
    EntityType,
    InvoiceRecord,
    JobStatus,
    MirrorRecord,
    PaymentRecord,
    SyncMode,
)

__all__ = [
    "ApplicationRecord",
    "CustomerRecord",
    "EntityType",
    "InvoiceRecord",
    "JobStatus",
    "MirrorRecord",
    "PaymentRecord",
    "SyncMode",
]
