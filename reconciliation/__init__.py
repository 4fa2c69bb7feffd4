"""Reconciliation and repair jobs comparing Acumatica with the mirror."""

from reconciliation.engine import (
    MAX_PAYMENTS_PER_RUN,
    DriftKind,
    HealthStatus,
    PaymentDrift,
    PaymentReconciler,
    classify_health,
)

__all__ = [
    "MAX_PAYMENTS_PER_RUN",
    "DriftKind",
    "HealthStatus",
    "PaymentDrift",
    "PaymentReconciler",
    "classify_health",
]
