"""Reconciliation / repair jobs for the payment mirror.

Exposes:
- verify_payment_dates(start, end, fix) -> dict
- verify_sync_health(sample_size) -> dict
- resync_payment_range(start, end) -> dict

These run outside the normal sync path and are used when sync health is
suspect. Mirror rows are never deleted: a payment the ERP no longer returns
is reported for an operator to act on.
"""

import time
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from connectors.acumatica.acu_client import AcumaticaClient, NotFoundError
from connectors.acumatica.odata import DateLike, and_filters, date_between, parse_boundary
from core.audit.events import ChangeLogger
from core.mapping.engine import Coercion, get_path, normalize_reference, rule
from core.mapping.tables import DEFAULT_TABLES, MappingTables
from core.models.mirror import EntityType, PaymentRecord, SyncMode
from core.observability.logging import get_logger, with_correlation
from storage.mirror import MirrorStore
from sync.applications import VOIDED_PAYMENT_TYPE, ApplicationHistoryLinker
from sync.records import map_record

logger = get_logger(__name__)


# =============================================================================
# Configuration & Data Structures
# =============================================================================

MAX_PAYMENTS_PER_RUN = 20
HEALTHY_SYNC_RATE = 95.0
WARNING_SYNC_RATE = 85.0

CREDIT_MEMO_FILTER = "Type ne 'Credit Memo'"
RESYNC_PAYMENT_TYPES = ("Payment", VOIDED_PAYMENT_TYPE)

_APPLICATION_DATE = rule("application_date", "ApplicationDate", "PaymentDate", coercion=Coercion.DATE)


class DriftKind(str, Enum):
    """Why a mirror payment disagrees with Acumatica."""
    DATE_DRIFT = "date_drift"      # mirror-only in the window; ERP date moved
    FIELD_DRIFT = "field_drift"    # in both, status or date differ
    NOT_FOUND = "not_found"        # point lookup failed (404/500)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"
    NO_DATA = "no_data"


@dataclass
class ErpPaymentSnapshot:
    """The fields reconciliation compares."""
    type: str
    reference_number: str
    status: Optional[str]
    application_date: Optional[date]
    payment_amount: Any = None

    @property
    def key(self) -> str:
        return payment_key(self.type, self.reference_number)

    @classmethod
    def from_erp(cls, data: Dict[str, Any]) -> "ErpPaymentSnapshot":
        return cls(
            type=get_path(data, "Type") or "",
            reference_number=normalize_reference(get_path(data, "ReferenceNbr")),
            status=get_path(data, "Status"),
            application_date=_APPLICATION_DATE.extract(data),
            payment_amount=get_path(data, "PaymentAmount"),
        )


@dataclass
class PaymentDrift:
    """One mirror payment that disagrees with Acumatica, with before/after."""
    kind: DriftKind
    type: str
    reference_number: str
    customer_name: Optional[str]
    before: Dict[str, Any]
    after: Dict[str, Any] = field(default_factory=dict)
    fixed: bool = False

    @property
    def changes(self) -> Dict[str, Any]:
        """Columns whose ERP value differs from the mirror."""
        return {k: v for k, v in self.after.items() if v is not None and v != self.before.get(k)}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "type": self.type,
            "referenceNumber": self.reference_number,
            "customerName": self.customer_name,
            "before": _jsonable(self.before),
            "after": _jsonable(self.after),
            "fixed": self.fixed,
        }


# =============================================================================
# Utility Functions
# =============================================================================

def payment_key(payment_type: str, reference_number: str) -> str:
    return f"{payment_type}:{reference_number}"


def _jsonable(values: Dict[str, Any]) -> Dict[str, Any]:
    out = {}
    for k, v in values.items():
        if isinstance(v, date):
            out[k] = v.isoformat()
        elif isinstance(v, Decimal):
            out[k] = str(v)
        else:
            out[k] = v
    return out


def _mirror_fields(payment: PaymentRecord) -> Dict[str, Any]:
    return {"status": payment.status, "application_date": payment.application_date}


def _erp_fields(snapshot: ErpPaymentSnapshot) -> Dict[str, Any]:
    return {"status": snapshot.status, "application_date": snapshot.application_date}


def classify_health(sync_rate: float) -> HealthStatus:
    if sync_rate >= HEALTHY_SYNC_RATE:
        return HealthStatus.HEALTHY
    if sync_rate >= WARNING_SYNC_RATE:
        return HealthStatus.WARNING
    return HealthStatus.CRITICAL


HEALTH_RECOMMENDATIONS = {
    HealthStatus.HEALTHY: "Payment sync is healthy",
    HealthStatus.WARNING: "Some mismatches detected. Consider running a date range resync.",
    HealthStatus.CRITICAL: "Critical sync issues detected. Immediate attention required.",
    HealthStatus.NO_DATA: "No recent payments to verify",
}


# =============================================================================
# Reconciliation Engine
# =============================================================================

class PaymentReconciler:
    """Compare Acumatica payments with the mirror and repair drift.

    Usage:
        reconciler = PaymentReconciler(client, mirror)
        report = await reconciler.verify_payment_dates("2024-05-01", "2024-05-31", fix=False)
    """

    def __init__(
        self,
        client: AcumaticaClient,
        mirror: MirrorStore,
        tables: MappingTables = DEFAULT_TABLES,
        change_logger: Optional[ChangeLogger] = None,
        linker: Optional[ApplicationHistoryLinker] = None,
        max_payments_per_run: int = MAX_PAYMENTS_PER_RUN,
        page_size: int = 500,
    ):
        self.client = client
        self.mirror = mirror
        self.tables = tables
        self.change_logger = change_logger
        self.linker = linker or ApplicationHistoryLinker(client, mirror, tables)
        self.max_payments_per_run = max_payments_per_run
        self.page_size = page_size

    # =========================================================================
    # Payment date verification
    # =========================================================================

    async def verify_payment_dates(self, start: DateLike, end: DateLike, fix: bool = False) -> Dict[str, Any]:
        """Diff ERP and mirror payments whose application date is in [start, end].

        Three sets are computed, keyed by ``type:reference_number``:
        in Acumatica but not the mirror (missed inserts), in the mirror but
        not Acumatica (each gets a point lookup), and in both with differing
        status or application date. Before/after values are always reported;
        with ``fix`` the drifted mirror fields are overwritten.
        """
        window_start = parse_boundary(start)
        window_end = parse_boundary(end, end_of_day=True)
        started = time.monotonic()

        with with_correlation(entity_type=EntityType.PAYMENT.value, sync_mode=SyncMode.RECONCILIATION.value):
            erp = await self._erp_payments(window_start, window_end)
            mirror = {
                payment_key(p.type, p.reference_number): p
                for p in self.mirror.list_payments_between(window_start.date(), window_end.date())
            }

            in_erp_only = sorted(k for k in erp if k not in mirror)
            in_mirror_only = sorted(k for k in mirror if k not in erp)

            drifts: List[PaymentDrift] = []
            errors: List[str] = []

            for key in sorted(k for k in mirror if k in erp):
                drift = self._compare(mirror[key], erp[key], DriftKind.FIELD_DRIFT)
                if drift:
                    drifts.append(drift)

            for key in in_mirror_only:
                payment = mirror[key]
                try:
                    data = await self.client.get_payment(payment.type, payment.reference_number, expand_applications=False)
                except NotFoundError:
                    drifts.append(PaymentDrift(
                        kind=DriftKind.NOT_FOUND,
                        type=payment.type,
                        reference_number=payment.reference_number,
                        customer_name=payment.customer_name,
                        before=_mirror_fields(payment),
                    ))
                    continue
                drift = self._compare(payment, ErpPaymentSnapshot.from_erp(data), DriftKind.DATE_DRIFT)
                if drift:
                    drifts.append(drift)

            fixed: List[PaymentDrift] = []
            if fix:
                for drift in drifts:
                    if drift.kind == DriftKind.NOT_FOUND:
                        continue
                    if self._apply_fix(drift, errors):
                        fixed.append(drift)

            logger.info(
                f"Payment date verification: {len(drifts)} drifted, {len(fixed)} fixed",
                extra_fields={
                    "acumatica_count": len(erp),
                    "mirror_count": len(mirror),
                    "in_acumatica_not_db": len(in_erp_only),
                    "in_db_not_acumatica": len(in_mirror_only),
                },
            )

        return {
            "success": True,
            "dateRange": {"startDate": window_start.date().isoformat(), "endDate": window_end.date().isoformat()},
            "acumaticaCount": len(erp),
            "dbCount": len(mirror),
            "inAcumaticaNotDb": in_erp_only,
            "inDbNotAcumatica": in_mirror_only,
            "mismatchedPayments": [d.to_dict() for d in drifts if d.kind == DriftKind.FIELD_DRIFT],
            "stalePayments": [d.to_dict() for d in drifts if d.kind != DriftKind.FIELD_DRIFT],
            "notFound": [payment_key(d.type, d.reference_number) for d in drifts if d.kind == DriftKind.NOT_FOUND],
            "fixedPayments": [d.to_dict() for d in fixed],
            "fixMode": fix,
            "errors": errors,
            "durationMs": int((time.monotonic() - started) * 1000),
        }

    async def _erp_payments(self, start, end) -> Dict[str, ErpPaymentSnapshot]:
        odata_filter = and_filters(date_between(start, end, field="ApplicationDate"), CREDIT_MEMO_FILTER)
        snapshots: Dict[str, ErpPaymentSnapshot] = {}
        async for _, page in self.client.list_pages("Payment", filter=odata_filter, page_size=self.page_size):
            for data in page:
                snapshot = ErpPaymentSnapshot.from_erp(data)
                if snapshot.reference_number:
                    snapshots[snapshot.key] = snapshot
        return snapshots

    def _compare(self, payment: PaymentRecord, snapshot: ErpPaymentSnapshot, kind: DriftKind) -> Optional[PaymentDrift]:
        drift = PaymentDrift(
            kind=kind,
            type=payment.type,
            reference_number=payment.reference_number,
            customer_name=payment.customer_name,
            before=_mirror_fields(payment),
            after=_erp_fields(snapshot),
        )
        return drift if drift.changes else None

    def _apply_fix(self, drift: PaymentDrift, errors: List[str]) -> bool:
        changes = drift.changes
        if not self.mirror.update_payment_fields(drift.type, drift.reference_number, changes):
            errors.append(f"Failed to fix {drift.reference_number}: payment no longer in mirror")
            return False
        drift.fixed = True
        if self.change_logger:
            self.change_logger.record_upsert(
                EntityType.PAYMENT.value,
                payment_key(drift.type, drift.reference_number),
                created=False,
                old_status=drift.before.get("status"),
                new_status=drift.after.get("status") or drift.before.get("status"),
                sync_source=SyncMode.RECONCILIATION.value,
                details={"before": _jsonable(drift.before), "after": _jsonable(changes)},
            )
        return True

    # =========================================================================
    # Sync health
    # =========================================================================

    async def verify_sync_health(self, sample_size: int = 50) -> Dict[str, Any]:
        """Spot-check the most recently modified mirror payments against Acumatica."""
        started = time.monotonic()
        sample = self.mirror.recent_payments(sample_size)
        if not sample:
            return {
                "success": True,
                "healthStatus": HealthStatus.NO_DATA.value,
                "message": HEALTH_RECOMMENDATIONS[HealthStatus.NO_DATA],
                "totalChecked": 0,
                "durationMs": int((time.monotonic() - started) * 1000),
            }

        in_sync = 0
        mismatches: List[Dict[str, Any]] = []
        errors: List[Dict[str, Any]] = []
        for payment in sample:
            try:
                data = await self.client.get_payment(payment.type, payment.reference_number, expand_applications=False)
            except NotFoundError:
                errors.append({"paymentRef": payment.reference_number, "error": "Payment not found in Acumatica"})
                continue

            erp_status = get_path(data, "Status")
            if erp_status == payment.status:
                in_sync += 1
            else:
                mismatches.append({
                    "paymentRef": payment.reference_number,
                    "type": payment.type,
                    "customerName": payment.customer_name,
                    "dbStatus": payment.status,
                    "acumaticaStatus": erp_status,
                    "acumaticaLastModified": get_path(data, "LastModifiedDateTime"),
                })

        sync_rate = round(in_sync / len(sample) * 100, 1)
        health = classify_health(sync_rate)
        logger.info(f"Payment sync health: {health.value} ({sync_rate}%)")
        return {
            "success": True,
            "healthStatus": health.value,
            "syncRate": sync_rate,
            "totalChecked": len(sample),
            "inSync": in_sync,
            "outOfSync": len(mismatches),
            "mismatches": mismatches,
            "errors": errors,
            "recommendation": HEALTH_RECOMMENDATIONS[health],
            "durationMs": int((time.monotonic() - started) * 1000),
        }

    # =========================================================================
    # Payment range resync
    # =========================================================================

    async def resync_payment_range(self, start: DateLike, end: DateLike) -> Dict[str, Any]:
        """Re-fetch mirrored payments in the range and replace their applications.

        At most ``max_payments_per_run`` references are processed per call,
        oldest application date first; the response says how many remain.
        Both the Payment and the Voided Payment document are fetched.
        """
        window_start = parse_boundary(start)
        window_end = parse_boundary(end, end_of_day=True)
        started = time.monotonic()

        in_range = self.mirror.list_payments_between(window_start.date(), window_end.date())
        references: List[str] = []
        for payment in in_range:
            if payment.reference_number not in references:
                references.append(payment.reference_number)
        total_refs = len(references)
        batch = references[: self.max_payments_per_run]

        results: Dict[str, Any] = {
            "success": True,
            "totalInRange": len(in_range),
            "totalProcessed": 0,
            "successCount": 0,
            "errorCount": 0,
            "applicationsLinked": 0,
            "statusChanges": [],
            "errors": [],
        }

        with with_correlation(entity_type=EntityType.PAYMENT.value, sync_mode=SyncMode.RECONCILIATION.value):
            for reference in batch:
                try:
                    fetched = await self._resync_reference(reference, results)
                except NotFoundError as e:
                    results["errors"].append({"paymentRef": reference, "error": str(e)})
                    results["errorCount"] += 1
                    continue
                except ValueError as e:
                    results["errors"].append({"paymentRef": reference, "error": str(e)})
                    results["errorCount"] += 1
                    continue
                results["totalProcessed"] += 1
                if fetched:
                    results["successCount"] += 1
                else:
                    results["errors"].append({"paymentRef": reference, "error": "Payment not found in Acumatica"})
                    results["errorCount"] += 1

        remaining = total_refs - len(batch)
        if remaining > 0:
            results["message"] = (
                f"Processed {results['totalProcessed']} of {total_refs} payments. Run again to process more."
            )
        results["remaining"] = max(remaining, 0)
        results["durationMs"] = int((time.monotonic() - started) * 1000)
        return results

    async def _resync_reference(self, reference: str, results: Dict[str, Any]) -> bool:
        """Fetch every payment type for one reference. False if none exist."""
        fetched = False
        for payment_type in RESYNC_PAYMENT_TYPES:
            try:
                data = await self.client.get_payment(payment_type, reference, expand_applications=True)
            except NotFoundError:
                continue
            fetched = True

            record = map_record(PaymentRecord, self.tables.payment, data)
            outcome = self.mirror.upsert(record)
            link = await self.linker.link_from_detail(outcome.row_id, record.type, record.reference_number, data)
            results["applicationsLinked"] += link.applications

            old_status = outcome.previous_status
            if not outcome.created and old_status != record.status:
                results["statusChanges"].append({
                    "referenceNumber": record.reference_number,
                    "type": record.type,
                    "oldStatus": old_status,
                    "newStatus": record.status,
                })
            if self.change_logger:
                self.change_logger.record_upsert(
                    EntityType.PAYMENT.value,
                    payment_key(record.type, record.reference_number),
                    created=outcome.created,
                    old_status=old_status,
                    new_status=record.status,
                    sync_source=SyncMode.RECONCILIATION.value,
                )
        return fetched
