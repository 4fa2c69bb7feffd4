"""Application-History Linker.

Materializes a payment's invoice applications from Acumatica's
``ApplicationHistory`` sub-resource into ``payment_invoice_applications``.

The ERP's history is authoritative and can shrink (an application gets
reversed), so a payment's rows are always replaced as a whole, never
merged.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from connectors.acumatica.acu_client import (
    AcumaticaClient,
    ExternalUnavailableError,
    NotFoundError,
    RowProcessingError,
)
from core.mapping.engine import get_path, normalize_reference
from core.mapping.tables import DEFAULT_TABLES, MappingTables
from core.models.mirror import ApplicationRecord, InvoiceRecord, PaymentRecord
from core.observability.logging import get_logger
from storage.mirror import MirrorStore
from sync.records import map_record

logger = get_logger(__name__)


VOIDED_PAYMENT_TYPE = "Voided Payment"


@dataclass
class LinkResult:
    """Outcome of linking one payment."""
    payment_type: str
    reference_number: str
    payment_id: int
    applications: int = 0
    skipped: int = 0
    fetched_invoices: List[str] = field(default_factory=list)
    missing_invoices: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "paymentType": self.payment_type,
            "referenceNumber": self.reference_number,
            "applications": self.applications,
            "skipped": self.skipped,
            "fetchedInvoices": self.fetched_invoices,
            "missingInvoices": self.missing_invoices,
        }


class ApplicationHistoryLinker:
    """Fetch and store payment -> invoice applications.

    Usage:
        linker = ApplicationHistoryLinker(client, mirror)
        result = await linker.link_payment("Payment", "000123")

    Args:
        invoices_only: keep only entries whose document type contains
            "invoice" (case-insensitive). Callers that want credit memo
            and other applications pass False.
    """

    def __init__(
        self,
        client: AcumaticaClient,
        mirror: MirrorStore,
        tables: MappingTables = DEFAULT_TABLES,
        invoices_only: bool = True,
    ):
        self.client = client
        self.mirror = mirror
        self.tables = tables
        self.invoices_only = invoices_only
        # refs already known to be unresolvable during this linker's lifetime
        self._unresolvable: Set[str] = set()

    async def link_payment(
        self,
        payment_type: str,
        reference_number: str,
        payment_data: Optional[Dict[str, Any]] = None,
        invoices_only: Optional[bool] = None,
    ) -> LinkResult:
        """Replace the stored applications of one mirrored payment.

        ``payment_data`` may be a detail payload that already carries
        ``ApplicationHistory``; otherwise the payment is fetched.

        Raises:
            RowProcessingError: the payment is not in the mirror
            NotFoundError: Acumatica no longer has the payment
        """
        reference_number = normalize_reference(reference_number)
        payment_id = self.mirror.get_payment_id(payment_type, reference_number)
        if payment_id is None:
            raise RowProcessingError("Payment is not in the mirror", key=f"{payment_type}:{reference_number}")

        if payment_data is None or payment_data.get("ApplicationHistory") is None:
            payment_data = await self.client.get_payment(payment_type, reference_number, expand_applications=True)

        return await self.link_from_detail(payment_id, payment_type, reference_number, payment_data, invoices_only)

    async def link_from_detail(
        self,
        payment_id: int,
        payment_type: str,
        reference_number: str,
        payment_data: Dict[str, Any],
        invoices_only: Optional[bool] = None,
    ) -> LinkResult:
        invoices_only = self.invoices_only if invoices_only is None else invoices_only
        result = LinkResult(payment_type=payment_type, reference_number=reference_number, payment_id=payment_id)
        payment_customer = get_path(payment_data, "CustomerID")

        applications: List[ApplicationRecord] = []
        for entry in payment_data.get("ApplicationHistory") or []:
            app = self.build_application(entry, payment_id, payment_type, reference_number, payment_customer)
            if app is None:
                logger.warning(
                    f"Skipping application without a document reference on payment {reference_number}"
                )
                result.skipped += 1
                continue
            if invoices_only and not app.is_invoice:
                result.skipped += 1
                continue

            if app.is_invoice:
                status = await self._ensure_invoice(app.invoice_reference_number)
                if status == "fetched":
                    result.fetched_invoices.append(app.invoice_reference_number)
                elif status == "missing":
                    app.invoice_missing = True
                    result.missing_invoices.append(app.invoice_reference_number)
            applications.append(app)

        result.applications = self.mirror.replace_applications(payment_id, applications)
        logger.info(
            f"Linked payment {reference_number}: {result.applications} applications",
            extra_fields={
                "payment_type": payment_type,
                "skipped": result.skipped,
                "missing_invoices": len(result.missing_invoices),
            },
        )
        return result

    def build_application(
        self,
        entry: Dict[str, Any],
        payment_id: int,
        payment_type: str,
        reference_number: str,
        payment_customer: Optional[str] = None,
    ) -> Optional[ApplicationRecord]:
        """Map one ApplicationHistory entry, or None when it names no document."""
        values = self.tables.application.apply(entry)
        if not values.get("invoice_reference_number"):
            return None
        if not values.get("customer_id"):
            values["customer_id"] = payment_customer
        return ApplicationRecord(
            payment_id=payment_id,
            payment_reference_number=reference_number,
            payment_type=payment_type,
            raw_data=dict(entry),
            **values,
        )

    async def _ensure_invoice(self, reference_number: str) -> str:
        """Make sure the invoice exists in the mirror, fetching it if needed.

        Returns "present", "fetched" or "missing".
        """
        if self.mirror.invoice_exists(reference_number):
            return "present"
        if reference_number in self._unresolvable:
            return "missing"

        try:
            data = await self.client.get_invoice(reference_number)
        except NotFoundError as e:
            self._unresolvable.add(reference_number)
            logger.warning(
                f"Invoice {reference_number} could not be fetched ({e.status_code}); "
                "storing application flagged as unresolved"
            )
            return "missing"
        except ExternalUnavailableError as e:
            # transient: flag this row only, a later link retries the lookup
            logger.warning(
                f"Invoice {reference_number} lookup failed ({e}); "
                "storing application flagged as unresolved"
            )
            return "missing"

        self.mirror.upsert(map_record(InvoiceRecord, self.tables.invoice, data))
        logger.info(f"Fetched missing invoice {reference_number} from Acumatica")
        return "fetched"

    async def link_voided_counterpart(self, reference_number: str) -> Optional[LinkResult]:
        """Mirror the ``Voided Payment`` document of a voided payment.

        Acumatica keeps a voided payment's reversal as a separate document
        of type "Voided Payment" with the same reference number. Returns
        None when there is no such document.
        """
        reference_number = normalize_reference(reference_number)
        try:
            data = await self.client.get_payment(VOIDED_PAYMENT_TYPE, reference_number, expand_applications=True)
        except NotFoundError:
            logger.debug(f"No voided counterpart for payment {reference_number}")
            return None

        record = map_record(PaymentRecord, self.tables.payment, data)
        outcome = self.mirror.upsert(record)
        return await self.link_from_detail(outcome.row_id, record.type, record.reference_number, data)
