"""Entity Sync Engine.

One generic engine, instantiated per entity type with an ``EntitySyncSpec``,
that pages Acumatica's filtered list endpoint and upserts each record into
the mirror by business key.

Modes:
- incremental: window = [now - lookback, now], lookback from the request,
  else the entity's sync_status row, else the configured fallback
- date-range: window = [start, end], progress persisted to a SyncJob and
  resumable after the soft deadline via ``next_skip``

Row failures, including an ERP error while linking one payment, are
collected and never abort the window. Failures of the list request itself
and login failures abort the window and fail the SyncJob.
"""

import sqlite3
import time
from contextlib import aclosing
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, Union

from connectors.acumatica.acu_client import (
    AcumaticaClient,
    AcumaticaError,
    AuthenticationError,
    ConfigurationError,
    RowProcessingError,
)
from connectors.acumatica.odata import DateLike, and_filters, date_between, modified_since, parse_boundary
from core.audit.events import ChangeLogger
from core.config import SyncSettings, get_settings
from core.mapping.engine import FieldMappingTable, get_path, normalize_reference
from core.mapping.tables import DEFAULT_TABLES, MappingTables
from core.models.mirror import (
    CustomerRecord,
    EntityType,
    InvoiceRecord,
    JobStatus,
    MirrorRecord,
    PaymentRecord,
    SyncMode,
)
from core.observability.logging import get_logger, log_sync_complete, log_sync_error, log_sync_start, with_correlation
from core.observability.metrics import get_metrics
from storage.db import utcnow
from storage.jobs import JobProgress, SyncJobStore
from storage.mirror import MirrorStore, UpsertOutcome
from storage.sync_status import SyncStatusStore
from sync.applications import ApplicationHistoryLinker
from sync.records import map_record

logger = get_logger(__name__)


# =============================================================================
# Entity definitions
# =============================================================================

@dataclass(frozen=True)
class EntitySyncSpec:
    """How one entity type is fetched and stored."""
    entity_type: EntityType
    erp_entity: str
    record_class: Type[MirrorRecord]
    table_name: str
    expand: Tuple[str, ...] = ()
    base_filter: Optional[str] = None
    orderby: Optional[str] = None
    links_applications: bool = False

    def table(self, tables: MappingTables) -> FieldMappingTable:
        return getattr(tables, self.table_name)


ENTITY_SPECS: Dict[EntityType, EntitySyncSpec] = {
    EntityType.CUSTOMER: EntitySyncSpec(
        entity_type=EntityType.CUSTOMER,
        erp_entity="Customer",
        record_class=CustomerRecord,
        table_name="customer",
        expand=("MainContact",),
    ),
    EntityType.INVOICE: EntitySyncSpec(
        entity_type=EntityType.INVOICE,
        erp_entity="Invoice",
        record_class=InvoiceRecord,
        table_name="invoice",
    ),
    EntityType.PAYMENT: EntitySyncSpec(
        entity_type=EntityType.PAYMENT,
        erp_entity="Payment",
        record_class=PaymentRecord,
        table_name="payment",
        base_filter="Type ne 'Credit Memo'",
        links_applications=True,
    ),
    EntityType.PREPAYMENT: EntitySyncSpec(
        entity_type=EntityType.PREPAYMENT,
        erp_entity="Payment",
        record_class=PaymentRecord,
        table_name="payment",
        base_filter="Type eq 'Prepayment'",
        orderby="CreatedDateTime desc",
    ),
}


def entity_spec(entity: Union[str, EntityType]) -> EntitySyncSpec:
    """Look up the EntitySyncSpec for an entity name ("invoice", "invoices", ...)."""
    name = entity.value if isinstance(entity, EntityType) else str(entity).lower().strip()
    if name.endswith("s") and name[:-1] in {e.value for e in EntityType}:
        name = name[:-1]
    try:
        return ENTITY_SPECS[EntityType(name)]
    except ValueError:
        raise ConfigurationError(f"Unknown entity type: {entity}")


# =============================================================================
# Result
# =============================================================================

@dataclass
class SyncResult:
    """Counts for one sync window (or one chunk of it)."""
    entity_type: str
    mode: str
    created: int = 0
    updated: int = 0
    total_fetched: int = 0
    errors: List[str] = field(default_factory=list)
    total_errors: int = 0
    applications_linked: int = 0
    duration_ms: int = 0
    next_skip: int = 0
    done: bool = True
    cancelled: bool = False
    job_id: Optional[int] = None
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    max_errors: int = 150

    @property
    def success(self) -> bool:
        return not self.cancelled

    def add_error(self, message: str) -> None:
        self.total_errors += 1
        if len(self.errors) < self.max_errors:
            self.errors.append(message)

    def progress(self) -> JobProgress:
        return JobProgress(
            created=self.created,
            updated=self.updated,
            total=self.total_fetched,
            errors=list(self.errors),
            total_errors=self.total_errors,
            next_skip=self.next_skip,
            done=self.done,
        )

    @classmethod
    def resume(cls, entity_type: str, mode: str, progress: JobProgress, max_errors: int = 150) -> "SyncResult":
        """Continue counting from a job's saved progress."""
        return cls(
            entity_type=entity_type,
            mode=mode,
            created=progress.created,
            updated=progress.updated,
            total_fetched=progress.total,
            errors=list(progress.errors),
            total_errors=max(progress.total_errors, len(progress.errors)),
            next_skip=progress.next_skip,
            max_errors=max_errors,
        )

    def to_response(self, max_errors: int = 10) -> Dict[str, Any]:
        """The JSON envelope returned to callers."""
        body: Dict[str, Any] = {
            "success": self.success,
            "entityType": self.entity_type,
            "mode": self.mode,
            "created": self.created,
            "updated": self.updated,
            "totalFetched": self.total_fetched,
            "errors": self.errors[:max_errors],
            "totalErrors": self.total_errors,
            "durationMs": self.duration_ms,
        }
        if self.applications_linked:
            body["applicationsLinked"] = self.applications_linked
        if self.job_id is not None:
            body["jobId"] = self.job_id
        if not self.done:
            body["done"] = False
            body["nextSkip"] = self.next_skip
        if self.cancelled:
            body["cancelled"] = True
        if self.window_start and self.window_end:
            body["window"] = {"start": self.window_start.isoformat(), "end": self.window_end.isoformat()}
        return body


# =============================================================================
# Engine
# =============================================================================

class EntitySyncEngine:
    """Brings the mirror up to date with one entity type.

    Usage:
        engine = EntitySyncEngine(client, mirror, entity_spec("customer"))
        result = await engine.run_incremental(lookback_minutes=60)
    """

    def __init__(
        self,
        client: AcumaticaClient,
        mirror: MirrorStore,
        spec: EntitySyncSpec,
        tables: MappingTables = DEFAULT_TABLES,
        job_store: Optional[SyncJobStore] = None,
        status_store: Optional[SyncStatusStore] = None,
        change_logger: Optional[ChangeLogger] = None,
        settings: Optional[SyncSettings] = None,
        linker: Optional[ApplicationHistoryLinker] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.mirror = mirror
        self.spec = spec
        self.tables = tables
        self.table = spec.table(tables)
        self.job_store = job_store
        self.status_store = status_store
        self.change_logger = change_logger
        self.settings = settings or get_settings()
        self.linker = linker
        if spec.links_applications and self.linker is None:
            self.linker = ApplicationHistoryLinker(client, mirror, tables)
        self._clock = clock

    @property
    def entity_name(self) -> str:
        return self.spec.entity_type.value

    # =========================================================================
    # Incremental
    # =========================================================================

    async def run_incremental(self, lookback_minutes: Optional[int] = None) -> SyncResult:
        """Sync records modified in the last ``lookback_minutes``."""
        if lookback_minutes is not None and lookback_minutes <= 0:
            raise ConfigurationError("lookbackMinutes must be a positive number")
        if lookback_minutes is None:
            default = self.settings.default_lookback_minutes
            lookback_minutes = (
                self.status_store.lookback_minutes(self.entity_name, default) if self.status_store else default
            )

        now = utcnow()
        since = now - timedelta(minutes=lookback_minutes)
        result = SyncResult(
            entity_type=self.entity_name,
            mode=SyncMode.INCREMENTAL.value,
            window_start=since,
            window_end=now,
            max_errors=self.settings.max_status_errors,
        )
        odata_filter = and_filters(modified_since(since), self.spec.base_filter)

        with with_correlation(entity_type=self.entity_name, sync_mode=SyncMode.INCREMENTAL.value):
            log_sync_start(self.entity_name, SyncMode.INCREMENTAL.value, lookback_minutes=lookback_minutes)
            if self.status_store:
                self.status_store.mark_started(self.entity_name)
            get_metrics().record_sync_started(self.entity_name)
            started = self._clock()
            try:
                await self._run_window(odata_filter, result)
            except Exception as e:
                if self.status_store:
                    self.status_store.mark_failed(self.entity_name, str(e))
                get_metrics().record_sync_failed(self.entity_name)
                log_sync_error(self.entity_name, str(e))
                raise

            result.duration_ms = int((self._clock() - started) * 1000)
            if self.status_store:
                self.status_store.mark_completed(self.entity_name, result.created, result.updated, result.errors)
            self._finish(result)
        return result

    # =========================================================================
    # Date range
    # =========================================================================

    async def run_date_range(
        self,
        start: DateLike,
        end: DateLike,
        job_id: Optional[int] = None,
        deadline_seconds: Optional[float] = None,
    ) -> SyncResult:
        """Sync records modified within [start, end].

        With ``job_id`` the job is moved to running, progress is saved every
        ``progress_interval`` records, and the run resumes from the job's
        ``next_skip``. When ``deadline_seconds`` elapses the chunk stops after
        the current page with ``done=False``; call again to continue.

        Raises:
            ConfigurationError: bad window or unknown job
            AcumaticaError: the ERP call itself failed (job marked failed)
        """
        window_start = parse_boundary(start)
        window_end = parse_boundary(end, end_of_day=True)
        if window_start > window_end:
            raise ConfigurationError("startDate must not be after endDate")

        mode = SyncMode.DATE_RANGE.value
        max_errors = self.settings.max_status_errors
        if job_id is not None:
            if self.job_store is None:
                raise ConfigurationError("A job store is required to run a SyncJob")
            job = self.job_store.get(job_id)
            if job is None:
                raise ConfigurationError(f"Sync job {job_id} not found")
            result = SyncResult.resume(self.entity_name, mode, job.progress, max_errors)
            result.job_id = job_id
            if job.status.is_terminal:
                result.done = True
                result.cancelled = job.status == JobStatus.FAILED
                return result
            self.job_store.mark_running(job_id)
        else:
            result = SyncResult(entity_type=self.entity_name, mode=mode, max_errors=max_errors)
        result.window_start, result.window_end = window_start, window_end

        odata_filter = and_filters(date_between(window_start, window_end), self.spec.base_filter)

        with with_correlation(entity_type=self.entity_name, sync_mode=mode, job_id=str(job_id) if job_id else None):
            log_sync_start(
                self.entity_name, mode,
                start=window_start.isoformat(), end=window_end.isoformat(), resume_skip=result.next_skip,
            )
            get_metrics().record_sync_started(self.entity_name)
            started = self._clock()
            deadline_at = started + deadline_seconds if deadline_seconds else None
            try:
                await self._run_window(odata_filter, result, deadline_at=deadline_at)
            except Exception as e:
                if job_id is not None:
                    self.job_store.fail(job_id, str(e), result.progress())
                get_metrics().record_sync_failed(self.entity_name)
                log_sync_error(self.entity_name, str(e))
                raise

            result.duration_ms = int((self._clock() - started) * 1000)
            if job_id is not None and not result.cancelled:
                if result.done:
                    self.job_store.complete(job_id, result.progress())
                else:
                    self.job_store.update_progress(job_id, result.progress())
            self._finish(result)
        return result

    # =========================================================================
    # Single document
    # =========================================================================

    async def sync_document(self, *key: str, source: SyncMode = SyncMode.SINGLE) -> SyncResult:
        """Fetch one document by business key and upsert it.

        Keys: customer_id for customers; (type, reference_number) for
        invoices and payments.

        Raises:
            NotFoundError: the document does not exist in Acumatica
        """
        result = SyncResult(entity_type=self.entity_name, mode=source.value, max_errors=self.settings.max_status_errors)
        started = self._clock()
        with with_correlation(entity_type=self.entity_name, sync_mode=source.value, reference_number=key[-1]):
            data = await self._fetch_document(*key)
            result.total_fetched = 1
            await self._process_row(data, result)
        result.duration_ms = int((self._clock() - started) * 1000)
        self._finish(result)
        return result

    async def _fetch_document(self, *key: str) -> Dict[str, Any]:
        entity = self.spec.entity_type
        if entity == EntityType.CUSTOMER:
            return await self.client.get_customer(key[0])
        if len(key) == 1:
            doc_type, reference = None, key[0]
        else:
            doc_type, reference = key[0], key[1]
        reference = normalize_reference(reference)
        if entity == EntityType.INVOICE:
            return await self.client.get_invoice(reference, doc_type or "Invoice")
        default_type = "Prepayment" if entity == EntityType.PREPAYMENT else "Payment"
        return await self.client.get_payment(doc_type or default_type, reference, expand_applications=True)

    # =========================================================================
    # Window processing
    # =========================================================================

    async def _run_window(self, odata_filter: Optional[str], result: SyncResult, deadline_at: Optional[float] = None) -> None:
        page_size = self.settings.page_size
        interval = max(1, self.settings.progress_interval)
        processed = 0

        pages = self.client.list_pages(
            self.spec.erp_entity,
            filter=odata_filter,
            expand=list(self.spec.expand) or None,
            orderby=self.spec.orderby,
            page_size=page_size,
            start_skip=result.next_skip,
        )
        async with aclosing(pages):
            async for skip, page in pages:
                result.total_fetched += len(page)
                for data in page:
                    await self._process_row(data, result)
                    processed += 1
                    if result.job_id is not None and processed % interval == 0:
                        if not self._checkpoint(result, skip):
                            return
                result.next_skip = skip + len(page)

                if len(page) < page_size:
                    break
                if deadline_at is not None and self._clock() >= deadline_at:
                    result.done = False
                    logger.info(
                        f"Soft deadline reached, stopping at skip {result.next_skip}",
                        extra_fields={"processed": processed},
                    )
                    return
        result.done = True

    def _checkpoint(self, result: SyncResult, page_skip: int) -> bool:
        """Save progress; False if the job is no longer running (cancelled)."""
        progress = result.progress()
        # resume from the start of the page in flight; upserts are idempotent
        progress.next_skip = page_skip
        progress.done = False
        status = self.job_store.update_progress(result.job_id, progress)
        if status != JobStatus.RUNNING:
            logger.warning(f"Job {result.job_id} is {status.value}, stopping")
            result.cancelled = True
            result.done = False
            return False
        return True

    async def _process_row(self, data: Dict[str, Any], result: SyncResult) -> None:
        """Upsert one ERP record. Row-level failures are recorded, not raised."""
        try:
            record = map_record(self.spec.record_class, self.table, data)
        except ValueError as e:
            result.add_error(RowProcessingError(str(e), key=self._raw_key(data)).describe())
            return

        key = ":".join(record.business_key())
        try:
            outcome = self.mirror.upsert(record)
        except sqlite3.Error as e:
            result.add_error(RowProcessingError(f"upsert failed: {e}", key=key).describe())
            return

        if outcome.created:
            result.created += 1
        else:
            result.updated += 1
        self._log_change(record, key, outcome, result.mode)

        if self.spec.links_applications and self.linker is not None:
            try:
                await self._link_applications(record, data, result)
            except AuthenticationError:
                # login failures end the window
                raise
            except (AcumaticaError, RowProcessingError, ValueError, sqlite3.Error) as e:
                result.add_error(RowProcessingError(f"application history: {e}", key=key).describe())

    async def _link_applications(self, record: PaymentRecord, data: Dict[str, Any], result: SyncResult) -> None:
        link = await self.linker.link_payment(record.type, record.reference_number, payment_data=data)
        result.applications_linked += link.applications

        if record.type == "Payment" and (record.status or "").lower() == "voided":
            voided = await self.linker.link_voided_counterpart(record.reference_number)
            if voided:
                result.applications_linked += voided.applications

    def _log_change(self, record: MirrorRecord, key: str, outcome: UpsertOutcome, source: str) -> None:
        if self.change_logger is None:
            return
        new_status = getattr(record, "status", None) or getattr(record, "customer_status", None)
        self.change_logger.record_upsert(
            self.entity_name,
            key,
            created=outcome.created,
            old_status=outcome.previous_status,
            new_status=new_status,
            sync_source=source,
        )

    @staticmethod
    def _raw_key(data: Dict[str, Any]) -> Optional[str]:
        for path in ("ReferenceNbr", "CustomerID", "id"):
            value = get_path(data, path)
            if value:
                return str(value)
        return None

    def _finish(self, result: SyncResult) -> None:
        get_metrics().record_sync_completed(
            self.entity_name,
            created=result.created,
            updated=result.updated,
            failed=result.total_errors,
            duration_ms=result.duration_ms,
        )
        log_sync_complete(
            self.entity_name,
            duration_ms=result.duration_ms,
            created=result.created,
            updated=result.updated,
            total_fetched=result.total_fetched,
            errors=result.total_errors,
            done=result.done,
        )


# =============================================================================
# Webhooks / master sync
# =============================================================================

def webhook_key(entity: EntityType, payload: Dict[str, Any]) -> Tuple[str, ...]:
    """Business key from an Acumatica push notification.

    Accepts ``{"Entity": {"ReferenceNbr": {"value": ...}}}`` or flat
    ``{"ReferenceNbr": ...}`` bodies.

    Raises:
        ConfigurationError: no key in the payload
    """
    body = payload.get("Entity") if isinstance(payload.get("Entity"), dict) else payload

    if entity == EntityType.CUSTOMER:
        customer_id = get_path(body, "CustomerID") or get_path(payload, "CustomerID")
        if not customer_id:
            raise ConfigurationError("No customer ID provided")
        return (str(customer_id),)

    reference = get_path(body, "ReferenceNbr") or get_path(payload, "ReferenceNbr")
    if not reference:
        raise ConfigurationError("No reference number provided")
    default_type = "Invoice" if entity == EntityType.INVOICE else "Payment"
    doc_type = get_path(body, "Type") or get_path(payload, "Type") or default_type
    return (str(doc_type), normalize_reference(reference))


MASTER_SYNC_ENTITIES = (EntityType.CUSTOMER, EntityType.INVOICE, EntityType.PAYMENT)


async def run_master_sync(
    engines: Dict[EntityType, EntitySyncEngine],
    status_store: Optional[SyncStatusStore] = None,
) -> Dict[str, Any]:
    """Run the incremental sync of customers, invoices and payments in turn.

    Entities whose sync_status row is disabled are skipped. One entity
    failing does not stop the others.
    """
    results: Dict[str, Any] = {}
    started = time.monotonic()
    for entity in MASTER_SYNC_ENTITIES:
        engine = engines.get(entity)
        if engine is None:
            continue
        if status_store and not status_store.get(entity.value).sync_enabled:
            results[entity.value] = {"success": True, "skipped": True}
            continue
        try:
            result = await engine.run_incremental()
            results[entity.value] = result.to_response(engine.settings.max_response_errors)
        except (AcumaticaError, ConfigurationError) as e:
            logger.error(f"Master sync: {entity.value} failed: {e}")
            results[entity.value] = {"success": False, "error": str(e)}

    synced = [r for r in results.values() if not r.get("skipped")]
    return {
        "success": all(r.get("success") for r in synced),
        "results": results,
        "totalCreated": sum(r.get("created", 0) for r in synced),
        "totalUpdated": sum(r.get("updated", 0) for r in synced),
        "totalFetched": sum(r.get("totalFetched", 0) for r in synced),
        "durationMs": int((time.monotonic() - started) * 1000),
    }
