"""
Payment Reconciliation Test Suite

1. Status drift between mirror and ERP is reported, and fixed only on request
2. Mirror-only payments get a point lookup (date drift / not found)
3. ERP-only payments are listed as missed inserts
4. Sync health sampling classifies the sync rate
5. Range resync is capped per run and reports status changes
"""

import asyncio

from conftest import application, invoice, payment


def _mirror_payment(runtime, data):
    from core.models.mirror import PaymentRecord
    from sync.records import map_record

    return runtime.mirror.upsert(map_record(PaymentRecord, runtime.tables.payment, data))


class TestVerifyPaymentDates:

    def test_status_drift_reported_then_fixed(self, runtime, fake_erp):
        """Mirror says Open, Acumatica now says Closed."""
        from core.models.mirror import PaymentRecord

        _mirror_payment(runtime, payment("000010", status="Open"))
        fake_erp.add_payment(payment("000010", status="Closed"))
        reconciler = runtime.reconciler()

        report = asyncio.run(reconciler.verify_payment_dates("2024-05-01", "2024-05-31", fix=False))

        assert report["success"]
        assert report["fixMode"] is False
        assert report["acumaticaCount"] == 1 and report["dbCount"] == 1
        assert len(report["mismatchedPayments"]) == 1
        mismatch = report["mismatchedPayments"][0]
        assert mismatch["referenceNumber"] == "000010"
        assert mismatch["before"]["status"] == "Open"
        assert mismatch["after"]["status"] == "Closed"
        assert report["fixedPayments"] == []
        assert runtime.mirror.get(PaymentRecord, "Payment", "000010")["status"] == "Open"

        fixed = asyncio.run(reconciler.verify_payment_dates("2024-05-01", "2024-05-31", fix=True))

        assert fixed["fixMode"] is True
        assert len(fixed["fixedPayments"]) == 1
        entry = fixed["fixedPayments"][0]
        assert (entry["before"]["status"], entry["after"]["status"]) == ("Open", "Closed")
        assert entry["fixed"] is True
        assert runtime.mirror.get(PaymentRecord, "Payment", "000010")["status"] == "Closed"

    def test_fix_is_logged_as_closed(self, runtime, fake_erp):
        from core.audit.events import SyncChangeType

        _mirror_payment(runtime, payment("000010", status="Open"))
        fake_erp.add_payment(payment("000010", status="Closed"))

        asyncio.run(runtime.reconciler().verify_payment_dates("2024-05-01", "2024-05-31", fix=True))

        events = runtime.change_logger.query(entity_type="payment")
        assert events[0].change_type == SyncChangeType.CLOSED
        assert events[0].sync_source == "reconciliation"

    def test_date_drift_found_by_point_lookup(self, runtime, fake_erp):
        from core.models.mirror import PaymentRecord

        _mirror_payment(runtime, payment("000012", application_date="2024-05-15"))
        # ERP moved the payment out of the window, so only the point lookup sees it
        fake_erp.add_payment(payment("000012", application_date="2024-06-02"), listed=False)

        report = asyncio.run(runtime.reconciler().verify_payment_dates("2024-05-01", "2024-05-31", fix=True))

        assert report["inDbNotAcumatica"] == ["Payment:000012"]
        assert report["stalePayments"][0]["kind"] == "date_drift"
        assert report["stalePayments"][0]["after"]["application_date"] == "2024-06-02"
        row = runtime.mirror.get(PaymentRecord, "Payment", "000012")
        assert row["application_date"] == "2024-06-02"

    def test_not_found_reported_never_deleted(self, runtime, fake_erp):
        from core.models.mirror import PaymentRecord

        _mirror_payment(runtime, payment("000011"))

        report = asyncio.run(runtime.reconciler().verify_payment_dates("2024-05-01", "2024-05-31", fix=True))

        assert report["notFound"] == ["Payment:000011"]
        assert report["fixedPayments"] == []
        assert runtime.mirror.get(PaymentRecord, "Payment", "000011") is not None

    def test_erp_only_payment_listed(self, runtime, fake_erp):
        fake_erp.add_payment(payment("000013"))

        report = asyncio.run(runtime.reconciler().verify_payment_dates("2024-05-01", "2024-05-31"))

        assert report["inAcumaticaNotDb"] == ["Payment:000013"]
        assert report["dbCount"] == 0

    def test_filter_uses_application_date(self, runtime, fake_erp):
        asyncio.run(runtime.reconciler().verify_payment_dates("2024-05-01", "2024-05-31"))

        odata_filter = fake_erp.data_requests("Payment")[0]["$filter"]
        assert "ApplicationDate ge datetimeoffset'2024-05-01T00:00:00'" in odata_filter
        assert "ApplicationDate le datetimeoffset'2024-05-31T23:59:59'" in odata_filter
        assert "Type ne 'Credit Memo'" in odata_filter

    def test_matching_payments_not_reported(self, runtime, fake_erp):
        _mirror_payment(runtime, payment("000010", status="Closed"))
        fake_erp.add_payment(payment("000010", status="Closed"))

        report = asyncio.run(runtime.reconciler().verify_payment_dates("2024-05-01", "2024-05-31", fix=True))

        assert report["mismatchedPayments"] == []
        assert report["stalePayments"] == []
        assert report["fixedPayments"] == []


class TestSyncHealth:

    def test_no_data(self, runtime):
        report = asyncio.run(runtime.reconciler().verify_sync_health(10))
        assert report["healthStatus"] == "no_data"
        assert report["totalChecked"] == 0

    def test_all_in_sync_is_healthy(self, runtime, fake_erp):
        for ref in ("000001", "000002"):
            _mirror_payment(runtime, payment(ref, status="Closed"))
            fake_erp.add_payment(payment(ref, status="Closed"), listed=False)

        report = asyncio.run(runtime.reconciler().verify_sync_health(10))

        assert report["healthStatus"] == "healthy"
        assert report["syncRate"] == 100.0
        assert report["inSync"] == 2

    def test_half_in_sync_is_critical(self, runtime, fake_erp):
        _mirror_payment(runtime, payment("000001", status="Open"))
        _mirror_payment(runtime, payment("000002", status="Open"))
        fake_erp.add_payment(payment("000001", status="Open"), listed=False)
        fake_erp.add_payment(payment("000002", status="Closed"), listed=False)

        report = asyncio.run(runtime.reconciler().verify_sync_health(10))

        assert report["healthStatus"] == "critical"
        assert report["syncRate"] == 50.0
        assert report["mismatches"][0]["paymentRef"] == "000002"
        assert report["mismatches"][0]["acumaticaStatus"] == "Closed"

    def test_classify_health_thresholds(self):
        from reconciliation.engine import HealthStatus, classify_health

        assert classify_health(95.0) == HealthStatus.HEALTHY
        assert classify_health(90.0) == HealthStatus.WARNING
        assert classify_health(84.9) == HealthStatus.CRITICAL


class TestResyncPaymentRange:

    def _reconciler(self, runtime, limit):
        from reconciliation.engine import PaymentReconciler

        return PaymentReconciler(runtime.client(), runtime.mirror, runtime.tables, max_payments_per_run=limit)

    def test_resync_is_capped(self, runtime, fake_erp):
        for i, day in enumerate(("05", "06", "07"), start=1):
            ref = f"00000{i}"
            _mirror_payment(runtime, payment(ref, application_date=f"2024-05-{day}"))
            fake_erp.add_payment(payment(ref, application_date=f"2024-05-{day}", history=[]), listed=False)

        report = asyncio.run(self._reconciler(runtime, 2).resync_payment_range("2024-05-01", "2024-05-31"))

        assert report["totalInRange"] == 3
        assert report["totalProcessed"] == 2
        assert report["successCount"] == 2
        assert report["remaining"] == 1
        assert "Run again" in report["message"]
        fetched = {url.rsplit("/", 1)[-1] for _, url, _ in fake_erp.calls if "/Payment/Payment/" in url}
        assert fetched == {"000001", "000002"}

    def test_resync_reports_status_change_and_links(self, runtime, fake_erp):
        from core.models.mirror import InvoiceRecord
        from sync.records import map_record

        runtime.mirror.upsert(map_record(InvoiceRecord, runtime.tables.invoice, invoice("000101")))
        _mirror_payment(runtime, payment("000010", status="Open"))
        fake_erp.add_payment(payment("000010", status="Closed", history=[application("000101")]), listed=False)

        report = asyncio.run(self._reconciler(runtime, 20).resync_payment_range("2024-05-01", "2024-05-31"))

        assert report["statusChanges"] == [
            {"referenceNumber": "000010", "type": "Payment", "oldStatus": "Open", "newStatus": "Closed"}
        ]
        assert report["applicationsLinked"] == 1
        assert report["remaining"] == 0
        assert "message" not in report

    def test_resync_missing_payment_is_error(self, runtime, fake_erp):
        _mirror_payment(runtime, payment("000099"))

        report = asyncio.run(self._reconciler(runtime, 20).resync_payment_range("2024-05-01", "2024-05-31"))

        assert report["errorCount"] == 1
        assert report["errors"][0]["paymentRef"] == "000099"
        assert report["successCount"] == 0
