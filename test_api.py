"""
API Endpoint Tests

Runs the FastAPI app against the test runtime (temp database + fake
Acumatica) through ``app.dependency_overrides``.
"""

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from conftest import customer, invoice, payment
from connectors.acumatica.acu_client import ErpResponse


@pytest.fixture
def client(runtime):
    from api.server import app
    from api.services.runtime import get_runtime

    app.dependency_overrides[get_runtime] = lambda: runtime
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["services"]["storage"] == "up"
        assert body["services"]["temporal"] == "disabled"

    def test_probes(self, client):
        assert client.get("/ready").json() == {"status": "ready"}
        assert client.get("/live").json() == {"status": "alive"}

    def test_preflight_returns_200(self, client):
        response = client.options("/sync/invoices/date-range")
        assert response.status_code == 200

    def test_metrics_after_sync(self, client, fake_erp):
        fake_erp.entities["Customer"] = [customer("C001")]
        client.post("/sync/customers/incremental", json={"lookbackMinutes": 60})

        metrics = client.get("/metrics").json()

        assert metrics["sync_runs"]["completed"] == 1
        assert metrics["rows"]["created"] == 1
        assert metrics["sessions"]["logins"] == 1


class TestIncrementalEndpoint:

    def test_incremental_sync(self, client, fake_erp):
        fake_erp.entities["Customer"] = [customer("C001"), customer("C002"), customer("C003")]

        response = client.post("/sync/customers/incremental", json={"lookbackMinutes": 60})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["created"] == 3
        assert body["updated"] == 0

    def test_body_is_optional(self, client, runtime):
        runtime.status.set_lookback("invoice", 45)

        body = client.post("/sync/invoices/incremental").json()

        start = datetime.fromisoformat(body["window"]["start"])
        end = datetime.fromisoformat(body["window"]["end"])
        assert end - start == timedelta(minutes=45)

    def test_invalid_lookback_is_400(self, client):
        response = client.post("/sync/invoices/incremental", json={"lookbackMinutes": 0})

        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_malformed_body_uses_error_envelope(self, client):
        response = client.post("/sync/customers/incremental", json={"lookbackMinutes": "abc"})

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert "lookbackMinutes" in body["error"]

    def test_unknown_entity_is_400(self, client):
        response = client.post("/sync/vendors/incremental")

        assert response.status_code == 400
        assert "Unknown entity type" in response.json()["error"]

    def test_missing_credentials_is_400(self, client):
        response = client.post("/sync/invoices/incremental", headers={"X-Tenant-Id": "unconfigured"})

        assert response.status_code == 400
        assert "No active Acumatica credentials" in response.json()["error"]

    def test_login_limit_is_503_with_solution(self, client, fake_erp):
        fake_erp.login_response = ErpResponse(500, "API Login Limit exceeded")

        response = client.post("/sync/invoices/incremental")

        assert response.status_code == 503
        body = response.json()
        assert body["success"] is False
        assert "force-logout" in body["solution"]

    def test_bad_credentials_is_401(self, client, fake_erp):
        fake_erp.login_response = ErpResponse(401, '{"message": "Invalid credentials"}')

        response = client.post("/sync/invoices/incremental")

        assert response.status_code == 401


class TestDateRangeEndpoint:

    def test_missing_dates_is_400(self, client):
        response = client.post("/sync/invoices/date-range", json={"startDate": "2024-05-01"})

        assert response.status_code == 400
        assert response.json()["error"] == "Start date and end date are required"

    def test_reversed_dates_is_400(self, client):
        response = client.post("/sync/invoices/date-range", json={"startDate": "2024-05-10", "endDate": "2024-05-01"})
        assert response.status_code == 400

    def test_small_window_runs_inline(self, client, fake_erp):
        fake_erp.entities["Invoice"] = [invoice("000001"), invoice("000002")]

        response = client.post("/sync/invoices/date-range", json={"startDate": "2024-05-01", "endDate": "2024-05-03"})

        assert response.status_code == 200
        assert response.json()["created"] == 2
        assert "jobId" not in response.json()

    def test_large_window_runs_as_job(self, client, runtime, fake_erp):
        from core.models.mirror import JobStatus

        fake_erp.entities["Invoice"] = [invoice("000001"), invoice("000002"), invoice("000003")]

        response = client.post(
            "/sync/invoices/date-range",
            json={"startDate": "2024-01-01", "endDate": "2024-03-31"},
            headers={"X-User-Id": "analyst"},
        )

        assert response.status_code == 202
        body = response.json()
        assert body["async"] is True
        job_id = body["jobId"]

        # the background task has run by the time the test client returns
        job = runtime.jobs.get(job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.created_by == "analyst"

        polled = client.post("/sync/invoices/date-range", json={"pollStatus": True, "jobId": job_id})
        assert polled.status_code == 200
        assert polled.json()["job"]["status"] == "completed"
        assert polled.json()["job"]["progress"]["created"] == 3

    def test_background_flag_forces_job(self, client):
        response = client.post(
            "/sync/customers/date-range",
            json={"startDate": "2024-05-01", "endDate": "2024-05-02", "background": True},
        )
        assert response.status_code == 202

    def test_active_job_is_reused(self, client, runtime):
        existing, _ = runtime.jobs.create_or_reuse(
            "invoice", datetime(2024, 1, 1), datetime(2024, 3, 31, 23, 59, 59)
        )

        response = client.post("/sync/invoices/date-range", json={"startDate": "2024-01-01", "endDate": "2024-03-31"})

        assert response.status_code == 202
        assert response.json() == {"success": True, "jobId": existing.id, "async": True, "reused": True}

    def test_poll_unknown_job_is_404(self, client):
        response = client.post("/sync/invoices/date-range", json={"pollStatus": True, "jobId": 999})

        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Sync job 999 not found"}

    def test_failed_background_job_recorded(self, client, runtime, fake_erp):
        from core.models.mirror import JobStatus

        fake_erp.reject_all = True

        response = client.post("/sync/invoices/date-range", json={"startDate": "2024-01-01", "endDate": "2024-03-31"})

        job = runtime.jobs.get(response.json()["jobId"])
        assert job.status == JobStatus.FAILED
        assert job.error_message


class TestJobEndpoints:

    def test_cancel_then_conflict(self, client, runtime):
        job, _ = runtime.jobs.create_or_reuse("invoice", datetime(2024, 1, 1), datetime(2024, 2, 1))

        cancelled = client.post(f"/jobs/{job.id}/cancel")
        assert cancelled.status_code == 200
        assert cancelled.json()["job"]["status"] == "failed"
        assert cancelled.json()["job"]["error_message"] == "Cancelled by user"

        again = client.post(f"/jobs/{job.id}/cancel")
        assert again.status_code == 409

    def test_get_and_list(self, client, runtime):
        job, _ = runtime.jobs.create_or_reuse("invoice", datetime(2024, 1, 1), datetime(2024, 2, 1))

        single = client.get(f"/jobs/{job.id}").json()
        assert single["job"]["status"] == "pending"
        assert single["job"]["stalled"] is False

        listed = client.get("/jobs", params={"status": "pending"}).json()
        assert [j["id"] for j in listed["jobs"]] == [job.id]
        assert client.get("/jobs", params={"status": "completed"}).json()["jobs"] == []

    def test_unknown_job_is_404(self, client):
        assert client.get("/jobs/12345").status_code == 404
        assert client.post("/jobs/12345/cancel").status_code == 404


class TestStatusEndpoints:

    def test_lookback_and_enabled(self, client):
        updated = client.put("/sync/status/invoices/lookback", json={"lookbackMinutes": 30}).json()
        assert updated["status"]["lookback_minutes"] == 30

        disabled = client.put("/sync/status/invoice/enabled", json={"enabled": False}).json()
        assert disabled["status"]["sync_enabled"] is False

        statuses = client.get("/sync/status").json()["statuses"]
        assert [s["entity_type"] for s in statuses] == ["invoice"]

    def test_negative_lookback_is_400(self, client):
        response = client.put("/sync/status/invoices/lookback", json={"lookbackMinutes": -5})
        assert response.status_code == 400

    def test_master_sync(self, client, fake_erp):
        fake_erp.entities["Customer"] = [customer("C001")]

        body = client.post("/sync/master").json()

        assert body["success"] is True
        assert set(body["results"]) == {"customer", "invoice", "payment"}


class TestSingleDocumentEndpoints:

    def test_payment_resync(self, client, fake_erp):
        fake_erp.add_payment(payment("000010", history=[]), listed=False)

        response = client.post("/sync/payments/Payment/10")

        assert response.status_code == 200
        assert response.json()["created"] == 1
        assert response.json()["mode"] == "single"

    def test_payment_not_found_is_404(self, client):
        response = client.post("/sync/payments/Payment/999999")

        assert response.status_code == 404
        assert response.json()["success"] is False

    def test_invoice_webhook(self, client, runtime, fake_erp):
        from core.models.mirror import InvoiceRecord

        fake_erp.add_invoice(invoice("000123"), listed=False)

        response = client.post(
            "/webhooks/invoice",
            json={"Entity": {"Type": {"value": "Invoice"}, "ReferenceNbr": {"value": "123"}}},
        )

        assert response.status_code == 200
        assert response.json()["mode"] == "webhook"
        assert runtime.mirror.get(InvoiceRecord, "Invoice", "000123") is not None

    def test_webhook_without_key_is_400(self, client):
        response = client.post("/webhooks/payments", json={"Entity": {}})
        assert response.status_code == 400


class TestSessionEndpoints:

    def test_credentials_update_invalidates_sessions(self, client, runtime):
        runtime.sessions.store_new_session("default", ".AspNet.Cookies=x", timedelta(minutes=25))

        response = client.put(
            "/credentials",
            json={"hostUrl": "new.example.com", "username": "api2", "password": "pw2", "company": "Acme"},
        )

        body = response.json()
        assert body["success"] is True
        assert body["sessionsInvalidated"] == 1
        assert body["credentials"]["host_url"] == "https://new.example.com"
        assert "password" not in body["credentials"]
        assert runtime.sessions.list_sessions("default", only_valid=True) == []

    def test_list_sessions_hides_cookies(self, client, runtime):
        runtime.sessions.store_new_session("default", ".AspNet.Cookies=x", timedelta(minutes=25))

        sessions = client.get("/sessions", params={"onlyValid": True}).json()["sessions"]

        assert len(sessions) == 1
        assert "session_cookie" not in sessions[0]

    def test_force_logout(self, client, runtime, fake_erp):
        runtime.sessions.store_new_session("default", ".AspNet.Cookies=x", timedelta(minutes=25))

        body = client.post("/sessions/force-logout").json()

        assert body["success"] is True
        assert body["sessions_deleted"] == 1
        assert fake_erp.logouts == 1


class TestReconciliationEndpoints:

    def test_payment_dates_fix(self, client, runtime, fake_erp):
        from core.models.mirror import PaymentRecord
        from sync.records import map_record

        runtime.mirror.upsert(map_record(PaymentRecord, runtime.tables.payment, payment("000010", status="Open")))
        fake_erp.add_payment(payment("000010", status="Closed"))

        report = client.post(
            "/reconciliation/payment-dates",
            json={"startDate": "2024-05-01", "endDate": "2024-05-31", "fix": True},
        ).json()

        assert report["fixMode"] is True
        assert report["fixedPayments"][0]["after"]["status"] == "Closed"
        assert runtime.mirror.get(PaymentRecord, "Payment", "000010")["status"] == "Closed"

    def test_payment_dates_requires_range(self, client):
        assert client.post("/reconciliation/payment-dates", json={}).status_code == 400

    def test_sync_health_without_body(self, client):
        assert client.post("/reconciliation/sync-health").json()["healthStatus"] == "no_data"

    def test_sync_health_rejects_bad_sample(self, client):
        assert client.post("/reconciliation/sync-health", json={"sampleSize": -1}).status_code == 400

    def test_resync_payments(self, client, runtime, fake_erp):
        from core.models.mirror import PaymentRecord
        from sync.records import map_record

        runtime.mirror.upsert(map_record(PaymentRecord, runtime.tables.payment, payment("000010")))
        fake_erp.add_payment(payment("000010", history=[]), listed=False)

        report = client.post(
            "/reconciliation/resync-payments", json={"startDate": "2024-05-01", "endDate": "2024-05-31"}
        ).json()

        assert report["successCount"] == 1
        assert report["remaining"] == 0
