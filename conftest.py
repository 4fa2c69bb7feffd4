"""Shared pytest fixtures.

``FakeAcumatica`` stands in for ``HttpTransport``: it answers login/logout,
list pages (honouring ``$top``/``$skip``) and point lookups from in-memory
data, and records every call so tests can count logins and requests.
"""

import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pytest

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parent))

from connectors.acumatica.acu_auth import AcumaticaCredentials
from connectors.acumatica.acu_client import ErpResponse
from core.config import SyncSettings
from core.observability.metrics import get_metrics
from storage.db import init_db
from sync.runtime import SyncRuntime


HOST = "https://acme.example.com"
ENTITY_PREFIX = "/entity/Default/24.200.001/"


def wrap(**fields: Any) -> Dict[str, Any]:
    """Build an Acumatica-style record: every field as ``{"value": ...}``."""
    # nested objects (MainContact) and sub-lists (ApplicationHistory) pass through
    return {name: value if isinstance(value, (list, dict)) else {"value": value} for name, value in fields.items()}


def customer(customer_id: str, name: str = "Acme", status: str = "Active", **extra) -> Dict[str, Any]:
    fields = {
        "CustomerID": customer_id,
        "CustomerName": name,
        "Status": status,
        "LastModifiedDateTime": "2024-05-01T10:00:00.1234567+00:00",
    }
    fields.update(extra)
    return wrap(**fields)


def invoice(reference: str, status: str = "Open", amount: str = "100.00", **extra) -> Dict[str, Any]:
    fields = {
        "Type": "Invoice",
        "ReferenceNbr": reference,
        "Status": status,
        "Date": "2024-05-01T00:00:00+00:00",
        "CustomerID": "C001",
        "Amount": amount,
        "Balance": amount,
    }
    fields.update(extra)
    return wrap(**fields)


def payment(
    reference: str,
    status: str = "Open",
    application_date: str = "2024-05-10",
    payment_type: str = "Payment",
    history: Optional[List[Dict[str, Any]]] = None,
    **extra,
) -> Dict[str, Any]:
    fields = {
        "Type": payment_type,
        "ReferenceNbr": reference,
        "Status": status,
        "ApplicationDate": f"{application_date}T00:00:00+00:00",
        "PaymentAmount": "250.00",
        "CustomerID": "C001",
        "CustomerName": "Acme",
    }
    fields.update(extra)
    record = wrap(**fields)
    if history is not None:
        record["ApplicationHistory"] = history
    return record


def application(invoice_ref: str, amount: str = "50.00", doc_type: str = "Invoice") -> Dict[str, Any]:
    return wrap(
        DisplayRefNbr=invoice_ref,
        DisplayDocType=doc_type,
        AmountPaid=amount,
        Balance="0.00",
        ApplicationDate="2024-05-10T00:00:00+00:00",
        ApplicationPeriod="052024",
    )


class FakeAcumatica:
    """Scripted Acumatica instance behind the transport interface."""

    def __init__(self):
        self.entities: Dict[str, List[Dict[str, Any]]] = {}
        self.documents: Dict[Tuple[str, ...], Dict[str, Any]] = {}
        # responses served (and consumed) before normal handling, keyed by (entity, skip)
        self.scripted: Dict[Tuple[str, int], List[ErpResponse]] = {}
        # point lookups answered with a fixed error response, keyed by path parts
        self.failing: Dict[Tuple[str, ...], ErpResponse] = {}
        self.rejected_cookies: set = set()
        self.reject_all = False
        self.login_response: Optional[ErpResponse] = None
        self.login_delay = 0.0
        self.calls: List[Tuple[str, str, Dict[str, str]]] = []
        self.logins = 0
        self.logouts = 0

    # -- test helpers -----------------------------------------------------

    def add_payment(self, record: Dict[str, Any], listed: bool = True) -> None:
        payment_type = record["Type"]["value"]
        reference = record["ReferenceNbr"]["value"]
        self.documents[("Payment", payment_type, reference)] = record
        if listed:
            self.entities.setdefault("Payment", []).append(record)

    def add_invoice(self, record: Dict[str, Any], listed: bool = True) -> None:
        reference = record["ReferenceNbr"]["value"]
        self.documents[("Invoice", reference)] = record
        self.documents[("Invoice", record["Type"]["value"], reference)] = record
        if listed:
            self.entities.setdefault("Invoice", []).append(record)

    def data_requests(self, entity: str) -> List[Dict[str, str]]:
        return [params for _, url, params in self.calls if url.endswith(ENTITY_PREFIX + entity)]

    # -- transport interface ----------------------------------------------

    async def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, str]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> ErpResponse:
        params = dict(params or {})
        self.calls.append((method, url, params))
        path = url[len(HOST):]

        if path == "/entity/auth/login":
            return await self._login()
        if path == "/entity/auth/logout":
            self.logouts += 1
            return ErpResponse(status=204)

        cookie = (headers or {}).get("Cookie")
        if self.reject_all or cookie in self.rejected_cookies:
            return ErpResponse(status=401, text='{"message":"You are not logged in."}')

        parts = tuple(path[len(ENTITY_PREFIX):].split("/"))
        if parts in self.failing:
            return self.failing[parts]
        if len(parts) == 1:
            return self._list(parts[0], params)

        doc = self.documents.get(parts)
        if doc is None:
            return ErpResponse(status=404, text='{"message":"No entity satisfies the condition."}')
        return ErpResponse(status=200, text=json.dumps(doc))

    async def close(self) -> None:
        return None

    async def _login(self) -> ErpResponse:
        import asyncio

        if self.login_delay:
            await asyncio.sleep(self.login_delay)
        self.logins += 1
        if self.login_response is not None:
            return self.login_response
        return ErpResponse(
            status=204,
            set_cookies=[
                f"ASP.NET_SessionId=sid{self.logins}; path=/; HttpOnly",
                f".AspNet.Cookies=auth{self.logins}; path=/; secure, UserBranch=1; path=/",
            ],
        )

    def _list(self, entity: str, params: Dict[str, str]) -> ErpResponse:
        skip = int(params.get("$skip", 0))
        queued = self.scripted.get((entity, skip))
        if queued:
            return queued.pop(0)
        records = self.entities.get(entity, [])
        top = int(params.get("$top", len(records) or 1))
        return ErpResponse(status=200, text=json.dumps(records[skip:skip + top]))


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Initialized sqlite database in a temp directory."""
    db_path = tmp_path / "sync.db"
    init_db(db_path)
    return db_path


@pytest.fixture
def fake_erp() -> FakeAcumatica:
    return FakeAcumatica()


@pytest.fixture
def credentials() -> AcumaticaCredentials:
    return AcumaticaCredentials(
        tenant_id="default",
        host_url="acme.example.com",
        username="api-user",
        password="secret",
        company="Acme",
    )


@pytest.fixture
def settings(temp_db) -> SyncSettings:
    return SyncSettings(
        db_path=temp_db,
        page_size=2,
        progress_interval=1,
        login_wait_poll_seconds=0.01,
        encryption_key=None,
    )


@pytest.fixture
def runtime(settings, fake_erp, credentials) -> SyncRuntime:
    """Runtime on a temp database, talking to ``fake_erp``."""
    rt = SyncRuntime(settings=settings, transport=fake_erp)
    rt.credentials.set_active(credentials)
    return rt


@pytest.fixture(autouse=True)
def reset_metrics():
    get_metrics().reset()
    yield
