"""Acumatica HTTP Client.

Low-level client for Acumatica's contract-based REST API. Every call goes
through the SessionManager, which supplies the session cookie and performs
the single re-login on auth failure. This module turns responses into
Python objects and HTTP failures into the exception hierarchy below.
"""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import aiohttp

from connectors.acumatica.odata import quote
from core.observability.logging import get_logger

logger = get_logger(__name__)


# =============================================================================
# Errors
# =============================================================================

class AcumaticaError(Exception):
    """Base exception for Acumatica errors."""
    def __init__(self, message: str, status_code: int = 0, response_body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class AuthenticationError(AcumaticaError):
    """Login rejected or no session cookie returned."""
    pass


class LoginLimitError(AuthenticationError):
    """The ERP refused the login because the API login limit is reached."""
    solution = (
        "Acumatica's concurrent API login limit is reached. Use force-logout "
        "to close cached sessions, or wait for idle sessions to expire."
    )


class SessionExpiredError(AcumaticaError):
    """Session still rejected (401/403/HTML) after one fresh re-login."""
    pass


class NotFoundError(AcumaticaError):
    """Document not found (404, or 500 on point lookups)."""
    pass


class ExternalUnavailableError(AcumaticaError):
    """ERP unreachable or non-2xx for reasons other than auth."""
    pass


class ConfigurationError(Exception):
    """Missing or incomplete credentials or request parameters."""
    pass


class RowProcessingError(Exception):
    """Failure upserting or linking one record. Never aborts a batch."""
    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message)
        self.key = key

    def describe(self) -> str:
        return f"{self.key}: {self}" if self.key else str(self)


# =============================================================================
# Configuration / transport
# =============================================================================

@dataclass
class AcumaticaApiConfig:
    """Endpoint coordinates for the contract-based API."""
    endpoint_name: str = "Default"
    endpoint_version: str = "24.200.001"
    timeout_seconds: int = 60

    def entity_base(self, host_url: str) -> str:
        return f"{host_url}/entity/{self.endpoint_name}/{self.endpoint_version}"


@dataclass
class ErpResponse:
    """Buffered HTTP response."""
    status: int
    text: str = ""
    set_cookies: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> Any:
        return json.loads(self.text) if self.text else None


class HttpTransport:
    """aiohttp wrapper returning buffered ``ErpResponse`` objects.

    Cookies are sent explicitly per request; the client-side cookie jar is
    disabled so sessions from different tenants never mix.
    """

    def __init__(self, timeout_seconds: int = 60):
        self.timeout_seconds = timeout_seconds
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> "HttpTransport":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
                cookie_jar=aiohttp.DummyCookieJar(),
            )
        return self._session

    async def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, str]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> ErpResponse:
        session = self._ensure_session()
        try:
            async with session.request(method, url, headers=headers, params=params, json=json_body) as response:
                text = await response.text()
                return ErpResponse(
                    status=response.status,
                    text=text,
                    set_cookies=response.headers.getall("Set-Cookie", []),
                )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ExternalUnavailableError(f"Acumatica request failed: {type(e).__name__}: {e}") from e

    async def close(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None


# =============================================================================
# Client
# =============================================================================

class AcumaticaClient:
    """Entity-level client for one tenant.

    Usage:
        client = AcumaticaClient(session_manager, credentials)
        async for skip, page in client.list_pages("Invoice", filter=..., page_size=500):
            ...
        payment = await client.get_payment("Payment", "000123")
    """

    def __init__(self, session_manager, credentials, api_config: Optional[AcumaticaApiConfig] = None):
        from connectors.acumatica.acu_auth import AcumaticaCredentials, SessionManager

        self.session_manager: SessionManager = session_manager
        self.credentials: AcumaticaCredentials = credentials
        self.api_config = api_config or AcumaticaApiConfig()

    @property
    def tenant_id(self) -> str:
        return self.credentials.tenant_id

    def entity_url(self, *path: str) -> str:
        base = self.api_config.entity_base(self.credentials.base_url)
        return "/".join([base] + [str(p) for p in path])

    async def _get(
        self,
        url: str,
        params: Optional[Dict[str, str]] = None,
        expect_array: bool = False,
        not_found_statuses: Tuple[int, ...] = (404,),
    ) -> Any:
        response = await self.session_manager.make_authenticated_request(
            self.credentials, "GET", url, params=params, expect_array=expect_array,
        )
        if response.status in not_found_statuses:
            raise NotFoundError(f"Not found in Acumatica: {url}", response.status, response.text)
        if not response.ok:
            raise ExternalUnavailableError(
                f"Acumatica error {response.status}: {response.text[:500]}",
                response.status,
                response.text,
            )
        try:
            return response.json()
        except ValueError as e:
            raise ExternalUnavailableError(f"Invalid JSON from Acumatica: {e}", response.status, response.text[:500])

    async def list(
        self,
        entity: str,
        filter: Optional[str] = None,
        expand: Optional[List[str]] = None,
        select: Optional[List[str]] = None,
        orderby: Optional[str] = None,
        top: Optional[int] = None,
        skip: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """List entities with OData query options."""
        params: Dict[str, str] = {}
        if filter:
            params["$filter"] = filter
        if expand:
            params["$expand"] = ",".join(expand)
        if select:
            params["$select"] = ",".join(select)
        if orderby:
            params["$orderby"] = orderby
        if top:
            params["$top"] = str(top)
        if skip:
            params["$skip"] = str(skip)

        result = await self._get(self.entity_url(entity), params=params, expect_array=True)
        return result or []

    async def list_pages(
        self,
        entity: str,
        filter: Optional[str] = None,
        expand: Optional[List[str]] = None,
        orderby: Optional[str] = None,
        page_size: int = 500,
        start_skip: int = 0,
    ) -> AsyncIterator[Tuple[int, List[Dict[str, Any]]]]:
        """Yield ``(skip, page)`` until a short or empty page."""
        skip = start_skip
        while True:
            page = await self.list(entity, filter=filter, expand=expand, orderby=orderby, top=page_size, skip=skip)
            if page:
                yield skip, page
            if len(page) < page_size:
                return
            skip += page_size

    async def get_payment(
        self,
        payment_type: str,
        reference_number: str,
        expand_applications: bool = True,
    ) -> Dict[str, Any]:
        """Point lookup of a payment, optionally with ApplicationHistory."""
        params = {"$expand": "ApplicationHistory"} if expand_applications else None
        return await self._get(
            self.entity_url("Payment", payment_type, reference_number),
            params=params,
            not_found_statuses=(404, 500),
        )

    async def get_invoice(self, reference_number: str, invoice_type: Optional[str] = None) -> Dict[str, Any]:
        """Point lookup of an invoice. 404/500 mean deleted or not an invoice."""
        path = ("Invoice", invoice_type, reference_number) if invoice_type else ("Invoice", reference_number)
        return await self._get(self.entity_url(*path), not_found_statuses=(404, 500))

    async def get_customer(self, customer_id: str) -> Dict[str, Any]:
        records = await self.list(
            "Customer",
            filter=f"CustomerID eq {quote(customer_id)}",
            expand=["MainContact"],
        )
        if not records:
            raise NotFoundError(f"Customer {customer_id} not found in Acumatica", 404)
        return records[0]
