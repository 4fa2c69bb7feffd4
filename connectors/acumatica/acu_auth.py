"""Acumatica Session Manager.

Acumatica authenticates with a session cookie obtained from
``POST /entity/auth/login`` and enforces a limit on concurrent API logins.
The SessionManager hands out one shared cookie per tenant from the
persistent SessionCache and only logs in when no valid session exists.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from connectors.acumatica.acu_client import (
    AcumaticaError,
    AuthenticationError,
    ConfigurationError,
    ErpResponse,
    HttpTransport,
    LoginLimitError,
    SessionExpiredError,
)
from core.observability.logging import get_logger
from core.observability.metrics import get_metrics
from storage.sessions import CachedSession, SessionCache

logger = get_logger(__name__)


LOGIN_LIMIT_MARKERS = ("concurrent API logins", "API Login Limit")
PREFERRED_COOKIE_MARKERS = (".AspNet", "ARRAffinity")


def normalize_host(host_url: str) -> str:
    """Ensure a scheme and strip trailing slashes."""
    host = (host_url or "").strip()
    if not host:
        return host
    if not host.startswith(("http://", "https://")):
        host = f"https://{host}"
    return host.rstrip("/")


@dataclass
class AcumaticaCredentials:
    """Credential set for one Acumatica tenant.

    Attributes:
        tenant_id: Local tenant identifier (sessions are cached per tenant)
        host_url: Instance URL, e.g. "https://acme.acumatica.com"
        username: API user
        password: API user password
        company: Optional company (tenant) name sent at login
        branch: Optional branch sent at login
    """
    tenant_id: str
    host_url: str
    username: str
    password: str
    company: Optional[str] = None
    branch: Optional[str] = None
    id: Optional[int] = None
    is_active: bool = True
    created_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def base_url(self) -> str:
        return normalize_host(self.host_url)

    @property
    def login_url(self) -> str:
        return f"{self.base_url}/entity/auth/login"

    @property
    def logout_url(self) -> str:
        return f"{self.base_url}/entity/auth/logout"

    def login_body(self) -> Dict[str, str]:
        body = {"name": self.username, "password": self.password}
        if self.company:
            body["company"] = self.company
        if self.branch:
            body["branch"] = self.branch
        return body

    def validate(self) -> None:
        missing = [name for name in ("host_url", "username", "password") if not getattr(self, name)]
        if missing:
            raise ConfigurationError(f"Missing Acumatica credentials: {', '.join(missing)}")

    def to_dict(self) -> Dict[str, Any]:
        """Serializable view without the password."""
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "host_url": self.base_url,
            "username": self.username,
            "company": self.company,
            "branch": self.branch,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat(),
        }


# =============================================================================
# Response inspection
# =============================================================================

def split_set_cookie(headers: List[str]) -> List[str]:
    """Extract ``name=value`` pairs from Set-Cookie header values.

    Servers may fold several cookies into one comma-separated header, so
    each value is split on commas and every piece is cut at its first ';'.
    Fragments without '=' (the tail of an Expires date) are dropped.
    """
    cookies = []
    for header in headers:
        for part in header.split(","):
            pair = part.split(";", 1)[0].strip()
            if "=" in pair:
                cookies.append(pair)
    return cookies


def select_session_cookie(headers: List[str], send_all: bool = False) -> Optional[str]:
    """Pick the cookie to reuse as the session.

    Prefers the ASP.NET application cookie or the ARR affinity cookie,
    else the first cookie. With ``send_all`` every cookie is joined.
    """
    cookies = split_set_cookie(headers)
    if not cookies:
        return None
    if send_all:
        return "; ".join(cookies)
    for cookie in cookies:
        if any(marker in cookie for marker in PREFERRED_COOKIE_MARKERS):
            return cookie
    return cookies[0]


def is_html_body(text: Optional[str]) -> bool:
    """Acumatica answers expired sessions with an HTML login page."""
    return bool(text) and text.strip().startswith("<")


def is_login_limit_error(text: Optional[str]) -> bool:
    return bool(text) and any(marker in text for marker in LOGIN_LIMIT_MARKERS)


def is_session_failure(response: ErpResponse, expect_array: bool = False) -> bool:
    """True when the response means the cookie is no longer accepted."""
    if response.status in (401, 403):
        return True
    if not response.ok:
        return False
    if is_html_body(response.text):
        return True
    if expect_array:
        try:
            return not isinstance(response.json(), list)
        except ValueError:
            return True
    return False


# =============================================================================
# Session Manager
# =============================================================================

class SessionManager:
    """Acquire, reuse and invalidate Acumatica sessions.

    Usage:
        manager = SessionManager(SessionCache(db_path), HttpTransport())
        cookie = await manager.get_session(credentials)
        response = await manager.make_authenticated_request(credentials, "GET", url)
    """

    def __init__(
        self,
        cache: SessionCache,
        transport: Optional[HttpTransport] = None,
        ttl_minutes: int = 25,
        lease_seconds: int = 30,
        poll_seconds: float = 0.5,
        send_all_cookies: bool = False,
    ):
        self.cache = cache
        self.transport = transport or HttpTransport()
        self.ttl = timedelta(minutes=ttl_minutes)
        self.lease_seconds = lease_seconds
        self.poll_seconds = poll_seconds
        self.send_all_cookies = send_all_cookies
        self._holder = f"sm-{uuid.uuid4().hex[:12]}"

    # =========================================================================
    # Acquire
    # =========================================================================

    async def get_session(self, credentials: AcumaticaCredentials) -> str:
        """Return a valid session cookie, logging in only when necessary."""
        return (await self.acquire(credentials)).session_cookie

    async def acquire(self, credentials: AcumaticaCredentials) -> CachedSession:
        credentials.validate()
        tenant_id = credentials.tenant_id

        cached = self.cache.find_valid(tenant_id)
        if cached:
            self.cache.touch(cached.id)
            get_metrics().record_session_reuse()
            logger.debug("Reusing cached Acumatica session", extra_fields={"session_id": cached.id})
            return cached

        holder = f"{self._holder}-{uuid.uuid4().hex[:8]}"
        deadline = asyncio.get_running_loop().time() + self.lease_seconds * 2
        while True:
            session, have_lease = self.cache.acquire_login_lease(tenant_id, holder, self.lease_seconds)
            if session:
                # another invocation logged in between our first read and the lease check
                get_metrics().record_session_reuse()
                return session
            if have_lease:
                break
            if asyncio.get_running_loop().time() > deadline:
                raise AuthenticationError(
                    f"Timed out waiting for another login to complete for tenant {tenant_id}"
                )
            await asyncio.sleep(self.poll_seconds)

        try:
            cookie = await self._login(credentials)
        except BaseException:
            self.cache.release_lease(tenant_id, holder)
            raise

        session = self.cache.store_new_session(tenant_id, cookie, self.ttl, holder=holder)
        logger.info(
            "Created new Acumatica session",
            extra_fields={"session_id": session.id, "expires_at": session.expires_at.isoformat()},
        )
        return session

    async def _login(self, credentials: AcumaticaCredentials) -> str:
        response = await self.transport.request(
            "POST",
            credentials.login_url,
            headers={"Content-Type": "application/json", "Accept": "application/json"},
            json_body=credentials.login_body(),
        )

        if not response.ok:
            get_metrics().record_login(success=False)
            if is_login_limit_error(response.text):
                raise LoginLimitError(
                    "Acumatica API login limit reached",
                    response.status,
                    response.text,
                )
            raise AuthenticationError(
                f"Acumatica login failed ({response.status}): {response.text[:500]}",
                response.status,
                response.text,
            )

        cookie = select_session_cookie(response.set_cookies, send_all=self.send_all_cookies)
        if not cookie:
            get_metrics().record_login(success=False)
            raise AuthenticationError(
                "Acumatica login succeeded but returned no session cookie",
                response.status,
                response.text,
            )

        get_metrics().record_login(success=True)
        return cookie

    # =========================================================================
    # Requests
    # =========================================================================

    async def make_authenticated_request(
        self,
        credentials: AcumaticaCredentials,
        method: str,
        url: str,
        params: Optional[Dict[str, str]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        expect_array: bool = False,
    ) -> ErpResponse:
        """Send a request with the session cookie, re-authenticating once.

        A 401/403, an HTML body, or a non-array body when ``expect_array``
        is set invalidates the session used. The request is then repeated
        exactly once with a fresh session.

        Raises:
            SessionExpiredError: the retry was rejected as well
        """
        for attempt in range(2):
            session = await self.acquire(credentials)
            response = await self.transport.request(
                method,
                url,
                headers={"Cookie": session.session_cookie, "Accept": "application/json"},
                params=params,
                json_body=json_body,
            )

            if not is_session_failure(response, expect_array):
                return response

            self.cache.invalidate(session.id)
            if attempt == 0:
                get_metrics().record_reauth_retry()
                logger.warning(
                    f"Session rejected ({response.status}), re-authenticating once",
                    extra_fields={"session_id": session.id, "url": url},
                )
                continue

            raise SessionExpiredError(
                f"Acumatica rejected a fresh session ({response.status})",
                response.status,
                response.text[:500],
            )

        raise SessionExpiredError("Acumatica session could not be established")

    # =========================================================================
    # Invalidation / logout
    # =========================================================================

    def invalidate_session(self, session_id: int) -> int:
        return self.cache.invalidate(session_id)

    def invalidate_expired_sessions(self, tenant_id: Optional[str] = None) -> int:
        return self.cache.invalidate_expired(tenant_id)

    def invalidate_all_sessions(self, tenant_id: Optional[str] = None) -> int:
        return self.cache.invalidate_all(tenant_id)

    async def force_logout(self, credentials: AcumaticaCredentials) -> Dict[str, Any]:
        """Log out every cached session for the tenant, then clear the cache.

        Logout failures are recorded per session and never raised.
        """
        sessions = self.cache.list_sessions(credentials.tenant_id)
        results = []
        for session in sessions:
            if not session.is_usable:
                results.append({"session_id": session.id, "status": "skipped", "reason": "expired or invalid"})
                continue
            try:
                response = await self.transport.request(
                    "POST",
                    credentials.logout_url,
                    headers={"Cookie": session.session_cookie},
                )
                status = "logged_out" if response.ok else "failed"
                results.append({"session_id": session.id, "status": status, "http_status": response.status})
                if response.ok:
                    get_metrics().record_logout()
            except AcumaticaError as e:
                logger.warning(f"Logout failed for session {session.id}: {e}")
                results.append({"session_id": session.id, "status": "failed", "error": str(e)})

        invalidated = self.cache.invalidate_all(credentials.tenant_id)
        deleted = self.cache.delete_sessions([s.id for s in sessions])
        logger.info(
            "Force logout finished",
            extra_fields={"sessions": len(sessions), "invalidated": invalidated, "deleted": deleted},
        )
        return {
            "sessions_found": len(sessions),
            "sessions_invalidated": invalidated,
            "sessions_deleted": deleted,
            "results": results,
        }
