"""Session and credential endpoints."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from api.services.runtime import get_runtime, get_tenant_id
from connectors.acumatica.acu_auth import AcumaticaCredentials
from core.observability.logging import get_logger
from sync.runtime import SyncRuntime


router = APIRouter()
logger = get_logger(__name__)


class CredentialsRequest(BaseModel):
    """Acumatica credential set to make active for the tenant."""
    model_config = ConfigDict(populate_by_name=True)

    host_url: str = Field(..., alias="hostUrl")
    username: str
    password: str
    company: Optional[str] = None
    branch: Optional[str] = None


@router.get("/sessions")
async def list_sessions(
    only_valid: bool = Query(default=False, alias="onlyValid"),
    runtime: SyncRuntime = Depends(get_runtime),
    tenant_id: Optional[str] = Depends(get_tenant_id),
) -> Dict[str, Any]:
    """Cached ERP sessions for the tenant (cookies are never returned)."""
    sessions = runtime.sessions.list_sessions(runtime.tenant(tenant_id), only_valid=only_valid)
    return {"success": True, "sessions": [s.to_dict() for s in sessions]}


@router.post("/sessions/force-logout")
async def force_logout(
    runtime: SyncRuntime = Depends(get_runtime),
    tenant_id: Optional[str] = Depends(get_tenant_id),
) -> Dict[str, Any]:
    """Log out every cached session and clear the cache.

    Used when Acumatica reports the API login limit.
    """
    credentials = runtime.credentials.require_active(runtime.tenant(tenant_id))
    result = await runtime.session_manager.force_logout(credentials)
    return {"success": True, **result}


@router.put("/credentials")
async def set_credentials(
    request: CredentialsRequest,
    runtime: SyncRuntime = Depends(get_runtime),
    tenant_id: Optional[str] = Depends(get_tenant_id),
) -> Dict[str, Any]:
    """Replace the tenant's active credentials.

    Sessions obtained with the previous credentials are invalidated.
    """
    tenant = runtime.tenant(tenant_id)
    credentials = runtime.credentials.set_active(AcumaticaCredentials(
        tenant_id=tenant,
        host_url=request.host_url,
        username=request.username,
        password=request.password,
        company=request.company,
        branch=request.branch,
    ))
    invalidated = runtime.session_manager.invalidate_all_sessions(tenant)
    logger.info(f"Credentials updated for tenant {tenant}", extra_fields={"sessions_invalidated": invalidated})
    return {"success": True, "credentials": credentials.to_dict(), "sessionsInvalidated": invalidated}
