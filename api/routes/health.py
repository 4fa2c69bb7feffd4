"""Health check endpoints."""

import sqlite3
from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel

from api.services.runtime import get_runtime
from core import __version__
from core.observability.metrics import get_metrics
from storage.db import connect
from sync.runtime import SyncRuntime


router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: str
    version: str
    services: Dict[str, str]


def _storage_status(runtime: SyncRuntime) -> str:
    try:
        conn = connect(runtime.settings.db_path)
        try:
            conn.execute("SELECT 1").fetchone()
        finally:
            conn.close()
        return "up"
    except sqlite3.Error:
        return "down"


@router.get("/health", response_model=HealthResponse)
async def health_check(runtime: SyncRuntime = Depends(get_runtime)) -> HealthResponse:
    """Health check endpoint."""
    storage = _storage_status(runtime)
    return HealthResponse(
        status="healthy" if storage == "up" else "degraded",
        timestamp=datetime.utcnow().isoformat(),
        version=__version__,
        services={
            "api": "up",
            "storage": storage,
            "temporal": "enabled" if runtime.settings.use_temporal else "disabled",
        }
    )


@router.get("/ready")
async def readiness_check() -> Dict[str, str]:
    """Readiness probe for Kubernetes."""
    return {"status": "ready"}


@router.get("/live")
async def liveness_check(response: Response) -> Dict[str, str]:
    """Liveness probe for Kubernetes."""
    return {"status": "alive"}


@router.get("/metrics")
async def metrics() -> Dict[str, Any]:
    """In-process sync, session and timing counters."""
    return get_metrics().get_summary()
