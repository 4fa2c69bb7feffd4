"""Request-scoped access to the sync runtime.

Routes receive the runtime through ``Depends(get_runtime)``; tests swap it
with ``app.dependency_overrides[get_runtime]``.
"""

from datetime import datetime
from typing import Optional, Tuple

from fastapi import Header

from connectors.acumatica.acu_client import ConfigurationError
from connectors.acumatica.odata import parse_boundary
from sync.runtime import SyncRuntime


_runtime: Optional[SyncRuntime] = None


def get_runtime() -> SyncRuntime:
    """Process-wide runtime, built on first use."""
    global _runtime
    if _runtime is None:
        _runtime = SyncRuntime()
    return _runtime


async def shutdown_runtime() -> None:
    global _runtime
    if _runtime is not None:
        await _runtime.close()
        _runtime = None


def get_tenant_id(x_tenant_id: Optional[str] = Header(default=None)) -> Optional[str]:
    """Tenant from the ``X-Tenant-Id`` header; None means the default tenant."""
    return x_tenant_id or None


def get_user_id(x_user_id: Optional[str] = Header(default=None)) -> Optional[str]:
    return x_user_id or None


def parse_window(start: Optional[str], end: Optional[str]) -> Tuple[datetime, datetime]:
    """Validate request dates and return the inclusive window.

    Raises:
        ConfigurationError: missing, unparseable or reversed dates
    """
    if not start or not end:
        raise ConfigurationError("Start date and end date are required")
    try:
        window_start = parse_boundary(start)
        window_end = parse_boundary(end, end_of_day=True)
    except ValueError as e:
        raise ConfigurationError(f"Invalid date: {e}")
    if window_start > window_end:
        raise ConfigurationError("startDate must not be after endDate")
    return window_start, window_end
