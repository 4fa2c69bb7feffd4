"""API Services Package."""

from api.services.runtime import (
    get_runtime,
    get_tenant_id,
    get_user_id,
    parse_window,
    shutdown_runtime,
)

__all__ = [
    "get_runtime",
    "get_tenant_id",
    "get_user_id",
    "parse_window",
    "shutdown_runtime",
]
