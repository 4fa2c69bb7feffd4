"""API Routes Package."""

from api.routes import health, jobs, reconciliation, sessions, sync, webhooks

__all__ = [
    "health",
    "jobs",
    "reconciliation",
    "sessions",
    "sync",
    "webhooks",
]
