"""Service configuration.

Values come from environment variables prefixed with ``SYNC_`` or from a
``.env`` file at the repo root, e.g. ``SYNC_SESSION_TTL_MINUTES=20``.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


REPO_ROOT = Path(__file__).resolve().parents[1]


class SyncSettings(BaseSettings):
    """Settings for the Acumatica sync service."""

    model_config = SettingsConfigDict(
        env_prefix="SYNC_",
        env_file=str(REPO_ROOT / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Tenant used when a request does not name one
    default_tenant: str = "default"

    # Mirror database (sqlite)
    db_path: Path = REPO_ROOT / "acumatica_sync.db"

    # ERP endpoint
    endpoint_name: str = "Default"
    endpoint_version: str = "24.200.001"
    request_timeout_seconds: int = 60

    # Session cache. TTL must stay below the ERP's own session timeout.
    session_ttl_minutes: int = Field(default=25, ge=20, le=30)
    login_lease_seconds: int = 30
    login_wait_poll_seconds: float = 0.5
    send_all_cookies: bool = False

    # Sync engine
    default_lookback_minutes: int = 10000
    page_size: int = 500
    progress_interval: int = 10
    soft_deadline_seconds: int = 300
    max_response_errors: int = 10
    max_status_errors: int = 150

    # Date-range jobs
    job_reuse_minutes: int = 30
    job_stall_minutes: int = 30
    inline_max_days: int = 7

    # Reconciliation
    max_payments_per_run: int = 20
    health_sample_size: int = 50

    # AES-256-GCM key (base64) for secrets at rest; plaintext when unset
    encryption_key: Optional[str] = None

    # Temporal
    task_queue: str = "acumatica-sync"
    use_temporal: bool = False

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    @field_validator("encryption_key")
    @classmethod
    def _blank_key_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            return None
        return value


@lru_cache(maxsize=1)
def get_settings() -> SyncSettings:
    """Return the process-wide settings instance."""
    return SyncSettings()
