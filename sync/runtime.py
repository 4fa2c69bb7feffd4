"""Wiring of stores, session manager and engines for one process.

Invocations share nothing in memory that matters for correctness: every
coordination point (sessions, jobs, sync status) lives in the database, so
a runtime is cheap to build per request, per activity, or once per process.
"""

from typing import Dict, Optional, Union

from connectors.acumatica.acu_auth import SessionManager
from connectors.acumatica.acu_client import AcumaticaApiConfig, AcumaticaClient, HttpTransport
from core.audit.events import ChangeLogger, SqliteChangeLogBackend
from core.config import SyncSettings, get_settings
from core.mapping.tables import DEFAULT_TABLES, MappingTables
from core.models.mirror import EntityType
from core.security.encryption import build_encryption
from reconciliation.engine import PaymentReconciler
from storage.credentials import CredentialStore
from storage.db import init_db
from storage.jobs import SyncJobStore
from storage.mirror import MirrorStore
from storage.sessions import SessionCache
from storage.sync_status import SyncStatusStore
from sync.engine import ENTITY_SPECS, EntitySyncEngine, entity_spec


class SyncRuntime:
    """Everything a sync or reconciliation invocation needs.

    Usage:
        runtime = SyncRuntime()
        engine = runtime.engine("invoice")
        result = await engine.run_incremental(60)
        await runtime.close()
    """

    def __init__(
        self,
        settings: Optional[SyncSettings] = None,
        transport: Optional[HttpTransport] = None,
        tables: MappingTables = DEFAULT_TABLES,
    ):
        self.settings = settings or get_settings()
        self.tables = tables
        db_path = self.settings.db_path
        init_db(db_path)

        encryption = build_encryption(self.settings.encryption_key)
        self.credentials = CredentialStore(db_path, encryption)
        self.sessions = SessionCache(db_path, encryption)
        self.transport = transport or HttpTransport(self.settings.request_timeout_seconds)
        self.session_manager = SessionManager(
            self.sessions,
            self.transport,
            ttl_minutes=self.settings.session_ttl_minutes,
            lease_seconds=self.settings.login_lease_seconds,
            poll_seconds=self.settings.login_wait_poll_seconds,
            send_all_cookies=self.settings.send_all_cookies,
        )
        self.mirror = MirrorStore(db_path)
        self.jobs = SyncJobStore(db_path)
        self.status = SyncStatusStore(db_path, max_errors=self.settings.max_status_errors)
        self.change_logger = ChangeLogger([SqliteChangeLogBackend(db_path)])
        self.api_config = AcumaticaApiConfig(
            endpoint_name=self.settings.endpoint_name,
            endpoint_version=self.settings.endpoint_version,
            timeout_seconds=self.settings.request_timeout_seconds,
        )

    def tenant(self, tenant_id: Optional[str] = None) -> str:
        return tenant_id or self.settings.default_tenant

    def client(self, tenant_id: Optional[str] = None) -> AcumaticaClient:
        """Client bound to the tenant's active credentials.

        Raises:
            ConfigurationError: no active credentials
        """
        credentials = self.credentials.require_active(self.tenant(tenant_id))
        return AcumaticaClient(self.session_manager, credentials, self.api_config)

    def engine(self, entity: Union[str, EntityType], tenant_id: Optional[str] = None) -> EntitySyncEngine:
        return EntitySyncEngine(
            self.client(tenant_id),
            self.mirror,
            entity_spec(entity),
            tables=self.tables,
            job_store=self.jobs,
            status_store=self.status,
            change_logger=self.change_logger,
            settings=self.settings,
        )

    def engines(self, tenant_id: Optional[str] = None) -> Dict[EntityType, EntitySyncEngine]:
        return {entity: self.engine(entity, tenant_id) for entity in ENTITY_SPECS}

    def reconciler(self, tenant_id: Optional[str] = None) -> PaymentReconciler:
        return PaymentReconciler(
            self.client(tenant_id),
            self.mirror,
            tables=self.tables,
            change_logger=self.change_logger,
            max_payments_per_run=self.settings.max_payments_per_run,
            page_size=self.settings.page_size,
        )

    async def close(self) -> None:
        await self.transport.close()
