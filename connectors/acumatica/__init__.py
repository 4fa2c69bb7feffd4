"""Acumatica connector.

Session-cookie authentication with a shared per-tenant session cache, the
contract-based REST client, and OData filter helpers.
"""

from connectors.acumatica.acu_auth import (
    AcumaticaCredentials,
    SessionManager,
    normalize_host,
    select_session_cookie,
)
from connectors.acumatica.acu_client import (
    AcumaticaApiConfig,
    AcumaticaClient,
    AcumaticaError,
    AuthenticationError,
    ConfigurationError,
    ErpResponse,
    ExternalUnavailableError,
    HttpTransport,
    LoginLimitError,
    NotFoundError,
    RowProcessingError,
    SessionExpiredError,
)

__all__ = [
    "AcumaticaCredentials",
    "SessionManager",
    "normalize_host",
    "select_session_cookie",
    "AcumaticaApiConfig",
    "AcumaticaClient",
    "AcumaticaError",
    "AuthenticationError",
    "ConfigurationError",
    "ErpResponse",
    "ExternalUnavailableError",
    "HttpTransport",
    "LoginLimitError",
    "NotFoundError",
    "RowProcessingError",
    "SessionExpiredError",
]
