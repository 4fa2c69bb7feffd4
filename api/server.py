"""FastAPI server for the Acumatica sync service.

Main entry point for the API server.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.routes import (
    health,
    jobs,
    reconciliation,
    sessions,
    sync,
    webhooks,
)
from api.services.runtime import shutdown_runtime
from connectors.acumatica.acu_client import (
    AcumaticaError,
    AuthenticationError,
    ConfigurationError,
    LoginLimitError,
    NotFoundError,
)
from core import __version__
from core.config import get_settings
from core.observability.logging import configure_logging, get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    settings = get_settings()
    configure_logging(getattr(logging, settings.log_level.upper(), logging.INFO), settings.log_json)
    logger.info("Acumatica sync API starting up...")

    yield

    await shutdown_runtime()
    logger.info("Acumatica sync API shutting down...")


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message, **extra})


def register_exception_handlers(app: FastAPI) -> None:
    """Map sync-layer exceptions to JSON error envelopes."""

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
        return _error(400, str(exc))

    @app.exception_handler(LoginLimitError)
    async def login_limit_handler(request: Request, exc: LoginLimitError) -> JSONResponse:
        logger.warning(f"Acumatica login limit reached: {exc}")
        return _error(503, str(exc), solution=exc.solution)

    @app.exception_handler(AuthenticationError)
    async def authentication_error_handler(request: Request, exc: AuthenticationError) -> JSONResponse:
        return _error(401, str(exc))

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        return _error(404, str(exc))

    @app.exception_handler(AcumaticaError)
    async def acumatica_error_handler(request: Request, exc: AcumaticaError) -> JSONResponse:
        logger.error(f"Acumatica request failed: {exc}", extra_fields={"status_code": exc.status_code})
        return _error(500, str(exc))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        details = "; ".join(
            f"{'.'.join(str(part) for part in err.get('loc', ())[1:]) or 'body'}: {err.get('msg')}"
            for err in exc.errors()
        )
        return _error(400, f"Invalid request: {details}")

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        return _error(500, str(exc))


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Acumatica Sync API",
        description="Acumatica ERP sync layer: shared sessions, incremental and date-range mirroring, reconciliation",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    # Include routers
    app.include_router(health.router, tags=["Health"])
    app.include_router(sync.router, prefix="/sync", tags=["Sync"])
    app.include_router(jobs.router, prefix="/jobs", tags=["Jobs"])
    app.include_router(reconciliation.router, prefix="/reconciliation", tags=["Reconciliation"])
    app.include_router(sessions.router, tags=["Sessions"])
    app.include_router(webhooks.router, prefix="/webhooks", tags=["Webhooks"])

    @app.options("/{path:path}", include_in_schema=False)
    async def preflight(path: str) -> JSONResponse:
        return JSONResponse(status_code=200, content={})

    return app


# Default app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api.server:app", host="0.0.0.0", port=8000, reload=True)
