"""
FastAPI application factory for the idsync API server.

Uses lifespan handler for startup/shutdown with async resource management.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from idsync import __version__
from idsync.config import settings
from idsync.db.session import close_db, init_db
from idsync.errors import IdSyncError
from idsync.iam.keycloak import KeycloakGateway
from idsync.logging_config import configure_logging, get_logger

from .health import router as health_router
from .routers.identity_providers import router as identity_providers_router
from .routers.service_accounts import router as service_accounts_router

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan handler for startup and shutdown."""
    configure_logging(json_logs=settings.json_logs, log_level=settings.log_level)
    logger.info("Starting idsync API server", version=__version__)

    await init_db()
    logger.info("Database connection initialized")

    gateway = KeycloakGateway(settings.iam)
    app.state.iam_gateway = gateway
    logger.info("IAM gateway client initialized", base_url=settings.iam.base_url)

    yield

    logger.info("Shutting down idsync API server")
    await gateway.aclose()
    await close_db()


def create_application() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="idsync API",
        description="Service-account provisioning and identity-provider link reconciliation",
        version=__version__,
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )

    # Request ID middleware
    @app.middleware("http")
    async def add_request_id(request: Request, call_next: Any) -> Any:
        """Add request ID to context for logging correlation."""
        request_id = request.headers.get("X-Request-ID")
        if request_id:
            structlog.contextvars.bind_contextvars(request_id=request_id)

        response = await call_next(request)

        if request_id:
            response.headers["X-Request-ID"] = request_id
            structlog.contextvars.unbind_contextvars("request_id")

        return response

    @app.exception_handler(IdSyncError)
    async def idsync_error_handler(request: Request, exc: IdSyncError) -> JSONResponse:
        """Translate domain errors into their HTTP status."""
        log_method = logger.error if exc.status_code >= 500 else logger.info
        log_method(
            "Request failed",
            error_type=type(exc).__name__,
            error=exc.message,
            path=str(request.url.path),
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "type": type(exc).__name__},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled errors."""
        logger.error("Unhandled exception", exc_info=exc, path=str(request.url.path))
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    # Health endpoints (no prefix)
    app.include_router(health_router)

    # API v1 routers
    app.include_router(service_accounts_router, prefix=settings.api_prefix)
    app.include_router(identity_providers_router, prefix=settings.api_prefix)

    return app


# Application instance
app = create_application()
