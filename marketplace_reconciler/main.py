"""FastAPI application entry point and lifecycle management."""

import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from marketplace_reconciler.errors import SubscriptionNotFoundError
from marketplace_reconciler.logging_config import configure_logging, get_logger
from marketplace_reconciler.middleware import ContextMiddleware, RequestLoggingMiddleware

__version__ = "0.1.0"

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager.

    Creates the schema and the service graph on startup, and shuts the
    outbound clients down on exit.
    """
    from marketplace_reconciler.services.registry import get_services, reset_services

    logger.info("reconciler_starting", version=__version__)
    try:
        services = get_services()
        services.database.create_all()
        if services.dispatcher.is_enabled():
            logger.info("pubsub_enabled", message="Status notifications will be published")
        else:
            logger.info("pubsub_disabled", message="Status notifications are disabled")
        logger.info("reconciler_started", status="ready")
        yield
    finally:
        logger.info("reconciler_shutting_down")
        reset_services()
        logger.info("reconciler_stopped")


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    log_level = os.getenv("LOG_LEVEL", "INFO")
    json_format = os.getenv("LOG_FORMAT", "json").lower() == "json"
    configure_logging(log_level=log_level, json_format=json_format)

    app = FastAPI(
        title="Marketplace Subscription Reconciler",
        description="Reconciles marketplace SaaS subscriptions with local state and provisioning",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    include_request_details = os.getenv("LOG_REQUEST_DETAILS", "true").lower() == "true"
    app.add_middleware(RequestLoggingMiddleware, include_request_details=include_request_details)
    app.add_middleware(ContextMiddleware)

    # Webhook first: its fixed path must win over /subscriptions/{id} routes
    from marketplace_reconciler.api.subscriptions import router as subscriptions_router
    from marketplace_reconciler.api.webhook import router as webhook_router

    app.include_router(webhook_router)
    app.include_router(subscriptions_router)

    @app.get("/")
    async def root() -> dict[str, str]:
        """Health check endpoint."""
        return {
            "service": "marketplace-reconciler",
            "status": "running",
            "version": __version__,
        }

    @app.get("/health")
    def health() -> dict[str, object]:
        """Detailed health check."""
        from marketplace_reconciler.services.registry import get_services

        services = get_services()
        database_ok = services.database.ping()
        return {
            "status": "healthy" if database_ok else "degraded",
            "database": "connected" if database_ok else "unavailable",
            "pubsub": "connected" if services.dispatcher.is_enabled() else "disabled",
            "subscriptions": services.store.get_statistics() if database_ok else {},
        }

    @app.exception_handler(SubscriptionNotFoundError)
    async def subscription_not_found_handler(request: Request, exc: SubscriptionNotFoundError) -> JSONResponse:
        return JSONResponse(
            status_code=404,
            content={"error": "subscription_not_found", "message": str(exc)},
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        logger.warning("invalid_request", error=str(exc), path=request.url.path)
        return JSONResponse(
            status_code=400,
            content={"error": "invalid_request", "message": str(exc)},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle uncaught exceptions."""
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
            },
        )

    logger.info("app_created", endpoints=len(app.routes))
    return app


app = create_app()
