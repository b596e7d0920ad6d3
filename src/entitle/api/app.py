"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from entitle.api.dependencies import close_dependencies
from entitle.api.middleware import (
    AuthenticationMiddleware,
    ErrorHandlingMiddleware,
    ObservabilityMiddleware,
    RequestContextMiddleware,
    RequestLoggingMiddleware,
)
from entitle.api.routers import health_router, v1_router
from entitle.config.settings import Settings, get_settings
from entitle.core.logging import setup_logging
from entitle.core.redis import close_redis
from entitle.db.config import close_db, get_engine, init_db
from entitle.observability import (
    TracingManager,
    get_metrics_manager,
    get_tracing_manager,
)

SERVICE_VERSION = "0.1.0"


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Optional settings override (useful for testing)

    Returns:
        Configured FastAPI application

    Example:
        # Run with uvicorn
        uvicorn entitle.api.app:create_app --factory

        # Testing
        app = create_app(settings=Settings(ENVIRONMENT="test"))
    """
    if settings is None:
        settings = get_settings()

    app = FastAPI(
        title="Entitle API",
        description="Subscription, seat and access-control service",
        version=SERVICE_VERSION,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        openapi_url="/openapi.json" if settings.DEBUG else None,
        lifespan=_lifespan,
    )

    # Dependencies read settings from app state
    app.state.settings = settings

    _configure_middleware(app, settings)
    _configure_routers(app)

    return app


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Start and stop logging, observability, the database and provider clients."""
    settings: Settings = app.state.settings
    setup_logging()
    logger = structlog.get_logger("entitle.api")
    logger.info("app_starting", environment=settings.ENVIRONMENT)

    tracing_manager: TracingManager | None = None
    try:
        tracing_manager = get_tracing_manager(settings)
        tracing_manager.initialize()
        tracing_manager.instrument_fastapi(app)
        tracing_manager.instrument_httpx()

        get_metrics_manager().initialize(
            service_name="entitle",
            service_version=SERVICE_VERSION,
            environment=settings.ENVIRONMENT,
            billing_provider="mock" if settings.billing_provider_api_key is None else "stripe",
            webhook_format=settings.billing_webhook_format.value,
        )
        logger.info("observability_initialized")
    except Exception as exc:
        logger.warning("observability_init_failed", error=str(exc))

    try:
        await init_db()
        logger.info("database_initialized")
        if tracing_manager and tracing_manager.config.enabled:
            tracing_manager.instrument_sqlalchemy(get_engine())
    except Exception as exc:
        # Health endpoints report the outage; requests fail with 503
        logger.warning("database_init_failed", error=str(exc))

    yield

    logger.info("app_stopping")
    await close_dependencies()
    await close_redis()
    await close_db()
    if tracing_manager:
        tracing_manager.shutdown()


def _configure_middleware(app: FastAPI, settings: Settings) -> None:
    """Configure the middleware stack.

    Execution order, outermost first:
    1. ObservabilityMiddleware - Records metrics and traces
    2. RequestLoggingMiddleware - Logs every request
    3. ErrorHandlingMiddleware - Converts exceptions to HTTP responses
    4. CORSMiddleware - Handles CORS (if configured)
    5. AuthenticationMiddleware - API key or session token
    6. RequestContextMiddleware - Sets the ContextVar request context

    Starlette runs the last-added middleware first, so they are added
    innermost first.
    """
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(AuthenticationMiddleware)

    if settings.CORS_ORIGINS:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.CORS_ORIGINS,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(ObservabilityMiddleware)


def _configure_routers(app: FastAPI) -> None:
    # Health and metrics at the root, the API under /v1
    app.include_router(health_router)
    app.include_router(v1_router)
