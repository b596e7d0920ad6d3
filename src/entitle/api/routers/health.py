"""Health check and metrics endpoints."""

import time
from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Response
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from entitle.api.dependencies import get_app_settings, get_token_cache
from entitle.api.schemas.health import (
    ComponentHealth,
    HealthDetailResponse,
    HealthResponse,
    HealthStatus,
)
from entitle.config.settings import Settings
from entitle.core.token_cache import InMemoryTokenCache, RedisTokenCache, TokenCache
from entitle.db.config import get_db
from entitle.observability.metrics import get_metrics

router = APIRouter(tags=["health"])

APP_VERSION = "0.1.0"


def _now() -> datetime:
    return datetime.now(UTC)


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Liveness check",
    description="200 while the process runs. No authentication required.",
)
async def health_check() -> HealthResponse:
    return HealthResponse(status=HealthStatus.HEALTHY, version=APP_VERSION, timestamp=_now())


@router.get(
    "/health/db",
    response_model=HealthDetailResponse,
    summary="Entitlement store check",
)
async def health_db(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> HealthDetailResponse:
    database = await _check_database(db)
    return HealthDetailResponse(
        status=database.status, version=APP_VERSION, timestamp=_now(), database=database
    )


@router.get(
    "/health/ready",
    response_model=HealthDetailResponse,
    summary="Readiness check",
    description=(
        "Unhealthy when the entitlement store is unreachable; degraded when "
        "the handoff cache or webhook verification is impaired."
    ),
)
async def health_ready(
    db: Annotated[AsyncSession, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_app_settings)],
    token_cache: Annotated[TokenCache, Depends(get_token_cache)],
) -> HealthDetailResponse:
    database = await _check_database(db)
    handoff_cache = await _check_handoff_cache(token_cache)
    billing = _check_billing(settings)
    return HealthDetailResponse(
        status=_aggregate_health([database, handoff_cache, billing]),
        version=APP_VERSION,
        timestamp=_now(),
        database=database,
        handoff_cache=handoff_cache,
        billing=billing,
        details={
            "billing_provider": _billing_mode(settings),
            "webhook_format": settings.billing_webhook_format.value,
            "handoff_cache_backend": settings.handoff_cache_backend.value,
        },
    )


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Prometheus scrape endpoint."""
    return Response(content=get_metrics(), media_type="text/plain; version=0.0.4")


async def _check_database(db: AsyncSession) -> ComponentHealth:
    start = time.perf_counter()
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        return ComponentHealth(
            status=HealthStatus.UNHEALTHY,
            message=f"Entitlement store unreachable: {type(e).__name__}",
            latency_ms=_elapsed_ms(start),
        )
    return ComponentHealth(
        status=HealthStatus.HEALTHY,
        message="Entitlement store reachable",
        latency_ms=_elapsed_ms(start),
    )


async def _check_handoff_cache(token_cache: TokenCache) -> ComponentHealth:
    if isinstance(token_cache, InMemoryTokenCache):
        stats = token_cache.stats
        return ComponentHealth(
            status=HealthStatus.HEALTHY,
            message=f"in-memory, {stats.entries} pending handoff tokens",
        )
    if not isinstance(token_cache, RedisTokenCache):
        return ComponentHealth(status=HealthStatus.HEALTHY, message=type(token_cache).__name__)

    start = time.perf_counter()
    try:
        await token_cache.ping()
    except (RedisError, OSError) as e:
        # Handoff tokens are a convenience; losing them degrades, never fails
        return ComponentHealth(
            status=HealthStatus.DEGRADED,
            message=f"Redis unreachable: {type(e).__name__}",
            latency_ms=_elapsed_ms(start),
        )
    return ComponentHealth(
        status=HealthStatus.HEALTHY, message="redis", latency_ms=_elapsed_ms(start)
    )


def _billing_mode(settings: Settings) -> str:
    if settings.billing_provider_api_key is None and settings.ENVIRONMENT != "production":
        return "mock"
    return "stripe"


def _check_billing(settings: Settings) -> ComponentHealth:
    """Configuration only; the provider is never called from a health check."""
    if settings.billing_webhook_secret is None:
        return ComponentHealth(
            status=HealthStatus.DEGRADED,
            message="Webhook secret missing; deliveries are refused with 503",
        )
    return ComponentHealth(
        status=HealthStatus.HEALTHY,
        message=f"{settings.billing_webhook_format.value} webhooks verified",
    )


def _aggregate_health(components: list[ComponentHealth | None]) -> HealthStatus:
    """UNHEALTHY if any component is, else DEGRADED if any is, else HEALTHY."""
    statuses = [c.status for c in components if c is not None]
    if HealthStatus.UNHEALTHY in statuses:
        return HealthStatus.UNHEALTHY
    if HealthStatus.DEGRADED in statuses:
        return HealthStatus.DEGRADED
    return HealthStatus.HEALTHY
