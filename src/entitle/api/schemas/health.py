"""Health check response schemas."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # serving, but webhooks or desktop handoff are impaired
    UNHEALTHY = "unhealthy"  # the entitlement store is unreachable


class HealthResponse(BaseModel):
    """Liveness response."""

    status: HealthStatus = Field(..., description="Overall health status")
    version: str = Field(..., description="Application version")
    timestamp: datetime = Field(..., description="Check timestamp")

    model_config = {"json_schema_extra": {"example": {
        "status": "healthy",
        "version": "0.1.0",
        "timestamp": "2026-10-19T12:00:00Z",
    }}}


class ComponentHealth(BaseModel):
    status: HealthStatus
    message: str | None = None
    latency_ms: float | None = None


class HealthDetailResponse(HealthResponse):
    """Readiness response with one entry per dependency.

    ``database`` is the entitlement store and decides readiness on its
    own. ``handoff_cache`` and ``billing`` can only degrade the service.
    """

    database: ComponentHealth = Field(..., description="Entitlement store")
    handoff_cache: ComponentHealth | None = Field(
        default=None, description="Desktop handoff token cache"
    )
    billing: ComponentHealth | None = Field(
        default=None, description="Billing provider and webhook configuration"
    )
    details: dict[str, Any] | None = None

    model_config = {"json_schema_extra": {"example": {
        "status": "healthy",
        "version": "0.1.0",
        "timestamp": "2026-10-19T12:00:00Z",
        "database": {"status": "healthy", "latency_ms": 1.5},
        "handoff_cache": {"status": "healthy", "message": "in-memory"},
        "billing": {"status": "healthy", "message": "stripe webhooks verified"},
        "details": {"billing_provider": "stripe", "handoff_cache_backend": "memory"},
    }}}
