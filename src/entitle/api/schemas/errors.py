"""Error response schemas for API."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ErrorCode(str, Enum):
    """Stable codes the dashboard and desktop app branch on.

    Access denials all share ``forbidden``; ``details.reason`` says why
    (``account_suspended``, ``team_subscription_past_due``, ...).
    """

    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"

    NOT_FOUND = "not_found"
    CONFLICT = "conflict"  # machine lock, one active subscription per owner
    DUPLICATE = "duplicate"
    VALIDATION_ERROR = "validation_error"

    # Billing webhook deliveries
    INVALID_SIGNATURE = "invalid_signature"
    INVALID_PAYLOAD = "invalid_payload"

    # Billing and identity providers
    UPSTREAM_ERROR = "upstream_error"
    UPSTREAM_REJECTED = "upstream_rejected"
    UPSTREAM_TIMEOUT = "upstream_timeout"

    INTERNAL_ERROR = "internal_error"
    SERVICE_UNAVAILABLE = "service_unavailable"  # entitlement store down; safe to retry


class APIError(BaseModel):
    """Body of every error response outside the billing webhook.

    ``details`` only ever carries client-safe keys: ``reason`` for access
    denials, ``field`` for validation errors and ``resource`` for lookups.
    """

    error_code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Generic human-readable message")
    details: dict[str, Any] | None = Field(default=None, description="Client-safe context")
    request_id: str = Field(..., description="Request ID for support (UUIDv7)")
    timestamp: datetime = Field(..., description="When the error occurred")

    model_config = {"json_schema_extra": {"example": {
        "error_code": "forbidden",
        "message": "Not entitled to this action",
        "details": {"reason": "team_subscription_past_due"},
        "request_id": "019478f2-1234-7000-8000-abcdef123456",
        "timestamp": "2026-10-19T12:00:00Z",
    }}}
