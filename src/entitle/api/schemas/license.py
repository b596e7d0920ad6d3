"""API schemas for desktop license endpoints."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class LicenseRequest(BaseModel):
    license_key: str = Field(..., min_length=1, max_length=64)
    machine_id: str = Field(..., min_length=1, max_length=255)


class LicenseResetRequest(BaseModel):
    license_key: str = Field(..., min_length=1, max_length=64)


class LicenseResponse(BaseModel):
    """Outcome of a license activation, status check or reset."""

    valid: bool
    license_key: str
    status: str | None = None
    reason: str | None = None
    plan: str | None = None
    subscription_status: str | None = None
    user_email: str | None = None
    seat_id: UUID | None = None
    activated_at: datetime | None = None
    message: str | None = None
