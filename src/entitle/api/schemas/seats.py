"""API schemas for seat management."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class AddSeatRequest(BaseModel):
    """Provision one more seat on a subscription the caller administers."""

    email: str | None = Field(default=None, max_length=320, description="Seat holder email")
    subscription_id: UUID | None = Field(
        default=None, description="Defaults to the caller's own or tenant subscription"
    )


class SeatResponse(BaseModel):
    """A seat as shown to its subscription admin."""

    seat_id: UUID
    subscription_id: UUID
    license_key: str
    assigned_email: str | None = None
    status: str
    machine_identifier: str | None = None
    activated_at: datetime | None = None
    last_used_at: datetime | None = None
    revoked_at: datetime | None = None

    model_config = {"from_attributes": True}


class SeatListResponse(BaseModel):
    subscription_id: UUID
    seats: int
    billing_quantity: int
    items: list[SeatResponse]
