"""API schemas for team management."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class InviteMemberRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=320)
    subscription_id: UUID | None = None


class RemoveMemberRequest(BaseModel):
    member_id: UUID


class CancelSubscriptionRequest(BaseModel):
    subscription_id: UUID | None = None


class TeamMemberResponse(BaseModel):
    member_id: UUID
    subscription_id: UUID
    email: str
    status: str
    invited_at: datetime
    joined_at: datetime | None = None
    last_used_at: datetime | None = None
    suspended_at: datetime | None = None

    model_config = {"from_attributes": True}


class TeamMemberListResponse(BaseModel):
    subscription_id: UUID
    items: list[TeamMemberResponse]


class SubscriptionResponse(BaseModel):
    subscription_id: UUID
    owner_type: str
    status: str
    plan: str
    seats: int
    billing_quantity: int
    current_period_end: datetime | None = None
    cancelled_at: datetime | None = None

    model_config = {"from_attributes": True}
