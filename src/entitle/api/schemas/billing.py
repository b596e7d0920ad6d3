"""API schemas for billing endpoints."""

from uuid import UUID

from pydantic import BaseModel, Field


class CheckoutRequest(BaseModel):
    """Start a hosted checkout for the caller's tenant."""

    plan: str = Field(default="basic", description="Plan to subscribe to (basic or pro)")
    quantity: int = Field(default=1, ge=1, le=10_000, description="Number of seats")


class CheckoutResponse(BaseModel):
    session_ref: str
    url: str


class WebhookAck(BaseModel):
    """Acknowledgement returned to the billing provider.

    Any 2xx stops redelivery, so every handled outcome is acknowledged,
    including events that could not be matched to a subscription.
    """

    received: bool = True
    outcome: str = Field(
        ..., description="applied, duplicate, stale, unresolvable, ignored or conflict"
    )
    subscription_id: UUID | None = None

    model_config = {"json_schema_extra": {"example": {
        "received": True,
        "outcome": "applied",
        "subscription_id": "019478f2-1234-7000-8000-abcdef123456",
    }}}


class SyncResponse(BaseModel):
    checked: int
    failed: int
    outcomes: dict[str, int]
