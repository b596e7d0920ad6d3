"""Normalized billing provider events and snapshots.

Every inbound webhook, whatever the provider's wire format, is parsed into
a ``BillingEvent`` before the reconciler sees it. Out-of-band sync turns a
``SubscriptionSnapshot`` into the same shape.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID


class BillingEventType(str, Enum):
    """Provider-neutral billing event types."""

    SUBSCRIPTION_CREATED = "subscription.created"
    SUBSCRIPTION_UPDATED = "subscription.updated"
    SUBSCRIPTION_CANCELLED = "subscription.cancelled"
    SUBSCRIPTION_EXPIRED = "subscription.expired"
    PAYMENT_SUCCEEDED = "payment.succeeded"
    PAYMENT_FAILED = "payment.failed"
    CHECKOUT_COMPLETED = "checkout.completed"

    @property
    def links_subscription(self) -> bool:
        """Whether this event may bind a provider reference for the first time."""
        return self in (
            BillingEventType.CHECKOUT_COMPLETED,
            BillingEventType.SUBSCRIPTION_CREATED,
        )


@dataclass
class EventCorrelation:
    """Client-supplied references used to resolve a first-time subscription.

    Checkout sessions carry the tenant id as the client reference and
    user/plan metadata; the provider echoes them back on the events.
    """

    tenant_id: UUID | None = None
    user_id: UUID | None = None
    organization_id: UUID | None = None
    plan: str | None = None
    email: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return self.tenant_id is None and self.user_id is None and self.organization_id is None

    @classmethod
    def from_mapping(
        cls,
        data: dict[str, Any] | None,
        *,
        client_reference_id: str | None = None,
        email: str | None = None,
    ) -> "EventCorrelation":
        """Build a correlation from provider metadata, ignoring malformed ids."""
        data = dict(data or {})
        return cls(
            tenant_id=_parse_uuid(data.get("tenant_id") or client_reference_id),
            user_id=_parse_uuid(data.get("user_id")),
            organization_id=_parse_uuid(data.get("organization_id")),
            plan=data.get("plan"),
            email=(data.get("email") or email or None),
            metadata=data,
        )


@dataclass
class BillingEvent:
    """A provider event normalized for reconciliation."""

    event_type: BillingEventType
    provider_subscription_ref: str | None
    provider_customer_ref: str | None = None
    provider_status: str | None = None
    period_start: datetime | None = None
    period_end: datetime | None = None
    quantity: int | None = None
    price_id: str | None = None
    cancel_at_period_end: bool = False
    correlation: EventCorrelation = field(default_factory=EventCorrelation)
    event_id: str | None = None
    occurred_at: datetime | None = None
    raw_payload: dict[str, Any] | None = field(default=None, repr=False)

    def to_log_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "event_id": self.event_id,
            "subscription_ref": self.provider_subscription_ref,
            "customer_ref": self.provider_customer_ref,
            "provider_status": self.provider_status,
            "quantity": self.quantity,
        }


@dataclass
class SubscriptionSnapshot:
    """Point-in-time view of a provider subscription."""

    subscription_ref: str
    customer_ref: str | None
    status: str
    quantity: int | None = None
    item_ref: str | None = None
    price_id: str | None = None
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    cancel_at_period_end: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_event(self) -> BillingEvent:
        """Express the snapshot as a synthetic subscription.updated event."""
        return BillingEvent(
            event_type=BillingEventType.SUBSCRIPTION_UPDATED,
            provider_subscription_ref=self.subscription_ref,
            provider_customer_ref=self.customer_ref,
            provider_status=self.status,
            period_start=self.current_period_start,
            period_end=self.current_period_end,
            quantity=self.quantity,
            price_id=self.price_id,
            cancel_at_period_end=self.cancel_at_period_end,
            correlation=EventCorrelation.from_mapping(self.metadata),
            # Not a provider delivery, so never deduplicated by id
            event_id=None,
        )


@dataclass
class CustomerRef:
    """Provider customer created for a tenant or user."""

    customer_ref: str
    email: str


@dataclass
class CheckoutSession:
    """Hosted checkout page the customer is redirected to."""

    session_ref: str
    url: str


def _parse_uuid(value: Any) -> UUID | None:
    if value is None or value == "":
        return None
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None
