"""Translation of provider status vocabulary into internal statuses.

This is the only place that knows provider status strings. Unknown values
fail closed: they map to a status that never grants access.
"""

from entitle.billing.events import BillingEventType
from entitle.db.models import SubscriptionStatus

PROVIDER_STATUS_MAP: dict[str, SubscriptionStatus] = {
    # shared
    "active": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.UNPAID,
    "incomplete": SubscriptionStatus.INCOMPLETE,
    "paused": SubscriptionStatus.PAUSED,
    # stripe
    "trialing": SubscriptionStatus.TRIALING,
    "canceled": SubscriptionStatus.CANCELLED,
    "incomplete_expired": SubscriptionStatus.EXPIRED,
    # lemon squeezy
    "on_trial": SubscriptionStatus.TRIALING,
    "cancelled": SubscriptionStatus.CANCELLED,
    "expired": SubscriptionStatus.EXPIRED,
}

FAIL_CLOSED_STATUS = SubscriptionStatus.INCOMPLETE

# Status implied by the event itself when the payload carries none
EVENT_IMPLIED_STATUS: dict[BillingEventType, SubscriptionStatus] = {
    BillingEventType.SUBSCRIPTION_CANCELLED: SubscriptionStatus.CANCELLED,
    BillingEventType.SUBSCRIPTION_EXPIRED: SubscriptionStatus.EXPIRED,
    BillingEventType.PAYMENT_FAILED: SubscriptionStatus.PAST_DUE,
    BillingEventType.PAYMENT_SUCCEEDED: SubscriptionStatus.ACTIVE,
    BillingEventType.CHECKOUT_COMPLETED: SubscriptionStatus.ACTIVE,
}


def map_provider_status(provider_status: str | None) -> SubscriptionStatus:
    """Map a provider status string to the internal enum, failing closed."""
    if not provider_status:
        return FAIL_CLOSED_STATUS
    return PROVIDER_STATUS_MAP.get(provider_status.strip().lower(), FAIL_CLOSED_STATUS)


def resolve_event_status(
    event_type: BillingEventType, provider_status: str | None
) -> SubscriptionStatus:
    """Pick the internal status an event drives its subscription to.

    Terminal event types win over whatever status string rides along,
    so a late "active" on a cancellation event cannot re-grant access.
    """
    if event_type in (
        BillingEventType.SUBSCRIPTION_CANCELLED,
        BillingEventType.SUBSCRIPTION_EXPIRED,
    ):
        mapped = map_provider_status(provider_status) if provider_status else None
        if mapped in (SubscriptionStatus.CANCELLED, SubscriptionStatus.EXPIRED):
            return mapped
        return EVENT_IMPLIED_STATUS[event_type]
    if provider_status:
        return map_provider_status(provider_status)
    return EVENT_IMPLIED_STATUS.get(event_type, FAIL_CLOSED_STATUS)
