"""Billing: provider client, webhook adapters and the event reconciler."""

from entitle.billing.checkout import CheckoutService
from entitle.billing.events import (
    BillingEvent,
    BillingEventType,
    CheckoutSession,
    CustomerRef,
    EventCorrelation,
    SubscriptionSnapshot,
)
from entitle.billing.provider import (
    BillingProviderClient,
    MockBillingProvider,
    ProviderConfig,
    StripeBillingProvider,
    create_billing_provider,
)
from entitle.billing.reconciler import (
    BillingEventReconciler,
    ReconcileOutcome,
    ReconcileResult,
)
from entitle.billing.status_map import map_provider_status, resolve_event_status
from entitle.billing.sync import SubscriptionSyncService, SyncReport
from entitle.billing.webhooks import (
    LemonSqueezyWebhookAdapter,
    StripeWebhookAdapter,
    get_webhook_adapter,
)

__all__ = [
    "BillingEvent",
    "BillingEventReconciler",
    "BillingEventType",
    "BillingProviderClient",
    "CheckoutService",
    "CheckoutSession",
    "CustomerRef",
    "EventCorrelation",
    "LemonSqueezyWebhookAdapter",
    "MockBillingProvider",
    "ProviderConfig",
    "ReconcileOutcome",
    "ReconcileResult",
    "StripeBillingProvider",
    "StripeWebhookAdapter",
    "SubscriptionSnapshot",
    "SubscriptionSyncService",
    "SyncReport",
    "create_billing_provider",
    "get_webhook_adapter",
    "map_provider_status",
    "resolve_event_status",
]
