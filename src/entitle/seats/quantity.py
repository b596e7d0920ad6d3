"""Keeping the billed quantity in step with provisioned seats and team slots."""

from uuid import UUID

import structlog

from entitle.billing.provider import BillingProviderClient
from entitle.core.exceptions import ConflictError, UpstreamError
from entitle.db.models import Subscription
from entitle.entitlements import EntitlementStore
from entitle.observability.metrics import record_seat_operation

logger = structlog.get_logger()


async def charge_increase(
    store: EntitlementStore,
    provider: BillingProviderClient,
    subscription: Subscription,
    quantity: int,
    *,
    operation: str,
) -> None:
    """Raise the billed quantity before the local write.

    The caller holds the subscription lock. On failure the transaction is
    rolled back and the error propagates, so no local row is created.

    Raises:
        ConflictError: The subscription has no provider reference yet
        ConcurrentUpdateError: Another writer changed the subscription
            while the provider call was in flight
        UpstreamError: The provider refused or timed out
    """
    ref = subscription.billing_subscription_ref
    if ref is None:
        await store.rollback()
        record_seat_operation(operation, "unlinked")
        raise ConflictError(
            "Subscription is not linked to the billing provider yet",
            resource="subscriptions",
            identifier=subscription.subscription_id,
        )
    try:
        await provider.update_subscription_quantity(ref, quantity)
    except UpstreamError:
        await store.rollback()
        record_seat_operation(operation, "upstream_error")
        logger.warning(
            "billing_increase_rejected",
            subscription_id=str(subscription.subscription_id),
            quantity=quantity,
            operation=operation,
        )
        raise
    subscription.billing_quantity = quantity
    # Version check against writers that committed during the provider call
    await store.flush()


async def sync_decrease(
    store: EntitlementStore,
    provider: BillingProviderClient,
    subscription_id: UUID,
    *,
    operation: str,
) -> bool:
    """Best-effort: lower the billed quantity after a committed decrease.

    Never raises for provider or concurrency failures; the next sync pass
    corrects whatever is left. Returns True if the provider was updated.
    """
    subscription = await store.lock_subscription(subscription_id)
    ref = subscription.billing_subscription_ref
    quantity = await store.billable_quantity(subscription)
    if ref is None or subscription.billing_quantity <= quantity:
        await store.rollback()
        return False
    try:
        await provider.update_subscription_quantity(ref, quantity)
        subscription.billing_quantity = quantity
        await store.commit()
    except (UpstreamError, ConflictError) as exc:
        await store.rollback()
        record_seat_operation(operation, "billing_sync_failed")
        logger.warning(
            "billing_decrease_sync_failed",
            subscription_id=str(subscription_id),
            quantity=quantity,
            operation=operation,
            error=str(exc),
        )
        return False
    return True
