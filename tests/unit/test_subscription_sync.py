"""Unit tests for the out-of-band subscription sync."""

from datetime import UTC, datetime

import pytest

from entitle.billing.events import SubscriptionSnapshot
from entitle.billing.reconciler import ReconcileOutcome
from entitle.billing.sync import SubscriptionSyncService
from entitle.db.models import Subscription, SubscriptionStatus, TeamMember, TeamMemberStatus

PERIOD_END = datetime(2026, 2, 1, tzinfo=UTC)


def snapshot(ref, status="active", quantity=1, **kwargs) -> SubscriptionSnapshot:
    return SubscriptionSnapshot(
        subscription_ref=ref,
        customer_ref="cus_1",
        status=status,
        quantity=quantity,
        current_period_end=PERIOD_END,
        **kwargs,
    )


@pytest.fixture
def sync(session_factory, billing_provider, test_settings):
    return SubscriptionSyncService(session_factory, billing_provider, test_settings, batch_size=2)


class TestSubscriptionSync:
    """Tests for SubscriptionSyncService."""

    async def test_sync_one_heals_missed_webhook(self, factory, sync, billing_provider, reload):
        """Test a lapse the webhooks never delivered is applied from the snapshot."""
        owner = await factory.user("lead@example.com")
        subscription = await factory.subscription(user=owner, subscription_ref="sub_a")
        member = await factory.member(subscription, "dev@team.test")
        billing_provider.add_subscription(snapshot("sub_a", status="unpaid"))

        outcome = await sync.sync_one("sub_a")

        assert outcome == ReconcileOutcome.APPLIED
        stored = await reload(Subscription, subscription.subscription_id)
        assert stored.status == SubscriptionStatus.UNPAID.value
        assert stored.current_period_end == PERIOD_END
        suspended = await reload(TeamMember, member.member_id)
        assert suspended.status == TeamMemberStatus.SUSPENDED.value

    async def test_sync_one_in_step(self, factory, sync, billing_provider):
        """Test a second pass over unchanged state changes nothing."""
        owner = await factory.user("lead@example.com")
        await factory.subscription(user=owner, subscription_ref="sub_a")
        billing_provider.add_subscription(snapshot("sub_a"))

        assert await sync.sync_one("sub_a") == ReconcileOutcome.APPLIED
        assert await sync.sync_one("sub_a") == ReconcileOutcome.DUPLICATE

    async def test_sync_one_provider_failure(self, sync):
        """Test provider failures are reported as no outcome."""
        assert await sync.sync_one("sub_missing") is None

    async def test_sync_one_restores_quantity(self, factory, sync, billing_provider, reload):
        """Test billing quantity drift follows the provider."""
        owner = await factory.user("lead@example.com")
        subscription = await factory.subscription(
            user=owner, subscription_ref="sub_a", billing_quantity=3
        )
        billing_provider.add_subscription(snapshot("sub_a", quantity=2))

        await sync.sync_one("sub_a")

        assert (await reload(Subscription, subscription.subscription_id)).billing_quantity == 2

    async def test_sync_all(self, factory, sync, billing_provider):
        """Test every bound subscription is checked across batches."""
        for index, ref in enumerate(("sub_a", "sub_b", "sub_c")):
            owner = await factory.user(f"owner{index}@example.com")
            await factory.subscription(user=owner, subscription_ref=ref)
        await factory.subscription(
            user=await factory.user("unbound@example.com"), subscription_ref=None
        )
        billing_provider.add_subscription(snapshot("sub_a", status="past_due"))
        billing_provider.add_subscription(snapshot("sub_b"))

        report = await sync.sync_all()

        assert report.checked == 3
        assert report.failed == 1
        assert report.applied == 2
        assert report.to_dict() == {"checked": 3, "failed": 1, "applied": 2}
