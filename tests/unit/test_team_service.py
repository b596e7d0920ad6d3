"""Unit tests for team membership management."""

from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy import select

from entitle.core.exceptions import (
    AccessDeniedError,
    DuplicateError,
    NotFoundError,
    UpstreamRejectedError,
)
from entitle.db.models import (
    Subscription,
    SubscriptionStatus,
    TeamMember,
    TeamMemberStatus,
    Tenant,
    TenantStatus,
    User,
    UserRole,
)
from entitle.teams import TeamService


@pytest_asyncio.fixture
async def team(session_factory, billing_provider):
    async with session_factory() as session:
        yield TeamService(session, billing_provider)


@pytest.fixture
def members_of(session_factory):
    async def _members(subscription_id):
        async with session_factory() as session:
            result = await session.execute(
                select(TeamMember).where(TeamMember.subscription_id == subscription_id)
            )
            return list(result.scalars().all())

    return _members


@pytest.fixture
def user_by_email(session_factory):
    async def _user(email):
        async with session_factory() as session:
            result = await session.execute(select(User).where(User.email == email))
            return result.scalar_one_or_none()

    return _user


class TestInvite:
    """Tests for inviting members."""

    async def test_invite_charges_past_billed_quantity(
        self, factory, team, billing_provider, reload
    ):
        """Test the first invite fits the billed slot and the second is charged."""
        owner = await factory.user("lead@example.com")
        subscription = await factory.subscription(user=owner)
        ref = subscription.billing_subscription_ref

        first = await team.invite_member(subscription.subscription_id, "a@team.test", actor=owner)
        assert billing_provider.quantity_updates == []

        await team.invite_member(subscription.subscription_id, "b@team.test", actor=owner)

        assert first.status == TeamMemberStatus.INVITED.value
        assert billing_provider.quantity_updates == [(ref, 2)]
        assert (await reload(Subscription, subscription.subscription_id)).billing_quantity == 2

    async def test_invite_creates_placeholder_user(self, factory, team, user_by_email):
        """Test invited emails get a registration-pending user in the owner's tenant."""
        owner = await factory.user("lead@example.com")
        subscription = await factory.subscription(user=owner)

        await team.invite_member(subscription.subscription_id, " New@Team.test ", actor=owner)

        placeholder = await user_by_email("new@team.test")
        assert placeholder is not None
        assert placeholder.registration_pending is True
        assert placeholder.tenant_id == owner.tenant_id
        assert placeholder.role == UserRole.MEMBER.value
        assert placeholder.credential_hash is None

    async def test_invite_existing_user_has_no_placeholder(self, factory, team, user_by_email):
        """Test registered users are invited as they are."""
        owner = await factory.user("lead@example.com")
        existing = await factory.user("dev@example.com")
        subscription = await factory.subscription(user=owner)

        await team.invite_member(subscription.subscription_id, "dev@example.com", actor=owner)

        user = await user_by_email("dev@example.com")
        assert user.user_id == existing.user_id
        assert user.registration_pending is False

    async def test_duplicate_invite(self, factory, team):
        """Test an email is on a team at most once."""
        owner = await factory.user("lead@example.com")
        subscription = await factory.subscription(user=owner, billing_quantity=5)
        await factory.member(subscription, "dev@example.com")

        with pytest.raises(DuplicateError):
            await team.invite_member(subscription.subscription_id, "DEV@example.com", actor=owner)

    async def test_lapsed_subscription(self, factory, team):
        """Test lapsed teams cannot invite."""
        owner = await factory.user("lead@example.com")
        subscription = await factory.subscription(user=owner, status=SubscriptionStatus.UNPAID)

        with pytest.raises(AccessDeniedError):
            await team.invite_member(subscription.subscription_id, "a@team.test", actor=owner)

    async def test_non_owner(self, factory, team):
        """Test only the owner invites."""
        owner = await factory.user("lead@example.com")
        other = await factory.user("other@example.com")
        subscription = await factory.subscription(user=owner)

        with pytest.raises(AccessDeniedError):
            await team.invite_member(subscription.subscription_id, "a@team.test", actor=other)

    async def test_provider_refusal(self, factory, team, billing_provider, members_of):
        """Test a refused charge leaves the team unchanged."""
        owner = await factory.user("lead@example.com")
        subscription = await factory.subscription(user=owner)
        await factory.member(subscription, "a@team.test")
        billing_provider.fail("update_subscription_quantity")

        with pytest.raises(UpstreamRejectedError):
            await team.invite_member(subscription.subscription_id, "b@team.test", actor=owner)

        members = await members_of(subscription.subscription_id)
        assert [member.email for member in members] == ["a@team.test"]


class TestRemoveAndCancel:
    """Tests for removal and cancellation."""

    async def test_remove_lowers_quantity(self, factory, team, billing_provider, members_of):
        """Test removing a member bills the smaller quantity afterwards."""
        owner = await factory.user("lead@example.com")
        subscription = await factory.subscription(user=owner, billing_quantity=2)
        first = await factory.member(subscription, "a@team.test")
        await factory.member(subscription, "b@team.test")

        await team.remove_member(first.member_id, actor=owner)

        members = await members_of(subscription.subscription_id)
        assert [member.email for member in members] == ["b@team.test"]
        assert billing_provider.quantity_updates == [(subscription.billing_subscription_ref, 1)]

    async def test_remove_unknown(self, team, factory):
        """Test removing an unknown member is not found."""
        owner = await factory.user("lead@example.com")
        with pytest.raises(NotFoundError):
            await team.remove_member(uuid4(), actor=owner)

    async def test_cancel(self, factory, team, billing_provider, members_of, reload):
        """Test cancelling tells the provider and suspends members at once."""
        tenant = await factory.tenant()
        owner = await factory.user("lead@acme.test", tenant=tenant)
        subscription = await factory.subscription(tenant=tenant)
        await factory.member(subscription, "a@team.test")

        cancelled = await team.cancel_subscription(subscription.subscription_id, actor=owner)

        assert cancelled.status == SubscriptionStatus.CANCELLED.value
        assert billing_provider.cancelled == [subscription.billing_subscription_ref]
        members = await members_of(subscription.subscription_id)
        assert members[0].status == TeamMemberStatus.SUSPENDED.value
        assert (await reload(Tenant, tenant.tenant_id)).status == TenantStatus.INACTIVE.value

    async def test_cancel_twice_is_noop(self, factory, team, billing_provider):
        """Test a cancelled subscription is not cancelled again upstream."""
        owner = await factory.user("lead@example.com")
        subscription = await factory.subscription(user=owner, status=SubscriptionStatus.CANCELLED)

        result = await team.cancel_subscription(subscription.subscription_id, actor=owner)

        assert result.status == SubscriptionStatus.CANCELLED.value
        assert billing_provider.cancelled == []

    async def test_cancel_provider_refusal(self, factory, team, billing_provider, reload):
        """Test nothing changes locally when the provider refuses to cancel."""
        owner = await factory.user("lead@example.com")
        subscription = await factory.subscription(user=owner)
        billing_provider.fail("cancel_subscription")

        with pytest.raises(UpstreamRejectedError):
            await team.cancel_subscription(subscription.subscription_id, actor=owner)

        stored = await reload(Subscription, subscription.subscription_id)
        assert stored.status == SubscriptionStatus.ACTIVE.value

    async def test_list_members(self, factory, team):
        """Test owners list their team in invite order."""
        owner = await factory.user("lead@example.com")
        subscription = await factory.subscription(user=owner)
        await factory.member(subscription, "a@team.test")
        await factory.member(subscription, "b@team.test")

        members = await team.list_members(subscription.subscription_id, actor=owner)

        assert [member.email for member in members] == ["a@team.test", "b@team.test"]
