"""Team membership management for subscription owners."""

from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from entitle.billing.provider import BillingProviderClient
from entitle.core.exceptions import AccessDeniedError, DuplicateError, UpstreamError
from entitle.db.models import Subscription, SubscriptionStatus, TeamMember, User, UserRole
from entitle.entitlements import EntitlementStore, ensure_subscription_admin
from entitle.observability.metrics import record_seat_operation
from entitle.observability.tracing import traced_async
from entitle.seats.quantity import charge_increase, sync_decrease

logger = structlog.get_logger()


class TeamService:
    """Invites and removes team members and cancels the team's subscription.

    Team slots are billed like seats: an invite that takes the member count
    past the billed quantity charges the provider before the member is
    written, and a removal lowers the quantity best-effort afterwards.
    """

    def __init__(self, db: AsyncSession, provider: BillingProviderClient):
        self.store = EntitlementStore(db)
        self._provider = provider

    @traced_async("teams.invite_member")
    async def invite_member(self, subscription_id: UUID, email: str, *, actor: User) -> TeamMember:
        """Invite ``email`` onto the subscription.

        Raises:
            AccessDeniedError: Actor is not the owner, or the subscription lapsed
            DuplicateError: The email is already on the team
            UpstreamError: The provider refused the quantity increase
        """
        subscription = await self.store.lock_subscription(subscription_id)
        ensure_subscription_admin(subscription, actor)
        if not subscription.grants_access:
            raise AccessDeniedError(
                f"Subscription {subscription_id} is {subscription.status}",
                reason=f"subscription_{subscription.status}",
            )

        email = email.strip().lower()
        if await self.store.members.get_for_subscription(subscription_id, email) is not None:
            await self.store.rollback()
            raise DuplicateError(
                f"{email} is already on the team", resource="team_members", field="email"
            )

        new_count = await self.store.count_active_members(subscription_id) + 1
        if new_count > subscription.billing_quantity:
            await charge_increase(
                self.store, self._provider, subscription, new_count, operation="invite"
            )

        member = await self.store.add_member_row(subscription_id, email)
        placeholder = await self._ensure_invited_user(email, actor)
        await self.store.commit()
        record_seat_operation("invite", "success")
        logger.info(
            "team_member_invited",
            subscription_id=str(subscription_id),
            member_id=str(member.member_id),
            billing_quantity=subscription.billing_quantity,
            placeholder_created=placeholder,
        )
        return member

    async def _ensure_invited_user(self, email: str, actor: User) -> bool:
        """Create a registration-pending user for an email nobody has signed up with.

        The placeholder joins the inviter's tenant; registering with the
        email later completes it instead of creating a second account.
        """
        if await self.store.users.get_by_email(email) is not None:
            return False
        self.store.db.add(
            User(
                tenant_id=actor.tenant_id,
                email=email,
                role=UserRole.MEMBER.value,
                registration_pending=True,
            )
        )
        await self.store.flush()
        return True

    async def remove_member(self, member_id: UUID, *, actor: User) -> None:
        """Remove a member; the billed quantity follows best-effort.

        Raises:
            NotFoundError: Unknown member
            AccessDeniedError: Actor is not the owner
        """
        member = await self.store.members.get_or_raise(member_id)
        subscription = await self.store.lock_subscription(member.subscription_id)
        ensure_subscription_admin(subscription, actor)

        await self.store.db.delete(member)
        await self.store.commit()
        record_seat_operation("remove_member", "success")
        logger.info(
            "team_member_removed",
            subscription_id=str(subscription.subscription_id),
            member_id=str(member_id),
        )

        await sync_decrease(
            self.store, self._provider, subscription.subscription_id, operation="remove_member"
        )

    @traced_async("teams.cancel_subscription")
    async def cancel_subscription(self, subscription_id: UUID, *, actor: User) -> Subscription:
        """Cancel at period end with the provider, then locally in one transaction.

        The provider is told first: if it refuses, nothing changes locally.
        Cancelling a cancelled subscription is a no-op.

        Raises:
            AccessDeniedError: Actor is not the owner
            UpstreamError: The provider refused or timed out
        """
        subscription = await self.store.lock_subscription(subscription_id)
        ensure_subscription_admin(subscription, actor)
        if subscription.status == SubscriptionStatus.CANCELLED.value:
            return subscription

        if subscription.billing_subscription_ref is not None:
            try:
                await self._provider.cancel_subscription(subscription.billing_subscription_ref)
            except UpstreamError:
                await self.store.rollback()
                raise

        await self.store.set_subscription_status(subscription, SubscriptionStatus.CANCELLED)
        suspended = await self.store.suspend_members(subscription_id)
        await self.store.flush()
        await self.store.mirror_tenant(subscription)
        await self.store.commit()
        logger.info(
            "subscription_cancelled",
            subscription_id=str(subscription_id),
            suspended_members=suspended,
        )
        return subscription

    async def list_members(self, subscription_id: UUID, *, actor: User) -> list[TeamMember]:
        subscription = await self.store.subscriptions.get_or_raise(subscription_id)
        ensure_subscription_admin(subscription, actor)
        return await self.store.members.list_for_subscription(subscription_id)
