"""Repository for subscriptions."""

from uuid import UUID

from sqlalchemy import select

from entitle.db.models import OwnerType, Subscription, SubscriptionStatus

from .base import BaseRepository

_OWNER_COLUMNS = {
    OwnerType.USER.value: Subscription.user_id,
    OwnerType.TENANT.value: Subscription.tenant_id,
    OwnerType.ORGANIZATION.value: Subscription.organization_id,
}


class SubscriptionRepository(BaseRepository[Subscription, UUID]):
    """Data access for subscriptions and their polymorphic owners."""

    async def get_by_ref(self, subscription_ref: str, *, lock: bool = False) -> Subscription | None:
        """Get the subscription bound to a provider subscription reference."""
        stmt = select(Subscription).where(
            Subscription.billing_subscription_ref == subscription_ref
        )
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_active_for_owner(
        self, owner_type: OwnerType, owner_id: UUID
    ) -> Subscription | None:
        column = _OWNER_COLUMNS[owner_type.value]
        stmt = select(Subscription).where(
            column == owner_id,
            Subscription.status == SubscriptionStatus.ACTIVE.value,
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def get_latest_for_owner(
        self, owner_type: OwnerType, owner_id: UUID, *, lock: bool = False
    ) -> Subscription | None:
        """Get the owner's most relevant subscription.

        Access-granting rows win over lapsed ones; among equals the most
        recently created wins.
        """
        column = _OWNER_COLUMNS[owner_type.value]
        stmt = select(Subscription).where(column == owner_id).order_by(
            Subscription.created_at.desc()
        )
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        subscriptions = list(result.scalars().all())
        for subscription in subscriptions:
            if subscription.grants_access:
                return subscription
        return subscriptions[0] if subscriptions else None

    async def list_bound(self, *, limit: int = 500, offset: int = 0) -> list[Subscription]:
        """List subscriptions that carry a provider reference."""
        stmt = (
            select(Subscription)
            .where(Subscription.billing_subscription_ref.is_not(None))
            .order_by(Subscription.subscription_id)
            .limit(limit)
            .offset(offset)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())
