"""Entitlement store: transactional access to tenants, subscriptions and seats.

The store is a thin facade over the repositories that owns the compound,
count-changing writes. Callers run one unit of work per store instance:

    store = EntitlementStore(session)
    subscription = await store.lock_subscription(subscription_id)
    seat = await store.add_seat_row(subscription, "b@x.com", key)
    await store.commit()

Every compound write locks the subscription row (``SELECT ... FOR UPDATE``
where the backend supports it) and bumps its ``version`` column, so two
writers on the same subscription either serialize or the loser gets a
ConflictError instead of a lost update.
"""

from collections.abc import Awaitable, Callable
from datetime import datetime
from uuid import UUID

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from entitle.core.exceptions import ConcurrentUpdateError, ConflictError, NotFoundError
from entitle.db.models import (
    OwnerType,
    Seat,
    SeatStatus,
    Subscription,
    SubscriptionStatus,
    TeamMember,
    TeamMemberStatus,
    TenantStatus,
    User,
    utcnow,
)
from entitle.db.repositories import (
    OrganizationRepository,
    SeatRepository,
    SubscriptionRepository,
    TeamMemberRepository,
    TenantRepository,
    UserRepository,
    translate_integrity_error,
)

logger = structlog.get_logger()


class EntitlementStore:
    """Unit-of-work facade over the entitlement repositories.

    Attributes:
        db: The session every repository shares
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.tenants = TenantRepository(db)
        self.organizations = OrganizationRepository(db)
        self.users = UserRepository(db)
        self.subscriptions = SubscriptionRepository(db)
        self.seats = SeatRepository(db)
        self.members = TeamMemberRepository(db)

    # ------------------------------------------------------------------
    # Transaction control
    # ------------------------------------------------------------------

    async def commit(self) -> None:
        """Commit the unit of work.

        Raises:
            ConcurrentUpdateError: If a concurrent writer bumped a locked row first
            ConflictError: If an active-subscription index rejected the write
            DuplicateError: On a plain unique constraint violation
        """
        await self._guarded(self.db.commit)

    async def flush(self) -> None:
        """Flush pending writes with the same error translation as commit."""
        await self._guarded(self.db.flush)

    async def rollback(self) -> None:
        await self.db.rollback()

    async def _guarded(self, write: Callable[[], Awaitable[None]]) -> None:
        try:
            await write()
        except IntegrityError as exc:
            await self.db.rollback()
            raise translate_integrity_error(exc, _table_from(exc)) from exc
        except StaleDataError as exc:
            await self.db.rollback()
            raise ConcurrentUpdateError(
                "Subscription was modified concurrently", resource="subscriptions"
            ) from exc

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def lock_subscription(self, subscription_id: UUID) -> Subscription:
        """Load a subscription with its row locked for the rest of the transaction.

        Raises:
            NotFoundError: If the subscription does not exist
        """
        subscription = await self.subscriptions.get_for_update(subscription_id)
        if subscription is None:
            raise NotFoundError(
                f"Subscription not found: {subscription_id}",
                resource="subscriptions",
                identifier=subscription_id,
            )
        return subscription

    async def subscription_for(self, user: User) -> Subscription:
        """The subscription a user manages: their own, else their tenant's.

        Raises:
            NotFoundError: Neither the user nor the tenant has one
        """
        subscription = await self.subscriptions.get_latest_for_owner(OwnerType.USER, user.user_id)
        if subscription is None:
            subscription = await self.subscriptions.get_latest_for_owner(
                OwnerType.TENANT, user.tenant_id
            )
        if subscription is None:
            raise NotFoundError(
                "No subscription found", resource="subscriptions", identifier=user.user_id
            )
        return subscription

    async def create_subscription(self, subscription: Subscription) -> Subscription:
        """Insert a subscription, enforcing one active subscription per owner.

        Raises:
            ConflictError: If the owner already has an active subscription
        """
        if subscription.status == SubscriptionStatus.ACTIVE.value:
            await self.ensure_no_other_active(subscription)
        self.db.add(subscription)
        await self.flush()
        logger.info(
            "subscription_created",
            subscription_id=str(subscription.subscription_id),
            owner_type=subscription.owner_type,
            owner_id=str(subscription.owner_id),
        )
        return subscription

    async def ensure_no_other_active(self, subscription: Subscription) -> None:
        """Raise ConflictError if another subscription of the owner is active."""
        existing = await self.subscriptions.get_active_for_owner(
            OwnerType(subscription.owner_type), subscription.owner_id
        )
        if existing is not None and existing.subscription_id != subscription.subscription_id:
            raise ConflictError(
                f"{subscription.owner_type} {subscription.owner_id} already has an active "
                f"subscription {existing.subscription_id}",
                resource="subscriptions",
                identifier=existing.subscription_id,
            )

    async def set_subscription_status(
        self, subscription: Subscription, status: SubscriptionStatus
    ) -> bool:
        """Assign a status. Returns False if it was already that status."""
        if subscription.status == status.value:
            return False
        if status == SubscriptionStatus.ACTIVE:
            await self.ensure_no_other_active(subscription)
        subscription.status = status.value
        if status == SubscriptionStatus.CANCELLED and subscription.cancelled_at is None:
            subscription.cancelled_at = utcnow()
        return True

    # ------------------------------------------------------------------
    # Counts
    # ------------------------------------------------------------------

    async def count_active_seats(self, subscription_id: UUID) -> int:
        return await self.seats.count_active(subscription_id)

    async def count_active_members(self, subscription_id: UUID) -> int:
        return await self.members.count_active(subscription_id)

    # ------------------------------------------------------------------
    # Compound seat writes (caller holds the subscription lock)
    # ------------------------------------------------------------------

    async def add_seat_row(
        self, subscription: Subscription, email: str | None, license_key: str
    ) -> Seat:
        """Insert a seat and increment ``seats`` in the current transaction."""
        current = await self.count_active_seats(subscription.subscription_id)
        seat = Seat(
            subscription_id=subscription.subscription_id,
            assigned_email=email,
            license_key=license_key,
            status=SeatStatus.UNUSED.value,
        )
        self.db.add(seat)
        subscription.seats = current + 1
        await self.flush()
        await self._sync_tenant_seat_count(subscription)
        return seat

    async def revoke_seat_row(self, subscription: Subscription, seat: Seat) -> Seat:
        """Mark a seat revoked and decrement ``seats`` (never below 1)."""
        seat.status = SeatStatus.REVOKED.value
        seat.revoked_at = utcnow()
        seat.machine_identifier = None
        await self.flush()
        remaining = await self.count_active_seats(subscription.subscription_id)
        subscription.seats = max(1, remaining)
        await self.flush()
        await self._sync_tenant_seat_count(subscription)
        return seat

    async def mirror_tenant(self, subscription: Subscription) -> bool:
        """Mirror a tenant-owned subscription onto its tenant. Returns True on change."""
        if subscription.owner_type != OwnerType.TENANT.value:
            return False
        tenant = await self.tenants.get(subscription.tenant_id)
        if tenant is None:
            return False

        mirrored = {
            "status": (
                TenantStatus.ACTIVE.value
                if subscription.grants_access
                else TenantStatus.INACTIVE.value
            ),
            "plan": subscription.plan,
            "seat_count": subscription.seats,
            "billing_subscription_ref": subscription.billing_subscription_ref,
            "billing_customer_ref": (
                subscription.billing_customer_ref or tenant.billing_customer_ref
            ),
        }
        changed = False
        for field, value in mirrored.items():
            if getattr(tenant, field) != value:
                setattr(tenant, field, value)
                changed = True
        return changed

    async def billable_quantity(self, subscription: Subscription) -> int:
        """Quantity the provider should bill: provisioned seats or team slots, whichever is more."""
        members = await self.count_active_members(subscription.subscription_id)
        return max(1, subscription.seats, members)

    async def _sync_tenant_seat_count(self, subscription: Subscription) -> None:
        if subscription.owner_type != OwnerType.TENANT.value:
            return
        tenant = await self.tenants.get(subscription.tenant_id)
        if tenant is not None and tenant.seat_count != subscription.seats:
            tenant.seat_count = subscription.seats

    # ------------------------------------------------------------------
    # Team member cascade
    # ------------------------------------------------------------------

    async def suspend_members(self, subscription_id: UUID, at: datetime | None = None) -> int:
        """Suspend every member not already suspended. Returns how many changed."""
        at = at or utcnow()
        changed = 0
        for member in await self.members.list_for_subscription(subscription_id):
            if member.status != TeamMemberStatus.SUSPENDED.value:
                member.status = TeamMemberStatus.SUSPENDED.value
                member.suspended_at = at
                changed += 1
        return changed

    async def reactivate_members(self, subscription_id: UUID) -> int:
        """Reactivate only currently suspended members. Returns how many changed."""
        changed = 0
        suspended = await self.members.list_for_subscription(
            subscription_id, status=TeamMemberStatus.SUSPENDED
        )
        for member in suspended:
            member.status = TeamMemberStatus.ACTIVE.value
            member.suspended_at = None
            changed += 1
        return changed

    async def add_member_row(self, subscription_id: UUID, email: str) -> TeamMember:
        """Insert a team member; duplicates per subscription raise DuplicateError."""
        member = TeamMember(
            subscription_id=subscription_id,
            email=email,
            status=TeamMemberStatus.INVITED.value,
        )
        self.db.add(member)
        await self.flush()
        return member


def _table_from(exc: IntegrityError) -> str:
    message = str(exc.orig) if exc.orig is not None else str(exc)
    for table in ("subscriptions", "seats", "team_members", "users", "tenants", "organizations"):
        if table in message:
            return table
    return "entitlements"
