"""Subscription model with a polymorphic owner reference."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, Numeric, String, text
from sqlalchemy.orm import Mapped, mapped_column
from uuid_utils.compat import uuid7

from .base import Base, PortableJSON, PortableUUID, TimestampMixin, UTCDateTime


class SubscriptionStatus(str, Enum):
    """Internal subscription status vocabulary."""

    ACTIVE = "active"
    TRIALING = "trialing"
    CANCELLED = "cancelled"
    PAST_DUE = "past_due"
    UNPAID = "unpaid"
    INCOMPLETE = "incomplete"
    EXPIRED = "expired"
    PAUSED = "paused"


ACCESS_GRANTING_STATUSES: frozenset[str] = frozenset(
    {SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIALING.value}
)


class OwnerType(str, Enum):
    """Kind of principal that owns a subscription."""

    USER = "user"
    TENANT = "tenant"
    ORGANIZATION = "organization"


_ACTIVE_ONLY = text("status = 'active'")

_EXACTLY_ONE_OWNER = (
    "(CASE WHEN user_id IS NOT NULL THEN 1 ELSE 0 END"
    " + CASE WHEN tenant_id IS NOT NULL THEN 1 ELSE 0 END"
    " + CASE WHEN organization_id IS NOT NULL THEN 1 ELSE 0 END) = 1"
)


class Subscription(Base, TimestampMixin):
    """A billing subscription owned by exactly one user, tenant or organization.

    ``seats`` is the locally provisioned count and always equals the number
    of non-revoked seat rows; ``billing_quantity`` is what the provider bills.
    ``billing_subscription_ref`` stays NULL until the billing provider first
    confirms the subscription (checkout completed or subscription created).
    ``version`` is the optimistic concurrency counter: every flush that
    updates the row checks and bumps it.
    """

    __tablename__ = "subscriptions"

    subscription_id: Mapped[UUID] = mapped_column(
        PortableUUID(), primary_key=True, default=uuid7
    )

    # Owner reference (exactly one set, tagged by owner_type)
    owner_type: Mapped[str] = mapped_column(String(20), nullable=False)
    user_id: Mapped[UUID | None] = mapped_column(
        PortableUUID(), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=True
    )
    tenant_id: Mapped[UUID | None] = mapped_column(
        PortableUUID(), ForeignKey("tenants.tenant_id", ondelete="CASCADE"), nullable=True
    )
    organization_id: Mapped[UUID | None] = mapped_column(
        PortableUUID(),
        ForeignKey("organizations.organization_id", ondelete="CASCADE"),
        nullable=True,
    )

    # Billing provider references
    billing_subscription_ref: Mapped[str | None] = mapped_column(
        String(255), nullable=True, unique=True
    )
    billing_customer_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)

    plan: Mapped[str] = mapped_column(String(20), nullable=False, default="basic")
    price_per_seat: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, default=Decimal("0")
    )
    seats: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    # Quantity the billing provider last confirmed (may exceed provisioned seats)
    billing_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SubscriptionStatus.INCOMPLETE.value
    )
    provider_status: Mapped[str | None] = mapped_column(String(50), nullable=True)

    current_period_start: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    current_period_end: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # Last correlation payload seen from the provider (plan, variant, metadata)
    billing_metadata: Mapped[dict] = mapped_column(PortableJSON, nullable=False, default=dict)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(_EXACTLY_ONE_OWNER, name="ck_subscriptions_single_owner"),
        CheckConstraint("seats >= 1", name="ck_subscriptions_seats_positive"),
        Index(
            "uq_subscriptions_active_user",
            "user_id",
            unique=True,
            postgresql_where=_ACTIVE_ONLY,
            sqlite_where=_ACTIVE_ONLY,
        ),
        Index(
            "uq_subscriptions_active_tenant",
            "tenant_id",
            unique=True,
            postgresql_where=_ACTIVE_ONLY,
            sqlite_where=_ACTIVE_ONLY,
        ),
        Index(
            "uq_subscriptions_active_organization",
            "organization_id",
            unique=True,
            postgresql_where=_ACTIVE_ONLY,
            sqlite_where=_ACTIVE_ONLY,
        ),
        Index("idx_subscriptions_status", "status"),
    )

    @property
    def owner_id(self) -> UUID:
        """Identifier of whichever principal owns this subscription."""
        match self.owner_type:
            case OwnerType.USER.value:
                return self.user_id
            case OwnerType.TENANT.value:
                return self.tenant_id
            case _:
                return self.organization_id

    @property
    def grants_access(self) -> bool:
        return self.status in ACCESS_GRANTING_STATUSES

    def __repr__(self) -> str:
        return (
            f"<Subscription(id={self.subscription_id}, owner={self.owner_type}:{self.owner_id}, "
            f"status={self.status}, seats={self.seats})>"
        )
