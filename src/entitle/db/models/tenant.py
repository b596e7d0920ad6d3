"""Tenant model for multi-tenancy and tenant-scoped billing."""

from enum import Enum
from uuid import UUID

from sqlalchemy import CheckConstraint, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from uuid_utils.compat import uuid7

from .base import Base, PortableUUID, TimestampMixin


class TenantStatus(str, Enum):
    """Billing status of a tenant."""

    ACTIVE = "active"
    INACTIVE = "inactive"


class Plan(str, Enum):
    """Sellable plans."""

    BASIC = "basic"
    PRO = "pro"


class Tenant(Base, TimestampMixin):
    """Tenant (customer account) in the system.

    The tenant is the billing and ownership unit a set of users belongs to.
    In the tenant-scoped billing model its ``status`` mirrors the provider
    subscription and ``seat_count`` tracks the provisioned seats.
    """

    __tablename__ = "tenants"

    tenant_id: Mapped[UUID] = mapped_column(PortableUUID(), primary_key=True, default=uuid7)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Billing provider references
    billing_customer_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    billing_subscription_ref: Mapped[str | None] = mapped_column(
        String(255), nullable=True, unique=True
    )

    plan: Mapped[str] = mapped_column(String(20), nullable=False, default=Plan.BASIC.value)
    seat_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TenantStatus.INACTIVE.value
    )

    __table_args__ = (
        CheckConstraint("seat_count >= 1", name="ck_tenants_seat_count_positive"),
        Index("idx_tenants_customer_ref", "billing_customer_ref"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == TenantStatus.ACTIVE.value

    def __repr__(self) -> str:
        return f"<Tenant(id={self.tenant_id}, name={self.name}, status={self.status})>"
