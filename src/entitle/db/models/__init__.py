"""Database models for Entitle."""

from .base import Base, PortableJSON, PortableUUID, TimestampMixin, UTCDateTime, utcnow
from .organization import Organization
from .seat import Seat, SeatStatus
from .subscription import (
    ACCESS_GRANTING_STATUSES,
    OwnerType,
    Subscription,
    SubscriptionStatus,
)
from .team_member import TeamMember, TeamMemberStatus
from .tenant import Plan, Tenant, TenantStatus
from .user import User, UserRole, UserStatus

__all__ = [
    "Base",
    "PortableJSON",
    "PortableUUID",
    "TimestampMixin",
    "UTCDateTime",
    "utcnow",
    "Organization",
    "Seat",
    "SeatStatus",
    "ACCESS_GRANTING_STATUSES",
    "OwnerType",
    "Subscription",
    "SubscriptionStatus",
    "TeamMember",
    "TeamMemberStatus",
    "Plan",
    "Tenant",
    "TenantStatus",
    "User",
    "UserRole",
    "UserStatus",
]
