"""Database repositories for clean data access."""

from .base import BaseRepository, translate_integrity_error
from .seat import SeatRepository
from .subscription import SubscriptionRepository
from .team_member import TeamMemberRepository
from .tenant import OrganizationRepository, TenantRepository
from .user import UserRepository

__all__ = [
    "BaseRepository",
    "translate_integrity_error",
    "OrganizationRepository",
    "SeatRepository",
    "SubscriptionRepository",
    "TeamMemberRepository",
    "TenantRepository",
    "UserRepository",
]
