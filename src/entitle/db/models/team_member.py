"""Team member model."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, validates
from uuid_utils.compat import uuid7

from .base import Base, PortableUUID, TimestampMixin, UTCDateTime, utcnow


class TeamMemberStatus(str, Enum):
    """Membership status. Effective access also depends on the subscription."""

    INVITED = "invited"
    ACTIVE = "active"
    SUSPENDED = "suspended"


class TeamMember(Base, TimestampMixin):
    """A person invited onto another principal's subscription.

    Whether the member may use the product is derived at read time from
    ``status`` and the owning subscription's status; it is never stored.
    """

    __tablename__ = "team_members"

    member_id: Mapped[UUID] = mapped_column(PortableUUID(), primary_key=True, default=uuid7)
    subscription_id: Mapped[UUID] = mapped_column(
        PortableUUID(),
        ForeignKey("subscriptions.subscription_id", ondelete="CASCADE"),
        nullable=False,
    )
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TeamMemberStatus.INVITED.value
    )

    invited_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    joined_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_used_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    suspended_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    __table_args__ = (
        UniqueConstraint("subscription_id", "email", name="uq_team_members_subscription_email"),
        Index("idx_team_members_email", "email"),
    )

    @validates("email")
    def _normalize_email(self, key: str, value: str) -> str:
        return value.strip().lower()

    @property
    def is_suspended(self) -> bool:
        return self.status == TeamMemberStatus.SUSPENDED.value

    def __repr__(self) -> str:
        return f"<TeamMember(id={self.member_id}, email={self.email}, status={self.status})>"
