"""Seat (license) model."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, validates
from uuid_utils.compat import uuid7

from .base import Base, PortableUUID, TimestampMixin, UTCDateTime


class SeatStatus(str, Enum):
    """Lifecycle of a license seat. ``revoked`` is terminal."""

    UNUSED = "unused"
    ACTIVE = "active"
    REVOKED = "revoked"


class Seat(Base, TimestampMixin):
    """A single license slot, bound to at most one machine at a time.

    ``machine_identifier`` is the single-machine lock: it is set on first
    activation and cleared only by deactivation or reset.
    """

    __tablename__ = "seats"

    seat_id: Mapped[UUID] = mapped_column(PortableUUID(), primary_key=True, default=uuid7)
    subscription_id: Mapped[UUID] = mapped_column(
        PortableUUID(),
        ForeignKey("subscriptions.subscription_id", ondelete="CASCADE"),
        nullable=False,
    )
    assigned_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    license_key: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=SeatStatus.UNUSED.value)
    machine_identifier: Mapped[str | None] = mapped_column(String(255), nullable=True)

    activated_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_used_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    __table_args__ = (
        Index("idx_seats_subscription_status", "subscription_id", "status"),
        Index("idx_seats_assigned_email", "assigned_email"),
    )

    @validates("status")
    def _guard_revoked(self, key: str, value: str) -> str:
        if self.status == SeatStatus.REVOKED.value and value != SeatStatus.REVOKED.value:
            raise ValueError(f"Seat {self.seat_id} is revoked and cannot become {value}")
        return value

    @validates("license_key")
    def _guard_key_immutable(self, key: str, value: str) -> str:
        if self.license_key is not None and value != self.license_key:
            raise ValueError(f"License key of seat {self.seat_id} is immutable")
        return value

    @validates("assigned_email")
    def _normalize_email(self, key: str, value: str | None) -> str | None:
        return value.strip().lower() if value else value

    @property
    def is_revoked(self) -> bool:
        return self.status == SeatStatus.REVOKED.value

    def __repr__(self) -> str:
        return f"<Seat(id={self.seat_id}, key={self.license_key}, status={self.status})>"
