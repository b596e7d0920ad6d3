"""User model."""

from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, validates
from uuid_utils.compat import uuid7

from .base import Base, PortableUUID, TimestampMixin


class UserRole(str, Enum):
    """Role of a user within its tenant."""

    ADMIN = "admin"
    MEMBER = "member"


class UserStatus(str, Enum):
    """Account status. Suspension flips to inactive, never deletes."""

    ACTIVE = "active"
    INACTIVE = "inactive"


class User(Base, TimestampMixin):
    """A person who can sign in to the dashboard or the desktop app.

    Emails are unique case-insensitively; they are stored lower-cased.
    """

    __tablename__ = "users"

    user_id: Mapped[UUID] = mapped_column(PortableUUID(), primary_key=True, default=uuid7)
    tenant_id: Mapped[UUID] = mapped_column(
        PortableUUID(), ForeignKey("tenants.tenant_id", ondelete="CASCADE"), nullable=False
    )
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    credential_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=UserRole.MEMBER.value)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=UserStatus.ACTIVE.value
    )

    # SSO identity and invite placeholders
    sso_provider_ref: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    registration_pending: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (Index("idx_users_tenant", "tenant_id"),)

    @validates("email")
    def _normalize_email(self, key: str, value: str) -> str:
        return value.strip().lower()

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE.value

    def __repr__(self) -> str:
        return f"<User(id={self.user_id}, email={self.email}, role={self.role})>"
