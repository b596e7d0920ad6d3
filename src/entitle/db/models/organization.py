"""Organization model for SSO-backed, organization-billed accounts."""

from uuid import UUID

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from uuid_utils.compat import uuid7

from .base import Base, PortableUUID, TimestampMixin


class Organization(Base, TimestampMixin):
    """An organization that can own a subscription directly.

    Organizations are matched to SSO logins by email ``domain`` and may
    carry the identity provider's organization reference.
    """

    __tablename__ = "organizations"

    organization_id: Mapped[UUID] = mapped_column(
        PortableUUID(), primary_key=True, default=uuid7
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    domain: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    sso_organization_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    max_seats: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")

    def __repr__(self) -> str:
        return f"<Organization(id={self.organization_id}, slug={self.slug})>"
