"""Repository for users."""

from uuid import UUID

from sqlalchemy import func, select

from entitle.db.models import User, UserRole

from .base import BaseRepository


class UserRepository(BaseRepository[User, UUID]):
    """Data access for users. Email lookups are case-insensitive."""

    async def get_by_email(self, email: str) -> User | None:
        stmt = select(User).where(User.email == email.strip().lower())
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_sso_ref(self, sso_provider_ref: str) -> User | None:
        stmt = select(User).where(User.sso_provider_ref == sso_provider_ref)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_tenant(self, tenant_id: UUID) -> list[User]:
        stmt = select(User).where(User.tenant_id == tenant_id).order_by(User.created_at)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def count_for_tenant(self, tenant_id: UUID) -> int:
        stmt = select(func.count(User.user_id)).where(User.tenant_id == tenant_id)
        result = await self.db.execute(stmt)
        return result.scalar() or 0

    async def get_tenant_admin(self, tenant_id: UUID) -> User | None:
        stmt = (
            select(User)
            .where(User.tenant_id == tenant_id, User.role == UserRole.ADMIN.value)
            .order_by(User.created_at)
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def get_first_by_domain(self, domain: str) -> User | None:
        """Earliest user whose email is at ``domain``."""
        stmt = (
            select(User)
            .where(User.email.like(f"%@{domain.strip().lower()}"))
            .order_by(User.created_at)
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()
