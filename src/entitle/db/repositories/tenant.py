"""Repository for tenants and organizations."""

from uuid import UUID

from sqlalchemy import select

from entitle.db.models import Organization, Tenant

from .base import BaseRepository


class TenantRepository(BaseRepository[Tenant, UUID]):
    """Data access for tenants."""

    async def get_by_subscription_ref(self, subscription_ref: str) -> Tenant | None:
        stmt = select(Tenant).where(Tenant.billing_subscription_ref == subscription_ref)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_customer_ref(self, customer_ref: str) -> Tenant | None:
        stmt = select(Tenant).where(Tenant.billing_customer_ref == customer_ref)
        result = await self.db.execute(stmt)
        return result.scalars().first()


class OrganizationRepository(BaseRepository[Organization, UUID]):
    """Data access for organizations."""

    async def get_by_slug(self, slug: str) -> Organization | None:
        stmt = select(Organization).where(Organization.slug == slug)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_domain(self, domain: str) -> Organization | None:
        stmt = select(Organization).where(Organization.domain == domain.lower())
        result = await self.db.execute(stmt)
        return result.scalars().first()
