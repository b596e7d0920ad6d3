"""Repository for team members."""

from uuid import UUID

from sqlalchemy import func, select

from entitle.db.models import TeamMember, TeamMemberStatus

from .base import BaseRepository


class TeamMemberRepository(BaseRepository[TeamMember, UUID]):
    """Data access for team members."""

    async def get_for_subscription(self, subscription_id: UUID, email: str) -> TeamMember | None:
        stmt = select(TeamMember).where(
            TeamMember.subscription_id == subscription_id,
            TeamMember.email == email.strip().lower(),
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_by_email(self, email: str) -> list[TeamMember]:
        stmt = (
            select(TeamMember)
            .where(TeamMember.email == email.strip().lower())
            .order_by(TeamMember.invited_at.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_for_subscription(
        self, subscription_id: UUID, *, status: TeamMemberStatus | None = None
    ) -> list[TeamMember]:
        stmt = select(TeamMember).where(TeamMember.subscription_id == subscription_id)
        if status is not None:
            stmt = stmt.where(TeamMember.status == status.value)
        stmt = stmt.order_by(TeamMember.invited_at, TeamMember.member_id)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def count_active(self, subscription_id: UUID) -> int:
        """Count members holding a slot (invited or active, not suspended)."""
        stmt = select(func.count(TeamMember.member_id)).where(
            TeamMember.subscription_id == subscription_id,
            TeamMember.status.in_(
                [TeamMemberStatus.INVITED.value, TeamMemberStatus.ACTIVE.value]
            ),
        )
        result = await self.db.execute(stmt)
        return result.scalar() or 0
