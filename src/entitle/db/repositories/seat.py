"""Repository for seats (licenses)."""

from uuid import UUID

from sqlalchemy import func, select

from entitle.db.models import Seat, SeatStatus

from .base import BaseRepository


class SeatRepository(BaseRepository[Seat, UUID]):
    """Data access for seats."""

    async def get_by_key(self, license_key: str, *, lock: bool = False) -> Seat | None:
        stmt = select(Seat).where(Seat.license_key == license_key)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def key_exists(self, license_key: str) -> bool:
        stmt = select(func.count(Seat.seat_id)).where(Seat.license_key == license_key)
        result = await self.db.execute(stmt)
        return (result.scalar() or 0) > 0

    async def count_active(self, subscription_id: UUID) -> int:
        """Count non-revoked seats of a subscription."""
        stmt = select(func.count(Seat.seat_id)).where(
            Seat.subscription_id == subscription_id,
            Seat.status != SeatStatus.REVOKED.value,
        )
        result = await self.db.execute(stmt)
        return result.scalar() or 0

    async def list_for_subscription(
        self, subscription_id: UUID, *, include_revoked: bool = False
    ) -> list[Seat]:
        stmt = select(Seat).where(Seat.subscription_id == subscription_id)
        if not include_revoked:
            stmt = stmt.where(Seat.status != SeatStatus.REVOKED.value)
        stmt = stmt.order_by(Seat.created_at, Seat.seat_id)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_for_email(self, email: str) -> list[Seat]:
        stmt = select(Seat).where(
            Seat.assigned_email == email.strip().lower(),
            Seat.status != SeatStatus.REVOKED.value,
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())
