"""Generic read access for entitlement models.

Repositories only read and stage rows. Writes are committed by the
EntitlementStore unit of work, which runs constraint failures through
``translate_integrity_error`` so callers see ConflictError or
DuplicateError, never a driver exception.

Usage:
    class SeatRepository(BaseRepository[Seat, UUID]):
        async def get_by_key(self, license_key: str) -> Seat | None: ...

    seat = await SeatRepository(session).get_or_raise(seat_id)
"""

import re
from typing import Generic, TypeVar
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from entitle.core.exceptions import ConflictError, DuplicateError, NotFoundError
from entitle.db.models.base import Base

ModelType = TypeVar("ModelType", bound=Base)
PKType = TypeVar("PKType", bound=UUID | int | str)

# Unique indexes that encode business invariants rather than plain uniqueness
CONFLICT_CONSTRAINTS = (
    "uq_subscriptions_active_user",
    "uq_subscriptions_active_tenant",
    "uq_subscriptions_active_organization",
)

_SQLITE_UNIQUE = re.compile(r"UNIQUE constraint failed: ([\w.]+(?:, [\w.]+)*)")


def translate_integrity_error(exc: IntegrityError, resource: str) -> Exception:
    """Map a driver IntegrityError to ConflictError or DuplicateError.

    PostgreSQL reports the constraint name; SQLite reports the columns.
    """
    message = str(exc.orig) if exc.orig is not None else str(exc)
    if any(name in message for name in CONFLICT_CONSTRAINTS):
        return ConflictError("Owner already has an active subscription", resource=resource)

    field = None
    match = _SQLITE_UNIQUE.search(message)
    if match:
        columns = [col.split(".")[-1] for col in match.group(1).split(", ")]
        if resource == "subscriptions" and "status" not in columns and any(
            col in ("user_id", "tenant_id", "organization_id") for col in columns
        ):
            return ConflictError("Owner already has an active subscription", resource=resource)
        field = ",".join(columns)
    else:
        key = re.search(r"Key \(([^)]+)\)", message)
        field = key.group(1) if key else None
    return DuplicateError(
        f"{resource} violates a unique constraint", resource=resource, field=field
    )


class BaseRepository(Generic[ModelType, PKType]):
    """Primary-key reads shared by the entitlement repositories.

    The model class is taken from the generic parameter, so subclasses
    only declare ``BaseRepository[Seat, UUID]``.
    """

    model: type[ModelType]

    def __init__(self, db: AsyncSession):
        self.db = db

    def __init_subclass__(cls, **kwargs):
        """Extract model type from generic parameter."""
        super().__init_subclass__(**kwargs)
        for base in getattr(cls, "__orig_bases__", []):
            args = getattr(base, "__args__", None)
            if args and len(args) >= 1:
                first_arg = args[0]
                # Check if it's an actual class (not a TypeVar)
                if isinstance(first_arg, type) and issubclass(first_arg, Base):
                    cls.model = first_arg
                    break

    @property
    def resource(self) -> str:
        return self.model.__tablename__

    async def get(self, pk: PKType) -> ModelType | None:
        return await self.db.get(self.model, pk)

    async def get_for_update(self, pk: PKType) -> ModelType | None:
        """Get a record by primary key with a row lock held until commit.

        ``populate_existing`` refreshes an instance already in the identity
        map so the caller decides on the locked values, not stale ones.
        """
        pk_col = self._get_pk_column()
        stmt = (
            select(self.model)
            .where(pk_col == pk)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_raise(self, pk: PKType) -> ModelType:
        """Get a single record by primary key or raise.

        Raises:
            NotFoundError: If record not found
        """
        result = await self.get(pk)
        if result is None:
            raise NotFoundError(
                f"{self.model.__name__} not found: {pk}", resource=self.resource, identifier=pk
            )
        return result

    async def exists(self, pk: PKType) -> bool:
        """Check if a record exists."""
        pk_col = self._get_pk_column()
        stmt = select(func.count(pk_col)).where(pk_col == pk)
        result = await self.db.execute(stmt)
        return (result.scalar() or 0) > 0

    def _get_pk_column(self):
        """Get the primary key column for this model.

        Raises:
            ValueError: If no primary key found
        """
        mapper = self.model.__mapper__
        pk_cols = mapper.primary_key
        if not pk_cols:
            raise ValueError(f"No primary key found for {self.model.__name__}")
        return pk_cols[0]
