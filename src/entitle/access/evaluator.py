"""Access evaluator: is this principal entitled to use the product right now?

Checks run in a fixed precedence, first match wins:

1. An inactive user is denied (``account_suspended``), whatever else holds.
2. A user who owns a subscription is granted iff it is access-granting.
3. A team member is granted iff the membership is not suspended and the
   team's subscription is access-granting.
4. A user whose tenant takes part in billing is granted iff the tenant is
   active.
5. Otherwise the principal has no subscription or membership.

There are two entry points over the same reads. ``evaluate_strict`` is
used by the desktop app and the API. ``evaluate_permissive`` is used by
the web dashboard and lets billing denials through, flagged
``billing_blocked``, so the user can still reach the plan picker.
"""

import asyncio
from dataclasses import dataclass, replace
from enum import Enum
from uuid import UUID

import structlog
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from entitle.db.models import (
    OwnerType,
    Seat,
    SeatStatus,
    Subscription,
    TeamMember,
    TeamMemberStatus,
    User,
    utcnow,
)
from entitle.db.repositories import (
    SeatRepository,
    SubscriptionRepository,
    TeamMemberRepository,
    TenantRepository,
    UserRepository,
)
from entitle.observability.metrics import record_access_verdict

logger = structlog.get_logger()

ACCOUNT_SUSPENDED = "account_suspended"
MEMBERSHIP_SUSPENDED = "membership_suspended"
TENANT_INACTIVE = "tenant_inactive"
LICENSE_REVOKED = "license_revoked"
NO_SUBSCRIPTION = "no_subscription_or_membership"
UNKNOWN_PRINCIPAL = "unknown_principal"
UNKNOWN_LICENSE_KEY = "unknown_license_key"
LICENSE_NOT_ON_MACHINE = "license_not_bound_to_machine"


class VerdictKind(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"
    NOT_FOUND = "not_found"


class AccessSource(str, Enum):
    """Which record the verdict was decided on."""

    OWNER = "owner"
    TEAM_MEMBER = "team_member"
    TENANT = "tenant"
    LICENSE = "license"


@dataclass(frozen=True)
class AccessContext:
    """What a verdict was decided on, for callers that need plan metadata."""

    source: AccessSource
    user_id: UUID | None = None
    email: str | None = None
    tenant_id: UUID | None = None
    subscription_id: UUID | None = None
    subscription_status: str | None = None
    plan: str | None = None
    member_id: UUID | None = None
    seat_id: UUID | None = None
    license_key: str | None = None
    license_status: str | None = None


@dataclass(frozen=True)
class Verdict:
    """Tri-state entitlement verdict."""

    kind: VerdictKind
    reason: str | None = None
    context: AccessContext | None = None
    billing_blocked: bool = False

    @classmethod
    def grant(cls, context: AccessContext) -> "Verdict":
        return cls(kind=VerdictKind.GRANTED, context=context)

    @classmethod
    def deny(cls, reason: str, context: AccessContext | None = None) -> "Verdict":
        return cls(kind=VerdictKind.DENIED, reason=reason, context=context)

    @classmethod
    def not_found(cls, reason: str = NO_SUBSCRIPTION) -> "Verdict":
        return cls(kind=VerdictKind.NOT_FOUND, reason=reason)

    @property
    def is_granted(self) -> bool:
        return self.kind == VerdictKind.GRANTED

    @property
    def is_denied(self) -> bool:
        return self.kind == VerdictKind.DENIED

    @property
    def is_not_found(self) -> bool:
        return self.kind == VerdictKind.NOT_FOUND


class AccessEvaluator:
    """Computes entitlement verdicts from the entitlement store.

    Evaluation only reads. The single side effect is the optional
    ``last_used_at`` touch, which runs as a background task in its own
    session, so it neither blocks nor fails the verdict. Without a
    session factory touches are skipped.

    Args:
        db: Session used for the reads
        session_factory: Factory for the touch sessions
    """

    def __init__(
        self,
        db: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ):
        self.users = UserRepository(db)
        self.tenants = TenantRepository(db)
        self.subscriptions = SubscriptionRepository(db)
        self.members = TeamMemberRepository(db)
        self.seats = SeatRepository(db)
        self._session_factory = session_factory
        self._pending: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def evaluate_strict(self, principal: User | UUID | str) -> Verdict:
        """Desktop/API verdict: any denial blocks."""
        verdict = await self._evaluate_principal(principal)
        record_access_verdict("strict", verdict.kind.value)
        return verdict

    async def evaluate_permissive(self, principal: User | UUID | str) -> Verdict:
        """Dashboard verdict: only a suspended account blocks.

        Billing denials and a missing subscription come back granted with
        ``billing_blocked=True`` and the strict reason attached.
        """
        user = await self._resolve_user(principal)
        if user is None:
            verdict = Verdict.not_found(UNKNOWN_PRINCIPAL)
        else:
            strict = await self._evaluate_user(user)
            if strict.is_granted or strict.reason == ACCOUNT_SUSPENDED:
                verdict = strict
            else:
                context = strict.context or AccessContext(
                    source=AccessSource.TENANT,
                    user_id=user.user_id,
                    email=user.email,
                    tenant_id=user.tenant_id,
                )
                verdict = Verdict(
                    kind=VerdictKind.GRANTED,
                    reason=strict.reason,
                    context=context,
                    billing_blocked=True,
                )
        record_access_verdict("permissive", verdict.kind.value)
        return verdict

    async def evaluate_license(
        self, license_key: str, machine_id: str | None = None, *, touch: bool = False
    ) -> Verdict:
        """Verdict for a license key, optionally pinned to a machine.

        When ``machine_id`` is given the key must be bound to that machine.
        """
        seat = await self.seats.get_by_key(license_key)
        if seat is None:
            verdict = Verdict.not_found(UNKNOWN_LICENSE_KEY)
        elif machine_id is not None and seat.machine_identifier != machine_id:
            verdict = Verdict.not_found(LICENSE_NOT_ON_MACHINE)
        else:
            verdict = await self._evaluate_seat(seat)
            if verdict.is_granted and touch:
                self._schedule_touch(Seat, seat.seat_id)
        record_access_verdict("license", verdict.kind.value)
        return verdict

    async def validate_access(self, email: str) -> Verdict:
        """Desktop periodic re-validation by email.

        A granted team membership is marked used: ``invited`` becomes
        ``active``, ``joined_at`` is stamped on first use and
        ``last_used_at`` on every call.
        """
        verdict = await self.evaluate_strict(email)
        context = verdict.context
        if verdict.is_granted and context is not None and context.member_id is not None:
            self._schedule_touch(TeamMember, context.member_id, first_use=True)
        return verdict

    async def drain(self) -> None:
        """Wait for outstanding touches (shutdown and tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ------------------------------------------------------------------
    # Precedence
    # ------------------------------------------------------------------

    async def _resolve_user(self, principal: User | UUID | str) -> User | None:
        if isinstance(principal, User):
            return principal
        if isinstance(principal, UUID):
            return await self.users.get(principal)
        return await self.users.get_by_email(principal)

    async def _evaluate_principal(self, principal: User | UUID | str) -> Verdict:
        user = await self._resolve_user(principal)
        if user is None:
            return Verdict.not_found(UNKNOWN_PRINCIPAL)
        return await self._evaluate_user(user)

    async def _evaluate_user(self, user: User) -> Verdict:
        base = AccessContext(
            source=AccessSource.OWNER,
            user_id=user.user_id,
            email=user.email,
            tenant_id=user.tenant_id,
        )

        if not user.is_active:
            return Verdict.deny(ACCOUNT_SUSPENDED, base)

        owned = await self.subscriptions.get_latest_for_owner(OwnerType.USER, user.user_id)
        if owned is not None:
            context = _with_subscription(base, owned)
            if owned.grants_access:
                return Verdict.grant(context)
            return Verdict.deny(f"owner_subscription_{owned.status}", context)

        membership = await self._team_verdict(user, base)
        if membership is not None:
            return membership

        tenant = await self.tenants.get(user.tenant_id)
        if tenant is not None and (tenant.is_active or tenant.billing_subscription_ref):
            context = replace(base, source=AccessSource.TENANT, plan=tenant.plan)
            tenant_subscription = await self.subscriptions.get_latest_for_owner(
                OwnerType.TENANT, tenant.tenant_id
            )
            if tenant_subscription is not None:
                context = replace(
                    _with_subscription(context, tenant_subscription), plan=tenant.plan
                )
            if tenant.is_active:
                return Verdict.grant(context)
            return Verdict.deny(TENANT_INACTIVE, context)

        return Verdict.not_found(NO_SUBSCRIPTION)

    async def _team_verdict(self, user: User, base: AccessContext) -> Verdict | None:
        """Best membership verdict, or None if the user is on no team.

        A granting membership wins. Otherwise a lapsed team subscription
        is reported before an individually suspended membership, since the
        lapse is what suspended the members in the first place.
        """
        memberships = await self.members.list_by_email(user.email)
        if not memberships:
            return None

        denial: Verdict | None = None
        for member in memberships:
            subscription = await self.subscriptions.get(member.subscription_id)
            if subscription is None:
                continue
            context = replace(
                _with_subscription(base, subscription),
                source=AccessSource.TEAM_MEMBER,
                member_id=member.member_id,
            )
            if not subscription.grants_access:
                if denial is None or denial.reason == MEMBERSHIP_SUSPENDED:
                    denial = Verdict.deny(f"team_subscription_{subscription.status}", context)
            elif member.status == TeamMemberStatus.SUSPENDED.value:
                denial = denial or Verdict.deny(MEMBERSHIP_SUSPENDED, context)
            else:
                return Verdict.grant(context)
        return denial

    async def _evaluate_seat(self, seat: Seat) -> Verdict:
        context = AccessContext(
            source=AccessSource.LICENSE,
            email=seat.assigned_email,
            subscription_id=seat.subscription_id,
            seat_id=seat.seat_id,
            license_key=seat.license_key,
            license_status=seat.status,
        )
        if seat.assigned_email:
            holder = await self.users.get_by_email(seat.assigned_email)
            if holder is not None:
                context = replace(context, user_id=holder.user_id, tenant_id=holder.tenant_id)
                if not holder.is_active:
                    return Verdict.deny(ACCOUNT_SUSPENDED, context)

        if seat.status == SeatStatus.REVOKED.value:
            return Verdict.deny(LICENSE_REVOKED, context)

        subscription = await self.subscriptions.get(seat.subscription_id)
        if subscription is None:
            return Verdict.not_found(UNKNOWN_LICENSE_KEY)
        context = _with_subscription(context, subscription)
        if not subscription.grants_access:
            return Verdict.deny(f"license_subscription_{subscription.status}", context)
        return Verdict.grant(context)

    # ------------------------------------------------------------------
    # Fire-and-forget touch
    # ------------------------------------------------------------------

    def _schedule_touch(
        self, model: type[Seat] | type[TeamMember], row_id: UUID, *, first_use: bool = False
    ) -> None:
        if self._session_factory is None:
            return
        task = asyncio.create_task(self._touch(model, row_id, first_use=first_use))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _touch(
        self, model: type[Seat] | type[TeamMember], row_id: UUID, *, first_use: bool
    ) -> None:
        now = utcnow()
        try:
            async with self._session_factory() as session:
                if model is Seat:
                    await session.execute(
                        update(Seat).where(Seat.seat_id == row_id).values(last_used_at=now)
                    )
                else:
                    await session.execute(
                        update(TeamMember)
                        .where(TeamMember.member_id == row_id)
                        .values(last_used_at=now)
                    )
                    if first_use:
                        await session.execute(
                            update(TeamMember)
                            .where(
                                TeamMember.member_id == row_id,
                                TeamMember.status == TeamMemberStatus.INVITED.value,
                            )
                            .values(status=TeamMemberStatus.ACTIVE.value)
                        )
                        await session.execute(
                            update(TeamMember)
                            .where(
                                TeamMember.member_id == row_id,
                                TeamMember.joined_at.is_(None),
                            )
                            .values(joined_at=now)
                        )
                await session.commit()
        except SQLAlchemyError as exc:
            logger.warning(
                "last_used_touch_failed",
                table=model.__tablename__,
                row_id=str(row_id),
                error=str(exc),
            )


def _with_subscription(context: AccessContext, subscription: Subscription) -> AccessContext:
    return replace(
        context,
        subscription_id=subscription.subscription_id,
        subscription_status=subscription.status,
        plan=subscription.plan,
    )
