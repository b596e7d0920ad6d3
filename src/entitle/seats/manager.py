"""Seat and license lifecycle.

Seat count changes keep the local counter and the provider's billed
quantity in step, with an asymmetry between the two directions:

* **Increase**: the provider is charged *before* the local commit. If the
  provider refuses or times out, nothing is written locally.
* **Decrease**: the local revocation commits first and always succeeds.
  The provider update afterwards is best-effort; a failure is logged and
  the next sync pass corrects the billed quantity.
"""

from dataclasses import dataclass
from uuid import UUID

import structlog
from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from entitle.access.evaluator import ACCOUNT_SUSPENDED, AccessContext, AccessEvaluator, Verdict
from entitle.billing.provider import BillingProviderClient
from entitle.config.settings import Settings, get_settings
from entitle.core.exceptions import (
    AccessDeniedError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from entitle.db.models import (
    Seat,
    SeatStatus,
    User,
    utcnow,
)
from entitle.entitlements import EntitlementStore, ensure_subscription_admin
from entitle.observability.metrics import record_seat_operation
from entitle.observability.tracing import traced_async
from entitle.seats.license_keys import allocate_license_key
from entitle.seats.quantity import charge_increase, sync_decrease

logger = structlog.get_logger()


@dataclass(frozen=True)
class LicenseActivation:
    """An activated seat and the plan metadata its verdict was granted on."""

    seat: Seat
    context: AccessContext | None


class SeatManager:
    """Adds and revokes seats and manages license key machine bindings.

    Args:
        db: Session for the unit of work
        provider: Billing provider client
        settings: Application settings
        session_factory: Passed to the evaluator for ``last_used_at`` touches
    """

    def __init__(
        self,
        db: AsyncSession,
        provider: BillingProviderClient,
        settings: Settings | None = None,
        *,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ):
        self.store = EntitlementStore(db)
        self.evaluator = AccessEvaluator(db, session_factory)
        self._provider = provider
        self._settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Seat count
    # ------------------------------------------------------------------

    @traced_async("seats.add_seat")
    async def add_seat(
        self, subscription_id: UUID, email: str | None, *, actor: User | None = None
    ) -> Seat:
        """Provision a seat, charging the provider first when it raises the quantity.

        Raises:
            NotFoundError: Unknown subscription
            AccessDeniedError: Actor does not administer the subscription, or
                the subscription is not access-granting
            ConflictError: Quantity must grow but the subscription is not linked
                to billing yet
            UpstreamError: The provider refused or timed out; no seat was created
        """
        subscription = await self.store.lock_subscription(subscription_id)
        ensure_subscription_admin(subscription, actor)
        if not subscription.grants_access:
            raise AccessDeniedError(
                f"Subscription {subscription_id} is {subscription.status}",
                reason=f"subscription_{subscription.status}",
            )

        new_count = await self.store.count_active_seats(subscription_id) + 1
        if new_count > subscription.billing_quantity:
            await charge_increase(
                self.store, self._provider, subscription, new_count, operation="add"
            )

        license_key = await allocate_license_key(
            self.store.seats,
            prefix=self._settings.license_key_prefix,
            max_attempts=self._settings.license_key_max_attempts,
        )
        seat = await self.store.add_seat_row(subscription, email, license_key)
        await self.store.commit()

        record_seat_operation("add", "success")
        logger.info(
            "seat_added",
            subscription_id=str(subscription_id),
            seat_id=str(seat.seat_id),
            seats=subscription.seats,
            billing_quantity=subscription.billing_quantity,
        )
        return seat

    @traced_async("seats.revoke_seat")
    async def revoke_seat(self, seat_id: UUID, *, actor: User | None = None) -> Seat:
        """Permanently revoke a seat. Revoking an already revoked seat is a no-op.

        Always succeeds locally, including for the last seat; the
        provisioned count never drops below one.

        Raises:
            NotFoundError: Unknown seat
            AccessDeniedError: Actor does not administer the subscription
        """
        seat = await self.store.seats.get_or_raise(seat_id)
        subscription = await self.store.lock_subscription(seat.subscription_id)
        ensure_subscription_admin(subscription, actor)
        seat = await self.store.seats.get_for_update(seat_id)
        if seat.is_revoked:
            return seat

        await self.store.revoke_seat_row(subscription, seat)
        await self.store.commit()
        record_seat_operation("revoke", "success")
        logger.info(
            "seat_revoked",
            subscription_id=str(subscription.subscription_id),
            seat_id=str(seat_id),
            seats=subscription.seats,
        )

        await sync_decrease(
            self.store, self._provider, subscription.subscription_id, operation="revoke"
        )
        if inspect(seat).expired_attributes:
            # The best-effort sync rolled back its own transaction
            await self.store.db.refresh(seat)
        return seat

    # ------------------------------------------------------------------
    # License keys
    # ------------------------------------------------------------------

    async def activate_license(self, license_key: str, machine_id: str) -> LicenseActivation:
        """Bind a key to a machine, or confirm the existing binding.

        Raises:
            ValidationError: Missing key or machine id
            NotFoundError: Unknown or revoked key, or lapsed subscription
            AccessDeniedError: The key holder's account is suspended
            ConflictError: The key is bound to a different machine
        """
        _require(license_key=license_key, machine_id=machine_id)
        verdict = await self.evaluator.evaluate_license(license_key)
        if verdict.reason == ACCOUNT_SUSPENDED:
            raise AccessDeniedError("License holder account is suspended", reason=ACCOUNT_SUSPENDED)
        if not verdict.is_granted:
            record_seat_operation("activate", "not_found")
            raise NotFoundError(
                "Invalid license key or license has been revoked",
                resource="seats",
                identifier=license_key,
            )

        seat = await self._locked_seat(license_key)
        if seat.machine_identifier is not None and seat.machine_identifier != machine_id:
            await self.store.rollback()
            record_seat_operation("activate", "conflict")
            raise ConflictError(
                "License key is already activated on another device",
                resource="seats",
                identifier=seat.seat_id,
            )

        now = utcnow()
        seat.machine_identifier = machine_id
        if seat.status == SeatStatus.UNUSED.value:
            seat.status = SeatStatus.ACTIVE.value
        if seat.activated_at is None:
            seat.activated_at = now
        seat.last_used_at = now
        await self.store.commit()

        record_seat_operation("activate", "success")
        logger.info("license_activated", seat_id=str(seat.seat_id))
        return LicenseActivation(seat=seat, context=verdict.context)

    async def deactivate_license(self, license_key: str, machine_id: str) -> Seat:
        """Release the machine binding; the caller must present the bound machine.

        Raises:
            NotFoundError: Key unknown, revoked, or not bound to ``machine_id``
        """
        _require(license_key=license_key, machine_id=machine_id)
        seat = await self._locked_seat(license_key)
        if seat.machine_identifier != machine_id:
            await self.store.rollback()
            raise NotFoundError(
                "License not found on this device", resource="seats", identifier=license_key
            )
        seat.machine_identifier = None
        seat.status = SeatStatus.UNUSED.value
        await self.store.commit()
        record_seat_operation("deactivate", "success")
        return seat

    async def reset_license(self, license_key: str) -> Seat:
        """Self-service reset: no machine match, but the subscription must grant access.

        Raises:
            NotFoundError: Key unknown or revoked, or subscription lapsed
        """
        _require(license_key=license_key)
        seat = await self._locked_seat(license_key)
        subscription = await self.store.subscriptions.get(seat.subscription_id)
        if subscription is None or not subscription.grants_access:
            await self.store.rollback()
            raise NotFoundError(
                "License not found or subscription is inactive",
                resource="seats",
                identifier=license_key,
            )
        return await self._reset(seat, "reset")

    async def admin_reset_license(self, license_key: str) -> Seat:
        """Administrative reset without a subscription check.

        Raises:
            NotFoundError: Key unknown or revoked
        """
        _require(license_key=license_key)
        seat = await self._locked_seat(license_key)
        return await self._reset(seat, "admin_reset")

    async def license_status(self, license_key: str, machine_id: str) -> Verdict:
        """Periodic desktop check; touches ``last_used_at`` when granted."""
        _require(license_key=license_key, machine_id=machine_id)
        return await self.evaluator.evaluate_license(license_key, machine_id, touch=True)

    async def _reset(self, seat: Seat, operation: str) -> Seat:
        seat.machine_identifier = None
        seat.status = SeatStatus.UNUSED.value
        seat.activated_at = None
        seat.last_used_at = None
        await self.store.commit()
        record_seat_operation(operation, "success")
        logger.info("license_reset", seat_id=str(seat.seat_id), operation=operation)
        return seat

    async def _locked_seat(self, license_key: str) -> Seat:
        seat = await self.store.seats.get_by_key(license_key, lock=True)
        if seat is None or seat.is_revoked:
            await self.store.rollback()
            raise NotFoundError("License not found", resource="seats", identifier=license_key)
        return seat

    async def list_seats(self, subscription_id: UUID, *, actor: User | None = None) -> list[Seat]:
        """Non-revoked seats of a subscription the actor administers."""
        subscription = await self.store.subscriptions.get_or_raise(subscription_id)
        ensure_subscription_admin(subscription, actor)
        return await self.store.seats.list_for_subscription(subscription_id)


def _require(**fields: str | None) -> None:
    for name, value in fields.items():
        if not value or not value.strip():
            raise ValidationError(f"{name} is required", field=name)
