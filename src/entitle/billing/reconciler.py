"""Billing event reconciler.

Applies normalized provider events to the entitlement store. Application
is idempotent (status assignment plus guarded cascades) and order
tolerant (events older than what is stored are skipped). Only
infrastructure failures escape ``apply_event``; everything else becomes
a ``ReconcileResult`` so the webhook endpoint can acknowledge it.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from entitle.billing.events import BillingEvent, BillingEventType
from entitle.billing.status_map import resolve_event_status
from entitle.config.settings import Settings, get_settings
from entitle.core.exceptions import (
    ConcurrentUpdateError,
    ConflictError,
    DuplicateError,
    UnresolvableEventError,
)
from entitle.db.models import (
    ACCESS_GRANTING_STATUSES,
    OwnerType,
    Plan,
    Subscription,
    SubscriptionStatus,
)
from entitle.entitlements import EntitlementStore
from entitle.observability.metrics import record_webhook_event
from entitle.observability.tracing import add_span_attributes, traced_async
from entitle.seats.license_keys import allocate_license_key

logger = structlog.get_logger()


class ReconcileOutcome(str, Enum):
    """What happened to a delivered billing event."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"  # nothing changed, e.g. a redelivery
    STALE = "stale"  # older than the stored state
    UNRESOLVABLE = "unresolvable"
    IGNORED = "ignored"  # event type we do not act on
    CONFLICT = "conflict"  # would break one-active-subscription-per-owner; permanent


@dataclass
class ReconcileResult:
    """Outcome of applying one billing event."""

    outcome: ReconcileOutcome
    subscription_id: UUID | None = None
    status: SubscriptionStatus | None = None
    linked: bool = False
    suspended_members: int = 0
    reactivated_members: int = 0

    @property
    def changed(self) -> bool:
        return self.outcome == ReconcileOutcome.APPLIED


class BillingEventReconciler:
    """Translates billing provider events into entitlement store writes.

    One instance per unit of work; it owns the session's transaction.

    Usage:
        reconciler = BillingEventReconciler(session)
        result = await reconciler.apply_event(event)
    """

    # A concurrent writer can bump the subscription version, or bind the
    # same provider reference, between our read and our commit. The event
    # is re-applied on fresh state; the second pass finds the bound row.
    max_attempts = 3

    def __init__(self, db: AsyncSession, settings: Settings | None = None):
        self.store = EntitlementStore(db)
        self._settings = settings or get_settings()

    @traced_async("billing.apply_event")
    async def apply_event(self, event: BillingEvent) -> ReconcileResult:
        """Apply an event and commit.

        Raises:
            ConcurrentUpdateError: Concurrent writers kept winning; the event
                was not applied and should be redelivered
            SQLAlchemyError: Only when the store itself is unavailable
        """
        log = logger.bind(**event.to_log_dict())
        add_span_attributes(
            **{
                "billing.event_type": event.event_type,
                "billing.subscription_ref": event.provider_subscription_ref,
            }
        )

        result: ReconcileResult | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                result = await self._apply(event)
                await self.store.commit()
                break
            except UnresolvableEventError as exc:
                await self.store.rollback()
                log.warning("billing_event_unresolvable", reason=exc.args[0])
                result = ReconcileResult(outcome=ReconcileOutcome.UNRESOLVABLE)
                break
            except (ConcurrentUpdateError, DuplicateError, StaleDataError) as exc:
                await self.store.rollback()
                if isinstance(exc, DuplicateError) and not _lost_link_race(exc):
                    log.error("billing_event_rejected", error=str(exc))
                    result = ReconcileResult(outcome=ReconcileOutcome.CONFLICT)
                    break
                if attempt < self.max_attempts:
                    log.info("billing_event_retrying", attempt=attempt, error=str(exc))
                    continue
                log.error("billing_event_retries_exhausted", attempts=attempt, error=str(exc))
                record_webhook_event(event.event_type.value, "retries_exhausted")
                raise ConcurrentUpdateError(
                    "Subscription kept changing concurrently",
                    resource="subscriptions",
                    identifier=event.provider_subscription_ref,
                ) from exc
            except ConflictError as exc:
                await self.store.rollback()
                log.error("billing_event_conflict", error=str(exc))
                result = ReconcileResult(outcome=ReconcileOutcome.CONFLICT)
                break

        log.info(
            "billing_event_reconciled",
            outcome=result.outcome.value,
            subscription_id=str(result.subscription_id) if result.subscription_id else None,
            status=result.status.value if result.status else None,
            linked=result.linked,
            suspended_members=result.suspended_members,
            reactivated_members=result.reactivated_members,
        )
        record_webhook_event(event.event_type.value, result.outcome.value)
        return result

    async def _apply(self, event: BillingEvent) -> ReconcileResult:
        subscription: Subscription | None = None
        linked = False
        if event.provider_subscription_ref:
            subscription = await self.store.subscriptions.get_by_ref(
                event.provider_subscription_ref, lock=True
            )
        if subscription is None:
            if not event.event_type.links_subscription:
                raise UnresolvableEventError(
                    "No subscription is bound to this provider reference",
                    event_type=event.event_type.value,
                    subscription_ref=event.provider_subscription_ref,
                )
            subscription = await self._link(event)
            linked = True

        if not linked and _already_applied(subscription, event):
            return ReconcileResult(
                outcome=ReconcileOutcome.DUPLICATE,
                subscription_id=subscription.subscription_id,
                status=SubscriptionStatus(subscription.status),
            )

        if self._is_stale(subscription, event):
            return ReconcileResult(
                outcome=ReconcileOutcome.STALE,
                subscription_id=subscription.subscription_id,
                status=SubscriptionStatus(subscription.status),
            )

        status = resolve_event_status(event.event_type, event.provider_status)
        if (
            event.cancel_at_period_end
            and subscription.status == SubscriptionStatus.CANCELLED.value
            and status.value in ACCESS_GRANTING_STATUSES
        ):
            # Cancelled locally; the provider keeps it running until period end
            status = SubscriptionStatus.CANCELLED
        changed = linked
        changed |= await self.store.set_subscription_status(subscription, status)
        changed |= self._apply_fields(subscription, event)

        suspended = reactivated = 0
        if subscription.grants_access:
            reactivated = await self.store.reactivate_members(subscription.subscription_id)
        else:
            suspended = await self.store.suspend_members(subscription.subscription_id)
        changed |= bool(suspended or reactivated)

        self._record_event_marker(subscription, event)
        await self.store.flush()
        changed |= await self.store.mirror_tenant(subscription)

        return ReconcileResult(
            outcome=ReconcileOutcome.APPLIED if changed else ReconcileOutcome.DUPLICATE,
            subscription_id=subscription.subscription_id,
            status=status,
            linked=linked,
            suspended_members=suspended,
            reactivated_members=reactivated,
        )

    # ------------------------------------------------------------------
    # First-time linkage
    # ------------------------------------------------------------------

    async def _link(self, event: BillingEvent) -> Subscription:
        """Bind the provider reference to the owner named by the correlation payload.

        Reuses the owner's unbound subscription if there is one, otherwise
        creates the subscription with its first seat.
        """
        if not event.provider_subscription_ref:
            raise UnresolvableEventError(
                "Linking event carries no subscription reference",
                event_type=event.event_type.value,
            )

        owner_type, owner_id, email = await self._resolve_owner(event)
        existing = await self.store.subscriptions.get_latest_for_owner(
            owner_type, owner_id, lock=True
        )
        if existing is not None and existing.billing_subscription_ref is None:
            existing.billing_subscription_ref = event.provider_subscription_ref
            existing.billing_customer_ref = (
                event.provider_customer_ref or existing.billing_customer_ref
            )
            logger.info(
                "subscription_linked",
                subscription_id=str(existing.subscription_id),
                subscription_ref=event.provider_subscription_ref,
            )
            return existing

        plan = self._resolve_plan(event) or Plan.BASIC.value
        subscription = Subscription(
            owner_type=owner_type.value,
            billing_subscription_ref=event.provider_subscription_ref,
            billing_customer_ref=event.provider_customer_ref,
            plan=plan,
            price_per_seat=self._settings.plans.price_for(plan),
            seats=1,
            billing_quantity=max(1, event.quantity or 1),
            status=SubscriptionStatus.INCOMPLETE.value,
            billing_metadata={},
        )
        match owner_type:
            case OwnerType.USER:
                subscription.user_id = owner_id
            case OwnerType.TENANT:
                subscription.tenant_id = owner_id
            case OwnerType.ORGANIZATION:
                subscription.organization_id = owner_id
        await self.store.create_subscription(subscription)

        license_key = await allocate_license_key(
            self.store.seats,
            prefix=self._settings.license_key_prefix,
            max_attempts=self._settings.license_key_max_attempts,
        )
        await self.store.add_seat_row(subscription, email, license_key)
        return subscription

    async def _resolve_owner(self, event: BillingEvent) -> tuple[OwnerType, UUID, str | None]:
        correlation = event.correlation
        email = correlation.email

        if correlation.organization_id is not None:
            if await self.store.organizations.exists(correlation.organization_id):
                return OwnerType.ORGANIZATION, correlation.organization_id, email

        tenant = None
        if correlation.tenant_id is not None:
            tenant = await self.store.tenants.get(correlation.tenant_id)
        if tenant is None and event.provider_customer_ref:
            tenant = await self.store.tenants.get_by_customer_ref(event.provider_customer_ref)
        if tenant is not None:
            if email is None:
                admin = await self.store.users.get_tenant_admin(tenant.tenant_id)
                email = admin.email if admin else None
            return OwnerType.TENANT, tenant.tenant_id, email

        if correlation.user_id is not None:
            user = await self.store.users.get(correlation.user_id)
            if user is not None:
                return OwnerType.USER, user.user_id, email or user.email

        raise UnresolvableEventError(
            "Correlation payload names no known tenant, user or organization",
            event_type=event.event_type.value,
            subscription_ref=event.provider_subscription_ref,
        )

    # ------------------------------------------------------------------
    # Field updates
    # ------------------------------------------------------------------

    @staticmethod
    def _is_stale(subscription: Subscription, event: BillingEvent) -> bool:
        stored_end = subscription.current_period_end
        if event.period_end is not None and stored_end is not None:
            if event.period_end != stored_end:
                return event.period_end < stored_end

        last_event_at = _parse_marker((subscription.billing_metadata or {}).get("last_event_at"))
        if event.occurred_at is not None and last_event_at is not None:
            return event.occurred_at < last_event_at
        return False

    def _apply_fields(self, subscription: Subscription, event: BillingEvent) -> bool:
        updates: dict[str, Any] = {}
        if event.provider_status and event.provider_status != subscription.provider_status:
            updates["provider_status"] = event.provider_status
        if event.period_start is not None:
            updates["current_period_start"] = event.period_start
        if event.period_end is not None:
            updates["current_period_end"] = event.period_end
        if event.quantity is not None:
            updates["billing_quantity"] = max(1, int(event.quantity))
        if event.provider_customer_ref and not subscription.billing_customer_ref:
            updates["billing_customer_ref"] = event.provider_customer_ref

        plan = self._resolve_plan(event)
        if plan is not None and plan != subscription.plan:
            updates["plan"] = plan
            updates["price_per_seat"] = self._settings.plans.price_for(plan)

        changed = False
        for field, value in updates.items():
            current = getattr(subscription, field)
            if isinstance(value, Decimal) and current is not None:
                current = Decimal(current)
            if current != value:
                setattr(subscription, field, value)
                changed = True
        return changed

    def _resolve_plan(self, event: BillingEvent) -> str | None:
        plan = self._settings.plans.plan_for_price_id(event.price_id) or event.correlation.plan
        if plan in (Plan.BASIC.value, Plan.PRO.value):
            return plan
        return None

    @staticmethod
    def _record_event_marker(subscription: Subscription, event: BillingEvent) -> None:
        metadata = dict(subscription.billing_metadata or {})
        last_event_at = _parse_marker(metadata.get("last_event_at"))
        if event.occurred_at is not None and (
            last_event_at is None or event.occurred_at > last_event_at
        ):
            metadata["last_event_at"] = event.occurred_at.isoformat()
        if event.event_id:
            metadata["last_event_id"] = event.event_id
        if event.event_type == BillingEventType.CHECKOUT_COMPLETED:
            metadata["checkout"] = event.correlation.metadata
        if metadata != subscription.billing_metadata:
            # PortableJSON is not mutation-tracked; assign a new dict
            subscription.billing_metadata = metadata


def _parse_marker(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None


def _already_applied(subscription: Subscription, event: BillingEvent) -> bool:
    """The provider redelivered the last event applied to this subscription."""
    if not event.event_id:
        return False
    return (subscription.billing_metadata or {}).get("last_event_id") == event.event_id


def _lost_link_race(exc: DuplicateError) -> bool:
    """A concurrent delivery bound the same provider reference first."""
    return "billing_subscription_ref" in (exc.field or "")
