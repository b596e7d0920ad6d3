"""Out-of-band subscription sync.

Seat decreases are billed best-effort, and webhooks can be lost. This
pass pulls the provider's view of every bound subscription and feeds it
through the reconciler as a synthetic ``subscription.updated`` event, so
drift heals the same way a late webhook would.
"""

from collections import Counter
from dataclasses import dataclass, field

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from entitle.billing.provider import BillingProviderClient
from entitle.billing.reconciler import BillingEventReconciler, ReconcileOutcome
from entitle.config.settings import Settings, get_settings
from entitle.core.exceptions import ConcurrentUpdateError, UpstreamError
from entitle.db.repositories import SubscriptionRepository
from entitle.observability.metrics import record_sync_report
from entitle.observability.tracing import traced_async

logger = structlog.get_logger()


@dataclass
class SyncReport:
    """Summary of one sync pass."""

    checked: int = 0
    failed: int = 0
    outcomes: Counter = field(default_factory=Counter)

    @property
    def applied(self) -> int:
        return self.outcomes[ReconcileOutcome.APPLIED.value]

    def to_dict(self) -> dict[str, int]:
        return {"checked": self.checked, "failed": self.failed, **dict(self.outcomes)}


class SubscriptionSyncService:
    """Reconciles local subscriptions against the billing provider.

    Each subscription is reconciled in its own session so one bad row
    cannot roll back the others.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        provider: BillingProviderClient,
        settings: Settings | None = None,
        *,
        batch_size: int = 200,
    ):
        self._session_factory = session_factory
        self._provider = provider
        self._settings = settings or get_settings()
        self._batch_size = batch_size

    @traced_async("billing.sync_all")
    async def sync_all(self) -> SyncReport:
        report = SyncReport()
        offset = 0
        while True:
            async with self._session_factory() as session:
                batch = await SubscriptionRepository(session).list_bound(
                    limit=self._batch_size, offset=offset
                )
                refs = [s.billing_subscription_ref for s in batch]
            if not refs:
                break
            for ref in refs:
                await self._sync_one(ref, report)
            offset += len(refs)

        record_sync_report(report)
        logger.info("subscription_sync_completed", **report.to_dict())
        return report

    async def sync_one(self, subscription_ref: str) -> ReconcileOutcome | None:
        """Sync a single subscription. Returns None if the provider call failed."""
        report = SyncReport()
        await self._sync_one(subscription_ref, report)
        record_sync_report(report)
        return next((ReconcileOutcome(k) for k in report.outcomes), None)

    async def _sync_one(self, subscription_ref: str, report: SyncReport) -> None:
        report.checked += 1
        try:
            snapshot = await self._provider.get_subscription(subscription_ref)
        except UpstreamError as exc:
            report.failed += 1
            logger.warning(
                "subscription_sync_failed",
                subscription_ref=subscription_ref,
                error=str(exc),
            )
            return

        try:
            async with self._session_factory() as session:
                result = await BillingEventReconciler(session, self._settings).apply_event(
                    snapshot.to_event()
                )
        except ConcurrentUpdateError as exc:
            report.failed += 1
            logger.warning(
                "subscription_sync_contended",
                subscription_ref=subscription_ref,
                error=str(exc),
            )
            return
        report.outcomes[result.outcome.value] += 1
