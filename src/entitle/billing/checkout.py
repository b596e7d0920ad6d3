"""Hosted checkout for tenants picking a plan."""

from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from entitle.billing.events import CheckoutSession
from entitle.billing.provider import BillingProviderClient
from entitle.config.settings import Settings, get_settings
from entitle.core.exceptions import ValidationError
from entitle.db.models import Plan, User
from entitle.entitlements import EntitlementStore

logger = structlog.get_logger()


class CheckoutService:
    """Creates provider checkout sessions for a tenant.

    The tenant id travels as the client reference and the user and plan as
    metadata; the provider echoes both back on the checkout and
    subscription events, which is how the reconciler links the new
    subscription to this tenant.
    """

    def __init__(
        self,
        db: AsyncSession,
        provider: BillingProviderClient,
        settings: Settings | None = None,
    ):
        self.store = EntitlementStore(db)
        self._provider = provider
        self._settings = settings or get_settings()

    async def create_checkout(
        self, tenant_id: UUID, plan: str, quantity: int, *, user: User
    ) -> CheckoutSession:
        """Create a checkout session, creating the provider customer if needed.

        Raises:
            ValidationError: Unknown plan or quantity below one
            NotFoundError: Unknown tenant
            UpstreamError: Provider call failed
        """
        if plan not in (Plan.BASIC.value, Plan.PRO.value):
            raise ValidationError(f"Unknown plan: {plan}", field="plan")
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1", field="quantity")

        tenant = await self.store.tenants.get_or_raise(tenant_id)
        if tenant.billing_customer_ref is None:
            customer = await self._provider.create_customer(user.email, tenant.name)
            tenant.billing_customer_ref = customer.customer_ref
            await self.store.commit()
            logger.info(
                "billing_customer_created",
                tenant_id=str(tenant_id),
                customer_ref=customer.customer_ref,
            )

        session = await self._provider.create_checkout_session(
            self._settings.plans.price_id_for(plan),
            tenant.billing_customer_ref,
            quantity,
            self._settings.checkout_success_url,
            self._settings.checkout_cancel_url,
            client_reference_id=str(tenant_id),
            metadata={
                "tenant_id": str(tenant_id),
                "user_id": str(user.user_id),
                "plan": plan,
                "email": user.email,
            },
        )
        logger.info(
            "checkout_session_created",
            tenant_id=str(tenant_id),
            plan=plan,
            quantity=quantity,
            session_ref=session.session_ref,
        )
        return session
