"""Billing provider client.

The core only depends on the ``BillingProviderClient`` protocol. The
HTTP implementation speaks the Stripe REST dialect (form-encoded bodies,
``/v1`` resources); the mock records every call for tests and local runs.

Every call is bounded by the client timeout. A timeout surfaces as
``UpstreamTimeoutError`` and any non-2xx answer as
``UpstreamRejectedError``. Only ``get_subscription`` is retried: it is
a read, and retrying a quantity change could double-bill.
"""

import time
from typing import Any, Protocol, runtime_checkable

import httpx
import structlog
from pydantic import BaseModel, Field, SecretStr
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from entitle.billing.events import CheckoutSession, CustomerRef, SubscriptionSnapshot
from entitle.billing.webhooks import _first_item, _from_epoch, _ref
from entitle.config.settings import Settings
from entitle.core.exceptions import (
    UpstreamError,
    UpstreamRejectedError,
    UpstreamTimeoutError,
)
from entitle.core.logging import log_external_call
from entitle.observability.metrics import observe_provider_call

logger = structlog.get_logger()

SERVICE = "billing"


@runtime_checkable
class BillingProviderClient(Protocol):
    """Operations the entitlement core needs from the payment provider."""

    async def create_customer(self, email: str, name: str) -> CustomerRef:
        """Create a provider customer for a new tenant or user."""
        ...

    async def create_checkout_session(
        self,
        price_id: str,
        customer_ref: str,
        quantity: int,
        success_url: str,
        cancel_url: str,
        *,
        client_reference_id: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> CheckoutSession:
        """Create a hosted checkout page. Returns its URL."""
        ...

    async def update_subscription_quantity(self, subscription_ref: str, quantity: int) -> None:
        """Set the billed seat quantity. Raises UpstreamError on failure."""
        ...

    async def cancel_subscription(self, subscription_ref: str) -> None:
        """Cancel at the end of the current period."""
        ...

    async def get_subscription(self, subscription_ref: str) -> SubscriptionSnapshot:
        """Fetch the provider's current view of a subscription."""
        ...


class ProviderConfig(BaseModel):
    """Connection settings for the HTTP billing provider."""

    base_url: str = "https://api.stripe.com/v1"
    api_key: SecretStr | None = None
    timeout_seconds: float = Field(default=10.0, gt=0, le=120)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ProviderConfig":
        return cls(
            base_url=settings.billing_provider_base_url,
            api_key=settings.billing_provider_api_key,
            timeout_seconds=settings.billing_provider_timeout,
        )


def snapshot_from_stripe(data: dict[str, Any]) -> SubscriptionSnapshot:
    """Build a snapshot from a Stripe subscription object."""
    item = _first_item(data)
    return SubscriptionSnapshot(
        subscription_ref=str(data["id"]),
        customer_ref=_ref(data.get("customer")),
        status=str(data.get("status") or ""),
        quantity=item.get("quantity") or data.get("quantity"),
        item_ref=_ref(item.get("id")),
        price_id=(item.get("price") or {}).get("id"),
        current_period_start=_from_epoch(
            data.get("current_period_start") or item.get("current_period_start")
        ),
        current_period_end=_from_epoch(
            data.get("current_period_end") or item.get("current_period_end")
        ),
        cancel_at_period_end=bool(data.get("cancel_at_period_end")),
        metadata=dict(data.get("metadata") or {}),
    )


class StripeBillingProvider:
    """HTTP billing provider client over httpx.

    Usage:
        async with StripeBillingProvider(ProviderConfig.from_settings(settings)) as billing:
            await billing.update_subscription_quantity("sub_123", 3)
    """

    def __init__(
        self,
        config: ProviderConfig | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config or ProviderConfig()
        headers = {}
        if self._config.api_key is not None:
            headers["Authorization"] = f"Bearer {self._config.api_key.get_secret_value()}"
        self._client = client or httpx.AsyncClient(
            base_url=self._config.base_url,
            headers=headers,
            timeout=httpx.Timeout(self._config.timeout_seconds),
        )

    async def __aenter__(self) -> "StripeBillingProvider":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def create_customer(self, email: str, name: str) -> CustomerRef:
        data = await self._request(
            "create_customer", "POST", "/customers", data={"email": email, "name": name}
        )
        return CustomerRef(customer_ref=str(data["id"]), email=email)

    async def create_checkout_session(
        self,
        price_id: str,
        customer_ref: str,
        quantity: int,
        success_url: str,
        cancel_url: str,
        *,
        client_reference_id: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> CheckoutSession:
        form: dict[str, Any] = {
            "mode": "subscription",
            "customer": customer_ref,
            "line_items[0][price]": price_id,
            "line_items[0][quantity]": quantity,
            "success_url": success_url,
            "cancel_url": cancel_url,
        }
        if client_reference_id:
            form["client_reference_id"] = client_reference_id
        for key, value in (metadata or {}).items():
            # Echoed back on the subscription events for first-time linkage
            form[f"metadata[{key}]"] = value
            form[f"subscription_data[metadata][{key}]"] = value

        data = await self._request(
            "create_checkout_session", "POST", "/checkout/sessions", data=form
        )
        return CheckoutSession(session_ref=str(data["id"]), url=str(data["url"]))

    async def update_subscription_quantity(self, subscription_ref: str, quantity: int) -> None:
        snapshot = await self.get_subscription(subscription_ref)
        if snapshot.item_ref is None:
            raise UpstreamRejectedError(
                f"Subscription {subscription_ref} has no line item",
                service=SERVICE,
                operation="update_subscription_quantity",
            )
        increase = snapshot.quantity is None or quantity > snapshot.quantity
        await self._request(
            "update_subscription_quantity",
            "POST",
            f"/subscriptions/{subscription_ref}",
            data={
                "items[0][id]": snapshot.item_ref,
                "items[0][quantity]": quantity,
                "proration_behavior": "always_invoice" if increase else "create_prorations",
            },
        )

    async def cancel_subscription(self, subscription_ref: str) -> None:
        await self._request(
            "cancel_subscription",
            "POST",
            f"/subscriptions/{subscription_ref}",
            data={"cancel_at_period_end": "true"},
        )

    @retry(
        retry=retry_if_exception_type(UpstreamTimeoutError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        reraise=True,
    )
    async def get_subscription(self, subscription_ref: str) -> SubscriptionSnapshot:
        data = await self._request("get_subscription", "GET", f"/subscriptions/{subscription_ref}")
        return snapshot_from_stripe(data)

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        start = time.perf_counter()
        with observe_provider_call(SERVICE, operation) as call:
            try:
                response = await self._client.request(method, path, data=data)
                response.raise_for_status()
            except httpx.TimeoutException as exc:
                call["status"] = "timeout"
                self._log(operation, start, success=False, error="timeout")
                raise UpstreamTimeoutError(
                    f"Billing provider timed out after {self._config.timeout_seconds}s",
                    service=SERVICE,
                    operation=operation,
                ) from exc
            except httpx.HTTPStatusError as exc:
                call["status"] = "rejected"
                self._log(operation, start, success=False, status_code=exc.response.status_code)
                raise UpstreamRejectedError(
                    f"Billing provider returned {exc.response.status_code}",
                    service=SERVICE,
                    operation=operation,
                    status_code=exc.response.status_code,
                ) from exc
            except httpx.HTTPError as exc:
                call["status"] = "rejected"
                self._log(operation, start, success=False, error=type(exc).__name__)
                raise UpstreamRejectedError(
                    f"Billing provider unreachable: {exc}",
                    service=SERVICE,
                    operation=operation,
                ) from exc

        self._log(operation, start, success=True, status_code=response.status_code)
        return response.json()

    def _log(self, operation: str, start: float, *, success: bool, **kwargs: Any) -> None:
        log_external_call(
            logger,
            service=SERVICE,
            operation=operation,
            duration_ms=(time.perf_counter() - start) * 1000,
            success=success,
            **kwargs,
        )


class MockBillingProvider:
    """In-memory billing provider for tests and local development.

    Every call is recorded in ``calls``. ``fail(operation)`` makes the
    next calls to that operation raise until ``recover`` is called.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.quantity_updates: list[tuple[str, int]] = []
        self.cancelled: list[str] = []
        self.subscriptions: dict[str, SubscriptionSnapshot] = {}
        self._failures: dict[str, UpstreamError] = {}
        self._counter = 0

    def fail(self, operation: str, error: UpstreamError | None = None) -> None:
        """Make ``operation`` raise ``error`` (a rejection by default)."""
        self._failures[operation] = error or UpstreamRejectedError(
            "Mock provider failure", service=SERVICE, operation=operation, status_code=402
        )

    def recover(self, operation: str | None = None) -> None:
        if operation is None:
            self._failures.clear()
        else:
            self._failures.pop(operation, None)

    def add_subscription(self, snapshot: SubscriptionSnapshot) -> None:
        self.subscriptions[snapshot.subscription_ref] = snapshot

    def _record(self, operation: str, *args: Any) -> None:
        self.calls.append((operation, args))
        if operation in self._failures:
            raise self._failures[operation]

    def _next_id(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}_mock_{self._counter}"

    async def create_customer(self, email: str, name: str) -> CustomerRef:
        self._record("create_customer", email, name)
        return CustomerRef(customer_ref=self._next_id("cus"), email=email)

    async def create_checkout_session(
        self,
        price_id: str,
        customer_ref: str,
        quantity: int,
        success_url: str,
        cancel_url: str,
        *,
        client_reference_id: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> CheckoutSession:
        self._record("create_checkout_session", price_id, customer_ref, quantity)
        session_ref = self._next_id("cs")
        return CheckoutSession(
            session_ref=session_ref, url=f"https://checkout.example.com/{session_ref}"
        )

    async def update_subscription_quantity(self, subscription_ref: str, quantity: int) -> None:
        self._record("update_subscription_quantity", subscription_ref, quantity)
        self.quantity_updates.append((subscription_ref, quantity))
        if subscription_ref in self.subscriptions:
            self.subscriptions[subscription_ref].quantity = quantity

    async def cancel_subscription(self, subscription_ref: str) -> None:
        self._record("cancel_subscription", subscription_ref)
        self.cancelled.append(subscription_ref)
        if subscription_ref in self.subscriptions:
            self.subscriptions[subscription_ref].cancel_at_period_end = True

    async def get_subscription(self, subscription_ref: str) -> SubscriptionSnapshot:
        self._record("get_subscription", subscription_ref)
        snapshot = self.subscriptions.get(subscription_ref)
        if snapshot is None:
            raise UpstreamRejectedError(
                f"No such subscription: {subscription_ref}",
                service=SERVICE,
                operation="get_subscription",
                status_code=404,
            )
        return snapshot


def create_billing_provider(settings: Settings) -> BillingProviderClient:
    """Build the configured provider; the mock when no API key is set outside production."""
    if settings.billing_provider_api_key is None and settings.ENVIRONMENT != "production":
        logger.warning("billing_provider_mock_in_use", environment=settings.ENVIRONMENT)
        return MockBillingProvider()
    return StripeBillingProvider(ProviderConfig.from_settings(settings))
