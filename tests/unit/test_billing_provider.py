"""Unit tests for the billing provider clients."""

from urllib.parse import parse_qs

import httpx
import pytest
from pydantic import SecretStr

from entitle.billing.events import SubscriptionSnapshot
from entitle.billing.provider import (
    MockBillingProvider,
    ProviderConfig,
    StripeBillingProvider,
    create_billing_provider,
    snapshot_from_stripe,
)
from entitle.config.settings import Settings
from entitle.core.exceptions import UpstreamRejectedError, UpstreamTimeoutError

SUBSCRIPTION = {
    "id": "sub_123",
    "customer": "cus_123",
    "status": "active",
    "cancel_at_period_end": False,
    "current_period_start": 1767225600,
    "current_period_end": 1769904000,
    "metadata": {"tenant_id": "not-a-uuid"},
    "items": {"data": [{"id": "si_1", "quantity": 2, "price": {"id": "price_pro"}}]},
}


class Recorder:
    """MockTransport handler that records requests and replays canned responses."""

    def __init__(self, *responses):
        self.requests: list[httpx.Request] = []
        self._responses = list(responses)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        if isinstance(response, Exception):
            raise response
        return response

    def form(self, index: int) -> dict[str, str]:
        body = parse_qs(self.requests[index].content.decode())
        return {key: values[0] for key, values in body.items()}


def provider_for(recorder: Recorder) -> StripeBillingProvider:
    client = httpx.AsyncClient(
        base_url="https://billing.test/v1", transport=httpx.MockTransport(recorder)
    )
    return StripeBillingProvider(
        ProviderConfig(base_url="https://billing.test/v1", api_key=SecretStr("sk_test")),
        client=client,
    )


class TestStripeBillingProvider:
    """Tests for StripeBillingProvider."""

    async def test_create_customer(self):
        """Test customers are created with a form post."""
        recorder = Recorder(httpx.Response(200, json={"id": "cus_9"}))
        provider = provider_for(recorder)

        customer = await provider.create_customer("ada@example.com", "Ada Lovelace")

        assert customer.customer_ref == "cus_9"
        assert recorder.requests[0].method == "POST"
        assert recorder.requests[0].url.path == "/v1/customers"
        assert recorder.form(0) == {"email": "ada@example.com", "name": "Ada Lovelace"}

    async def test_checkout_session(self):
        """Test checkout carries the correlation metadata."""
        recorder = Recorder(
            httpx.Response(200, json={"id": "cs_1", "url": "https://pay.test/cs_1"})
        )
        provider = provider_for(recorder)

        session = await provider.create_checkout_session(
            "price_pro",
            "cus_1",
            3,
            "https://app.test/ok",
            "https://app.test/cancel",
            client_reference_id="tenant-1",
            metadata={"plan": "pro"},
        )

        assert session.url == "https://pay.test/cs_1"
        form = recorder.form(0)
        assert form["line_items[0][quantity]"] == "3"
        assert form["client_reference_id"] == "tenant-1"
        assert form["subscription_data[metadata][plan]"] == "pro"

    async def test_quantity_increase_invoices_now(self):
        """Test raising the quantity reads the line item then prorates immediately."""
        recorder = Recorder(
            httpx.Response(200, json=SUBSCRIPTION),
            httpx.Response(200, json={"id": "sub_123"}),
        )
        provider = provider_for(recorder)

        await provider.update_subscription_quantity("sub_123", 3)

        assert [r.method for r in recorder.requests] == ["GET", "POST"]
        assert recorder.form(1) == {
            "items[0][id]": "si_1",
            "items[0][quantity]": "3",
            "proration_behavior": "always_invoice",
        }

    async def test_quantity_decrease_credits_later(self):
        """Test lowering the quantity leaves the credit for the next invoice."""
        recorder = Recorder(
            httpx.Response(200, json=SUBSCRIPTION),
            httpx.Response(200, json={"id": "sub_123"}),
        )
        provider = provider_for(recorder)

        await provider.update_subscription_quantity("sub_123", 1)

        assert recorder.form(1)["proration_behavior"] == "create_prorations"

    async def test_quantity_without_line_item(self):
        """Test subscriptions without an item cannot be resized."""
        recorder = Recorder(httpx.Response(200, json={"id": "sub_123", "status": "active"}))
        provider = provider_for(recorder)

        with pytest.raises(UpstreamRejectedError):
            await provider.update_subscription_quantity("sub_123", 2)
        assert len(recorder.requests) == 1

    async def test_cancel_at_period_end(self):
        """Test cancellation keeps the subscription until period end."""
        recorder = Recorder(httpx.Response(200, json={"id": "sub_123"}))
        provider = provider_for(recorder)

        await provider.cancel_subscription("sub_123")

        assert recorder.requests[0].url.path == "/v1/subscriptions/sub_123"
        assert recorder.form(0) == {"cancel_at_period_end": "true"}

    async def test_rejection(self):
        """Test non-2xx answers surface with their status code."""
        recorder = Recorder(httpx.Response(402, json={"error": {"message": "card declined"}}))
        provider = provider_for(recorder)

        with pytest.raises(UpstreamRejectedError) as exc_info:
            await provider.cancel_subscription("sub_123")
        assert exc_info.value.status_code == 402

    async def test_write_timeout_is_not_retried(self):
        """Test writes are attempted once."""
        recorder = Recorder(httpx.ReadTimeout("slow"))
        provider = provider_for(recorder)

        with pytest.raises(UpstreamTimeoutError):
            await provider.cancel_subscription("sub_123")
        assert len(recorder.requests) == 1

    async def test_read_timeout_is_retried(self):
        """Test reads are retried before giving up."""
        recorder = Recorder(
            httpx.ReadTimeout("slow"),
            httpx.Response(200, json=SUBSCRIPTION),
        )
        provider = provider_for(recorder)

        snapshot = await provider.get_subscription("sub_123")

        assert snapshot.quantity == 2
        assert len(recorder.requests) == 2

    async def test_authorization_header(self):
        """Test the API key is sent as a bearer token."""
        provider = StripeBillingProvider(ProviderConfig(api_key=SecretStr("sk_test")))
        try:
            assert provider._client.headers["Authorization"] == "Bearer sk_test"
        finally:
            await provider.aclose()


class TestSnapshotFromStripe:
    """Tests for snapshot_from_stripe."""

    def test_snapshot_fields(self):
        """Test a subscription object maps onto a snapshot."""
        snapshot = snapshot_from_stripe(SUBSCRIPTION)

        assert snapshot.subscription_ref == "sub_123"
        assert snapshot.customer_ref == "cus_123"
        assert snapshot.item_ref == "si_1"
        assert snapshot.price_id == "price_pro"
        assert snapshot.current_period_end.year == 2026

    def test_snapshot_event(self):
        """Test a snapshot becomes a synthetic update event."""
        event = snapshot_from_stripe(SUBSCRIPTION).to_event()

        assert event.event_id is None
        assert event.quantity == 2
        assert event.correlation.tenant_id is None


class TestMockBillingProvider:
    """Tests for MockBillingProvider."""

    async def test_fail_and_recover(self):
        """Test injected failures last until recovered."""
        provider = MockBillingProvider()
        provider.fail("update_subscription_quantity")

        with pytest.raises(UpstreamRejectedError):
            await provider.update_subscription_quantity("sub_1", 2)
        assert provider.quantity_updates == []

        provider.recover()
        await provider.update_subscription_quantity("sub_1", 2)
        assert provider.quantity_updates == [("sub_1", 2)]

    async def test_tracks_known_subscriptions(self):
        """Test quantity and cancel calls update registered snapshots."""
        provider = MockBillingProvider()
        provider.add_subscription(SubscriptionSnapshot("sub_1", "cus_1", "active", quantity=1))

        await provider.update_subscription_quantity("sub_1", 4)
        await provider.cancel_subscription("sub_1")

        snapshot = await provider.get_subscription("sub_1")
        assert snapshot.quantity == 4
        assert snapshot.cancel_at_period_end is True

    async def test_unknown_subscription(self):
        """Test unknown subscriptions are rejected like a provider 404."""
        with pytest.raises(UpstreamRejectedError) as exc_info:
            await MockBillingProvider().get_subscription("sub_missing")
        assert exc_info.value.status_code == 404


class TestCreateBillingProvider:
    """Tests for create_billing_provider."""

    def test_mock_without_api_key(self):
        """Test local runs without a key get the mock."""
        assert isinstance(create_billing_provider(Settings()), MockBillingProvider)

    async def test_http_with_api_key(self):
        """Test a configured key selects the HTTP client."""
        provider = create_billing_provider(
            Settings(billing_provider_api_key=SecretStr("sk_live"))
        )
        assert isinstance(provider, StripeBillingProvider)
        await provider.aclose()
