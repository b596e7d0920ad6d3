"""Integration tests for the billing webhook and sync endpoints."""

import json
import time

import pytest
from httpx import AsyncClient

from entitle.billing import BillingEventReconciler
from entitle.billing.events import SubscriptionSnapshot
from entitle.billing.webhooks import compute_signature
from entitle.core.exceptions import ConcurrentUpdateError
from entitle.db.models import Subscription, SubscriptionStatus, Tenant, TenantStatus, UserRole

pytestmark = pytest.mark.integration

WEBHOOK_URL = "/v1/billing/webhook"
WEBHOOK_SECRET = "whsec_test_secret"


def signed(payload: dict, secret: str = WEBHOOK_SECRET) -> tuple[bytes, dict[str, str]]:
    body = json.dumps(payload).encode()
    timestamp = int(time.time())
    signature = compute_signature(secret, f"{timestamp}.".encode() + body)
    return body, {
        "Stripe-Signature": f"t={timestamp},v1={signature}",
        "Content-Type": "application/json",
    }


def subscription_event(ref: str, status: str, event_id: str = "evt_1") -> dict:
    return {
        "id": event_id,
        "type": "customer.subscription.updated",
        "created": int(time.time()),
        "data": {"object": {"id": ref, "customer": "cus_1", "status": status}},
    }


class TestWebhookVerification:
    """Tests for webhook authentication and parsing failures."""

    async def test_bad_signature_returns_401(self, test_client: AsyncClient):
        """Test deliveries signed with another secret are rejected."""
        body, headers = signed(subscription_event("sub_1", "active"), secret="whsec_other")

        response = await test_client.post(WEBHOOK_URL, content=body, headers=headers)

        assert response.status_code == 401
        assert response.json()["detail"]["error_code"] == "invalid_signature"

    async def test_missing_signature_returns_401(self, test_client: AsyncClient):
        """Test unsigned deliveries are rejected."""
        response = await test_client.post(WEBHOOK_URL, content=b"{}")

        assert response.status_code == 401

    async def test_malformed_json_returns_400(self, test_client: AsyncClient):
        """Test a correctly signed body that is not JSON is malformed."""
        body = b"not json"
        timestamp = int(time.time())
        signature = compute_signature(WEBHOOK_SECRET, f"{timestamp}.".encode() + body)

        response = await test_client.post(
            WEBHOOK_URL,
            content=body,
            headers={"Stripe-Signature": f"t={timestamp},v1={signature}"},
        )

        assert response.status_code == 400
        assert response.json()["detail"]["error_code"] == "invalid_payload"

    @pytest.mark.parametrize(
        "payload",
        [
            {"type": ["customer.subscription.updated"]},
            {"type": "customer.subscription.updated", "data": "sub_1"},
        ],
    )
    async def test_mistyped_fields_return_400(self, test_client: AsyncClient, payload):
        """Test a signed JSON object with wrongly typed fields is malformed."""
        body, headers = signed(payload)

        response = await test_client.post(WEBHOOK_URL, content=body, headers=headers)

        assert response.status_code == 400
        assert response.json()["detail"]["error_code"] == "invalid_payload"

    async def test_missing_secret_returns_503(self, test_app, test_client: AsyncClient):
        """Test the endpoint refuses to run unverified."""
        test_app.state.settings = test_app.state.settings.model_copy(
            update={"billing_webhook_secret": None}
        )
        body, headers = signed(subscription_event("sub_1", "active"))

        response = await test_client.post(WEBHOOK_URL, content=body, headers=headers)

        assert response.status_code == 503


class TestWebhookReconciliation:
    """Tests for acknowledged deliveries."""

    async def test_status_change_applied(self, test_client: AsyncClient, factory, reload):
        """Test a lapse suspends the tenant."""
        tenant = await factory.tenant()
        subscription = await factory.subscription(tenant=tenant, subscription_ref="sub_live")
        body, headers = signed(subscription_event("sub_live", "unpaid"))

        response = await test_client.post(WEBHOOK_URL, content=body, headers=headers)

        assert response.status_code == 200
        data = response.json()
        assert data == {
            "received": True,
            "outcome": "applied",
            "subscription_id": str(subscription.subscription_id),
        }
        stored = await reload(Subscription, subscription.subscription_id)
        assert stored.status == SubscriptionStatus.UNPAID.value
        assert (await reload(Tenant, tenant.tenant_id)).status == TenantStatus.INACTIVE.value

    async def test_redelivery_is_duplicate(self, test_client: AsyncClient, factory):
        """Test the same delivery twice changes state once."""
        await factory.subscription(tenant=await factory.tenant(), subscription_ref="sub_live")
        body, headers = signed(subscription_event("sub_live", "past_due"))

        first = await test_client.post(WEBHOOK_URL, content=body, headers=headers)
        second = await test_client.post(WEBHOOK_URL, content=body, headers=headers)

        assert first.json()["outcome"] == "applied"
        assert second.json()["outcome"] == "duplicate"

    async def test_unknown_reference_acknowledged(self, test_client: AsyncClient):
        """Test events for unknown subscriptions are acknowledged, not retried."""
        body, headers = signed(subscription_event("sub_nowhere", "active"))

        response = await test_client.post(WEBHOOK_URL, content=body, headers=headers)

        assert response.status_code == 200
        assert response.json()["outcome"] == "unresolvable"

    async def test_unhandled_type_ignored(self, test_client: AsyncClient):
        """Test event types outside the lifecycle are ignored."""
        body, headers = signed({"type": "customer.created", "data": {"object": {}}})

        response = await test_client.post(WEBHOOK_URL, content=body, headers=headers)

        assert response.status_code == 200
        assert response.json()["outcome"] == "ignored"

    async def test_contention_returns_503(self, test_client: AsyncClient, factory, monkeypatch):
        """Test an event that kept losing concurrent writes is left for redelivery."""
        await factory.subscription(tenant=await factory.tenant(), subscription_ref="sub_live")

        async def contended(self, event):
            raise ConcurrentUpdateError("busy", resource="subscriptions", identifier="sub_live")

        monkeypatch.setattr(BillingEventReconciler, "apply_event", contended)
        body, headers = signed(subscription_event("sub_live", "past_due"))

        response = await test_client.post(WEBHOOK_URL, content=body, headers=headers)

        assert response.status_code == 503
        assert response.json()["detail"]["error_code"] == "service_unavailable"

    async def test_checkout_links_tenant(self, test_client: AsyncClient, factory, reload):
        """Test a completed checkout creates and binds the tenant subscription."""
        tenant = await factory.tenant()
        await factory.user("admin@acme.test", tenant=tenant)
        body, headers = signed(
            {
                "id": "evt_checkout",
                "type": "checkout.session.completed",
                "data": {
                    "object": {
                        "subscription": "sub_new",
                        "customer": tenant.billing_customer_ref,
                        "client_reference_id": str(tenant.tenant_id),
                        "metadata": {"plan": "pro"},
                    }
                },
            }
        )

        response = await test_client.post(WEBHOOK_URL, content=body, headers=headers)

        assert response.json()["outcome"] == "applied"
        stored = await reload(Tenant, tenant.tenant_id)
        assert stored.status == TenantStatus.ACTIVE.value
        assert stored.plan == "pro"
        assert stored.billing_subscription_ref == "sub_new"


class TestSyncEndpoint:
    """Tests for POST /v1/billing/sync."""

    async def test_requires_api_key(self, test_client: AsyncClient, factory, auth_headers):
        """Test users cannot trigger a sync."""
        user = await factory.user("admin@acme.test")

        response = await test_client.post("/v1/billing/sync", headers=auth_headers(user))

        assert response.status_code == 401

    async def test_sync_one(self, service_client: AsyncClient, factory, billing_provider):
        """Test a single subscription is pulled from the provider."""
        owner = await factory.user("o@example.com")
        await factory.subscription(user=owner, subscription_ref="sub_a")
        billing_provider.add_subscription(SubscriptionSnapshot("sub_a", "cus_1", "past_due"))

        response = await service_client.post(
            "/v1/billing/sync", params={"subscription_ref": "sub_a"}
        )

        assert response.status_code == 200
        assert response.json() == {"checked": 1, "failed": 0, "outcomes": {"applied": 1}}

    async def test_sync_all(self, service_client: AsyncClient, factory, billing_provider):
        """Test a full pass reports provider failures."""
        owner = await factory.user("o@example.com")
        await factory.subscription(user=owner, subscription_ref="sub_a")

        response = await service_client.post("/v1/billing/sync")

        assert response.json() == {"checked": 1, "failed": 1, "outcomes": {}}


class TestCheckoutEndpoint:
    """Tests for POST /v1/billing/checkout."""

    async def test_checkout(
        self, test_client: AsyncClient, factory, auth_headers, billing_provider
    ):
        """Test admins get a hosted checkout for their tenant."""
        tenant = await factory.tenant(customer_ref="cus_acme")
        user = await factory.user("admin@acme.test", tenant=tenant)

        response = await test_client.post(
            "/v1/billing/checkout",
            json={"plan": "pro", "quantity": 3},
            headers=auth_headers(user),
        )

        assert response.status_code == 201
        data = response.json()
        assert data["url"] == f"https://checkout.example.com/{data['session_ref']}"
        operation, args = billing_provider.calls[-1]
        assert operation == "create_checkout_session"
        assert args[1:] == ("cus_acme", 3)

    async def test_unknown_plan(self, test_client: AsyncClient, factory, auth_headers):
        """Test plans outside the catalogue are rejected."""
        user = await factory.user("admin@acme.test")

        response = await test_client.post(
            "/v1/billing/checkout", json={"plan": "gold"}, headers=auth_headers(user)
        )

        assert response.status_code == 422
        assert response.json()["details"] == {"field": "plan"}

    async def test_members_cannot_buy(self, test_client: AsyncClient, factory, auth_headers):
        """Test only tenant admins start a checkout."""
        user = await factory.user("dev@acme.test", role=UserRole.MEMBER)

        response = await test_client.post(
            "/v1/billing/checkout", json={}, headers=auth_headers(user)
        )

        assert response.status_code == 403
