"""Integration tests for desktop license endpoints."""

import pytest
from httpx import AsyncClient

from entitle.db.models import SubscriptionStatus, UserStatus

pytestmark = pytest.mark.integration


async def license_key(factory, *, status=SubscriptionStatus.ACTIVE, user_status=UserStatus.ACTIVE):
    user = await factory.user("ada@example.com", status=user_status)
    subscription = await factory.subscription(
        user=user, status=status, seat_email="ada@example.com"
    )
    (seat,) = await factory.seats(subscription)
    return seat.license_key


class TestValidate:
    """Tests for POST /v1/license/validate."""

    async def test_activate(self, test_client: AsyncClient, factory):
        """Test a key activates without any other credential."""
        key = await license_key(factory)

        response = await test_client.post(
            "/v1/license/validate", json={"license_key": key, "machine_id": "machine-a"}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["valid"] is True
        assert data["status"] == "active"
        assert data["activated_at"] is not None
        assert data["plan"] == "basic"
        assert data["subscription_status"] == "active"
        assert data["user_email"] == "ada@example.com"

    async def test_same_machine_again(self, test_client: AsyncClient, factory):
        """Test re-validating on the bound machine succeeds."""
        key = await license_key(factory)
        body = {"license_key": key, "machine_id": "machine-a"}

        await test_client.post("/v1/license/validate", json=body)
        response = await test_client.post("/v1/license/validate", json=body)

        assert response.status_code == 200

    async def test_other_machine_conflicts(self, test_client: AsyncClient, factory):
        """Test a bound key cannot move without a reset."""
        key = await license_key(factory)
        await test_client.post(
            "/v1/license/validate", json={"license_key": key, "machine_id": "machine-a"}
        )

        response = await test_client.post(
            "/v1/license/validate", json={"license_key": key, "machine_id": "machine-b"}
        )

        assert response.status_code == 409

    async def test_unknown_key(self, test_client: AsyncClient):
        """Test unknown keys are not found."""
        response = await test_client.post(
            "/v1/license/validate", json={"license_key": "BC-NOPE", "machine_id": "machine-a"}
        )

        assert response.status_code == 404

    async def test_lapsed_subscription(self, test_client: AsyncClient, factory):
        """Test keys of lapsed subscriptions are not found."""
        key = await license_key(factory, status=SubscriptionStatus.CANCELLED)

        response = await test_client.post(
            "/v1/license/validate", json={"license_key": key, "machine_id": "machine-a"}
        )

        assert response.status_code == 404

    async def test_suspended_holder(self, test_client: AsyncClient, factory):
        """Test suspended holders are told why."""
        key = await license_key(factory, user_status=UserStatus.INACTIVE)

        response = await test_client.post(
            "/v1/license/validate", json={"license_key": key, "machine_id": "machine-a"}
        )

        assert response.status_code == 403
        assert response.json()["details"] == {"reason": "account_suspended"}

    async def test_blank_machine(self, test_client: AsyncClient):
        """Test request validation rejects an empty machine id."""
        response = await test_client.post(
            "/v1/license/validate", json={"license_key": "BC-1", "machine_id": ""}
        )

        assert response.status_code == 422


class TestStatus:
    """Tests for GET /v1/license/status."""

    async def test_status_granted(self, test_client: AsyncClient, factory):
        """Test a bound key reports its plan."""
        key = await license_key(factory)
        await test_client.post(
            "/v1/license/validate", json={"license_key": key, "machine_id": "machine-a"}
        )

        response = await test_client.get(
            "/v1/license/status", params={"license_key": key, "machine_id": "machine-a"}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["plan"] == "basic"
        assert data["subscription_status"] == "active"

    async def test_status_other_machine(self, test_client: AsyncClient, factory):
        """Test keys not bound to the asking machine are not found."""
        key = await license_key(factory)

        response = await test_client.get(
            "/v1/license/status", params={"license_key": key, "machine_id": "machine-z"}
        )

        assert response.status_code == 404


class TestDeactivateAndReset:
    """Tests for releasing machine bindings."""

    async def test_deactivate_then_move(self, test_client: AsyncClient, factory):
        """Test a released key activates elsewhere."""
        key = await license_key(factory)
        await test_client.post(
            "/v1/license/validate", json={"license_key": key, "machine_id": "machine-a"}
        )

        released = await test_client.post(
            "/v1/license/deactivate", json={"license_key": key, "machine_id": "machine-a"}
        )
        moved = await test_client.post(
            "/v1/license/validate", json={"license_key": key, "machine_id": "machine-b"}
        )

        assert released.status_code == 200
        assert released.json()["status"] == "unused"
        assert moved.status_code == 200

    async def test_self_reset(self, test_client: AsyncClient, factory):
        """Test the self-service reset clears the binding."""
        key = await license_key(factory)
        await test_client.post(
            "/v1/license/validate", json={"license_key": key, "machine_id": "machine-a"}
        )

        response = await test_client.post("/v1/license/reset", json={"license_key": key})

        assert response.status_code == 200
        assert response.json()["activated_at"] is None

    async def test_admin_reset_requires_api_key(self, test_client: AsyncClient, factory):
        """Test the administrative reset is closed to anonymous callers."""
        key = await license_key(factory)

        response = await test_client.post("/v1/license/admin/reset", json={"license_key": key})

        assert response.status_code == 401

    async def test_admin_reset_lapsed(self, service_client: AsyncClient, factory):
        """Test operators can reset keys of lapsed subscriptions."""
        key = await license_key(factory, status=SubscriptionStatus.PAST_DUE)

        response = await service_client.post(
            "/v1/license/admin/reset", json={"license_key": key}
        )

        assert response.status_code == 200
        assert response.json()["status"] == "unused"
