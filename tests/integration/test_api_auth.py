"""Integration tests for account and session endpoints."""

import pytest
from httpx import AsyncClient

from entitle.db.models import SubscriptionStatus, UserStatus
from entitle.identity import IdentityProfile

pytestmark = pytest.mark.integration

PASSWORD = "correct horse"


class TestRegisterAndLogin:
    """Tests for /v1/auth/register and /v1/auth/login."""

    async def test_register(self, test_client: AsyncClient, billing_provider):
        """Test registration returns a session for the new admin."""
        response = await test_client.post(
            "/v1/auth/register",
            json={
                "email": "ada@example.com",
                "password": "s3cret!",
                "first_name": "Ada",
                "last_name": "Lovelace",
            },
        )

        assert response.status_code == 201
        data = response.json()
        assert data["created"] is True
        assert data["token_type"] == "bearer"
        assert data["user"]["email"] == "ada@example.com"
        assert data["user"]["role"] == "admin"
        assert data["handoff_token"] is None
        assert billing_provider.calls[0][0] == "create_customer"

    async def test_register_duplicate(self, test_client: AsyncClient, factory):
        """Test an email registers once."""
        await factory.user("ada@example.com")

        response = await test_client.post(
            "/v1/auth/register",
            json={
                "email": "ada@example.com",
                "password": "s3cret!",
                "first_name": "Ada",
                "last_name": "Lovelace",
            },
        )

        assert response.status_code == 409
        assert response.json()["error_code"] == "duplicate"

    async def test_register_short_password(self, test_client: AsyncClient):
        """Test weak passwords are rejected with the offending field."""
        response = await test_client.post(
            "/v1/auth/register",
            json={"email": "a@b.test", "password": "123", "first_name": "A", "last_name": "B"},
        )

        assert response.status_code == 422
        assert response.json()["details"] == {"field": "password"}

    async def test_login(self, test_client: AsyncClient, factory):
        """Test password sign-in."""
        user = await factory.user("ada@example.com")

        response = await test_client.post(
            "/v1/auth/login", json={"email": "ada@example.com", "password": PASSWORD}
        )

        assert response.status_code == 200
        assert response.json()["user"]["user_id"] == str(user.user_id)

    async def test_login_wrong_password(self, test_client: AsyncClient, factory):
        """Test wrong passwords return 401."""
        await factory.user("ada@example.com")

        response = await test_client.post(
            "/v1/auth/login", json={"email": "ada@example.com", "password": "wrong-one"}
        )

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    async def test_login_suspended(self, test_client: AsyncClient, factory):
        """Test suspended accounts get 403 with the reason."""
        await factory.user("ada@example.com", status=UserStatus.INACTIVE)

        response = await test_client.post(
            "/v1/auth/login", json={"email": "ada@example.com", "password": PASSWORD}
        )

        assert response.status_code == 403
        assert response.json()["details"] == {"reason": "account_suspended"}


class TestMe:
    """Tests for GET /v1/auth/me."""

    async def test_requires_session(self, test_client: AsyncClient):
        """Test the endpoint needs a session token."""
        response = await test_client.get("/v1/auth/me")

        assert response.status_code == 401

    async def test_service_key_is_not_a_user(self, service_client: AsyncClient):
        """Test the API key does not stand in for a user."""
        response = await service_client.get("/v1/auth/me")

        assert response.status_code == 401

    async def test_dashboard_without_plan(self, test_client: AsyncClient, factory, auth_headers):
        """Test users without a plan reach the dashboard with billing blocked."""
        user = await factory.user("ada@example.com")

        response = await test_client.get("/v1/auth/me", headers=auth_headers(user))

        assert response.status_code == 200
        access = response.json()["access"]
        assert access["granted"] is True
        assert access["billing_blocked"] is True
        assert access["reason"] == "no_subscription_or_membership"

    async def test_dashboard_with_plan(self, test_client: AsyncClient, factory, auth_headers):
        """Test subscribers see their plan."""
        user = await factory.user("ada@example.com")
        await factory.subscription(user=user, plan="pro")

        response = await test_client.get("/v1/auth/me", headers=auth_headers(user))

        access = response.json()["access"]
        assert access["billing_blocked"] is False
        assert access["plan"] == "pro"
        assert access["role"] == "owner"


class TestDesktopHandoff:
    """Tests for the handoff endpoints."""

    async def test_login_for_desktop_and_redeem(self, test_client: AsyncClient, factory):
        """Test a desktop login mints a token that redeems once."""
        user = await factory.user("ada@example.com")
        await factory.subscription(user=user)

        login = await test_client.post(
            "/v1/auth/login",
            json={"email": "ada@example.com", "password": PASSWORD, "desktop": True},
        )
        token = login.json()["handoff_token"]
        assert token

        first = await test_client.post("/v1/auth/handoff/redeem", json={"token": token})
        second = await test_client.post("/v1/auth/handoff/redeem", json={"token": token})

        assert first.status_code == 200
        assert first.json()["user"]["user_id"] == str(user.user_id)
        assert second.status_code == 404

    async def test_redeem_lapsed(self, test_client: AsyncClient, factory, auth_headers):
        """Test lapsed subscribers cannot open the desktop app."""
        user = await factory.user("ada@example.com")
        await factory.subscription(user=user, status=SubscriptionStatus.PAST_DUE)

        minted = await test_client.post("/v1/auth/handoff", headers=auth_headers(user))
        assert minted.status_code == 201

        response = await test_client.post(
            "/v1/auth/handoff/redeem", json={"token": minted.json()["handoff_token"]}
        )

        assert response.status_code == 403
        assert response.json()["details"] == {"reason": "owner_subscription_past_due"}


class TestSSOCallback:
    """Tests for POST /v1/auth/sso/callback."""

    async def test_sso_first_login(self, test_client: AsyncClient, identity_provider):
        """Test a new identity signs in and is created."""
        identity_provider.register(
            "code-1", IdentityProfile("user_01", "grace@navy.test", "Grace", "Hopper")
        )

        response = await test_client.post("/v1/auth/sso/callback", json={"code": "code-1"})

        assert response.status_code == 200
        assert response.json()["created"] is True
        assert response.json()["user"]["name"] == "Grace Hopper"

    async def test_sso_rejected_code(self, test_client: AsyncClient):
        """Test provider rejections surface as 502."""
        response = await test_client.post("/v1/auth/sso/callback", json={"code": "bogus"})

        assert response.status_code == 502
        assert response.json()["error_code"] == "upstream_rejected"
