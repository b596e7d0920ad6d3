"""Unit tests for API middleware components."""

from unittest.mock import AsyncMock, MagicMock
from uuid import UUID, uuid4

import pytest
from fastapi import Request, Response
from pydantic import SecretStr
from sqlalchemy.exc import OperationalError

from entitle.api.middleware.auth import SKIP_AUTH_PATHS, AuthenticationMiddleware
from entitle.api.middleware.context import RequestContextMiddleware
from entitle.api.middleware.errors import EXCEPTION_MAP, ErrorHandlingMiddleware, map_exception
from entitle.api.middleware.observability import ObservabilityMiddleware
from entitle.config.settings import Settings
from entitle.core.context import ActorType
from entitle.core.exceptions import (
    AccessDeniedError,
    AuthenticationError,
    ConflictError,
    DuplicateError,
    NotFoundError,
    UpstreamError,
    UpstreamRejectedError,
    UpstreamTimeoutError,
    ValidationError,
)
from entitle.core.security import create_access_token


@pytest.fixture
def settings():
    return Settings(
        API_SECRET_KEY=SecretStr("service-key"), JWT_SECRET_KEY=SecretStr("jwt-secret")
    )


def mock_request(path: str, headers: dict | None = None, settings: Settings | None = None):
    request = MagicMock(spec=Request)
    request.url.path = path
    request.headers = headers or {}
    request.state = MagicMock()
    request.app.state.settings = settings
    return request


class TestAuthenticationMiddleware:
    """Tests for AuthenticationMiddleware."""

    def test_skip_auth_paths_defined(self):
        """Verify health and credential-bearing endpoints skip authentication."""
        expected_paths = {"/health", "/health/db", "/v1/billing/webhook", "/v1/license/validate"}
        assert expected_paths.issubset(SKIP_AUTH_PATHS)

    async def test_missing_auth_header_returns_401(self):
        """Test that missing Authorization header returns 401."""
        middleware = AuthenticationMiddleware(app=MagicMock())
        request = mock_request("/v1/seats")
        call_next = AsyncMock()

        response = await middleware.dispatch(request, call_next)

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"
        call_next.assert_not_called()

    async def test_invalid_auth_format_returns_401(self, settings):
        """Test that invalid Authorization format returns 401."""
        middleware = AuthenticationMiddleware(app=MagicMock())
        request = mock_request("/v1/seats", {"Authorization": "Basic abc"}, settings)
        call_next = AsyncMock()

        response = await middleware.dispatch(request, call_next)

        assert response.status_code == 401
        call_next.assert_not_called()

    async def test_api_key_sets_service_actor(self, settings):
        """Test the service API key authenticates as a SERVICE actor."""
        middleware = AuthenticationMiddleware(app=MagicMock())
        request = mock_request(
            "/v1/seats", {"Authorization": "Bearer service-key"}, settings
        )
        call_next = AsyncMock(return_value=Response(status_code=200))

        response = await middleware.dispatch(request, call_next)

        assert response.status_code == 200
        assert request.state.actor_type == ActorType.SERVICE
        assert request.state.actor_id is None

    async def test_session_token_sets_user_actor(self, settings):
        """Test a session token authenticates as its user."""
        user_id, tenant_id = uuid4(), uuid4()
        token = create_access_token(user_id, tenant_id, "admin", settings)
        middleware = AuthenticationMiddleware(app=MagicMock())
        request = mock_request("/v1/seats", {"Authorization": f"Bearer {token}"}, settings)
        call_next = AsyncMock(return_value=Response(status_code=200))

        await middleware.dispatch(request, call_next)

        assert request.state.actor_type == ActorType.USER
        assert request.state.actor_id == user_id
        assert request.state.tenant_id == tenant_id

    async def test_bad_token_returns_401(self, settings):
        """Test an unverifiable token is rejected."""
        middleware = AuthenticationMiddleware(app=MagicMock())
        request = mock_request("/v1/seats", {"Authorization": "Bearer forged"}, settings)
        call_next = AsyncMock()

        response = await middleware.dispatch(request, call_next)

        assert response.status_code == 401
        call_next.assert_not_called()

    async def test_skipped_path_sets_system_actor(self):
        """Test that skipped paths set SYSTEM actor type."""
        middleware = AuthenticationMiddleware(app=MagicMock())
        request = mock_request("/health")
        call_next = AsyncMock(return_value=Response(status_code=200))

        response = await middleware.dispatch(request, call_next)

        assert response.status_code == 200
        assert request.state.actor_type == ActorType.SYSTEM
        call_next.assert_called_once()

    async def test_webhook_sets_provider_actor(self):
        """Test billing webhook deliveries are attributed to the provider."""
        middleware = AuthenticationMiddleware(app=MagicMock())
        request = mock_request("/v1/billing/webhook")
        call_next = AsyncMock(return_value=Response(status_code=200))

        await middleware.dispatch(request, call_next)

        assert request.state.actor_type == ActorType.PROVIDER
        call_next.assert_called_once()

    async def test_auth_prefix_is_public(self):
        """Test login and registration need no credentials."""
        middleware = AuthenticationMiddleware(app=MagicMock())
        request = mock_request("/v1/auth/login")
        call_next = AsyncMock(return_value=Response(status_code=200))

        response = await middleware.dispatch(request, call_next)

        assert response.status_code == 200


class TestRequestContextMiddleware:
    """Tests for RequestContextMiddleware."""

    async def test_generates_request_id(self):
        """Test a request id is generated and echoed."""
        middleware = RequestContextMiddleware(app=MagicMock())
        request = mock_request("/v1/seats")
        request.state = MagicMock(spec=[])
        call_next = AsyncMock(return_value=Response(status_code=200))

        response = await middleware.dispatch(request, call_next)

        assert UUID(response.headers["X-Request-ID"]) == request.state.request_id

    async def test_keeps_incoming_request_id(self):
        """Test a caller-supplied UUID is kept."""
        incoming = uuid4()
        middleware = RequestContextMiddleware(app=MagicMock())
        request = mock_request("/v1/seats", {"X-Request-ID": str(incoming)})
        request.state = MagicMock(spec=[])
        call_next = AsyncMock(return_value=Response(status_code=200))

        response = await middleware.dispatch(request, call_next)

        assert response.headers["X-Request-ID"] == str(incoming)

    async def test_ignores_malformed_request_id(self):
        """Test a non-UUID request id is replaced."""
        middleware = RequestContextMiddleware(app=MagicMock())
        request = mock_request("/v1/seats", {"X-Request-ID": "abc"})
        request.state = MagicMock(spec=[])
        call_next = AsyncMock(return_value=Response(status_code=200))

        response = await middleware.dispatch(request, call_next)

        assert response.headers["X-Request-ID"] != "abc"


class TestErrorHandlingMiddleware:
    """Tests for ErrorHandlingMiddleware."""

    def test_subclasses_precede_bases(self):
        """Test every mapped exception comes before its base classes."""
        types = [exc_type for exc_type, *_ in EXCEPTION_MAP]
        for index, exc_type in enumerate(types):
            for later in types[index + 1 :]:
                assert not issubclass(later, exc_type) or later is exc_type

    @pytest.mark.parametrize(
        ("exc", "status_code", "error_code"),
        [
            (NotFoundError("missing", resource="seats"), 404, "not_found"),
            (ConflictError("busy", resource="seats"), 409, "conflict"),
            (DuplicateError("dup", resource="seats", field="license_key"), 409, "duplicate"),
            (ValidationError("bad", field="machine_identifier"), 422, "validation_error"),
            (AuthenticationError(), 401, "unauthorized"),
            (AccessDeniedError("no", reason="account_suspended"), 403, "forbidden"),
            (UpstreamTimeoutError("slow", "billing", "cancel"), 504, "upstream_timeout"),
            (UpstreamRejectedError("no", "billing", "cancel", 402), 502, "upstream_rejected"),
            (UpstreamError("down", "billing", "cancel"), 502, "upstream_error"),
            (OperationalError("select 1", {}, Exception("gone")), 503, "service_unavailable"),
            (RuntimeError("boom"), 500, "internal_error"),
        ],
    )
    def test_map_exception(self, exc, status_code, error_code):
        """Test domain exceptions map to stable status and error codes."""
        mapped_status, mapped_code, _message, _details = map_exception(exc)
        assert (mapped_status, mapped_code) == (status_code, error_code)

    def test_details_are_client_safe(self):
        """Test only stable attributes reach the client."""
        _, _, message, details = map_exception(
            AccessDeniedError("internal detail", reason="subscription_past_due")
        )
        assert message == "Not entitled to this action"
        assert details == {"reason": "subscription_past_due"}

    async def test_dispatch_converts_exception(self):
        """Test raised exceptions become JSON error responses."""
        middleware = ErrorHandlingMiddleware(app=MagicMock())
        request = mock_request("/v1/seats")
        request.state.request_id = "req-1"
        call_next = AsyncMock(side_effect=NotFoundError("missing", resource="seats"))

        response = await middleware.dispatch(request, call_next)

        assert response.status_code == 404
        assert response.headers["X-Request-ID"] == "req-1"

    async def test_dispatch_passes_through(self):
        """Test successful responses are untouched."""
        middleware = ErrorHandlingMiddleware(app=MagicMock())
        expected = Response(status_code=204)
        call_next = AsyncMock(return_value=expected)

        assert await middleware.dispatch(mock_request("/v1/seats"), call_next) is expected


class TestObservabilityMiddleware:
    """Tests for ObservabilityMiddleware."""

    @pytest.mark.parametrize(
        ("path", "normalized"),
        [
            ("/v1/seats", "/v1/seats"),
            (f"/v1/seats/{uuid4()}", "/v1/seats/{id}"),
            ("/v1/team/members/42/remove", "/v1/team/members/{id}/remove"),
        ],
    )
    def test_normalize_path(self, path, normalized):
        """Test ids are collapsed to bound metric cardinality."""
        assert ObservabilityMiddleware(app=MagicMock())._normalize_path(path) == normalized
