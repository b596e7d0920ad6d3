"""Authentication middleware for API keys and user session tokens."""

import re
import secrets
from datetime import UTC, datetime
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from entitle.api.schemas.errors import APIError, ErrorCode
from entitle.config.settings import Settings, get_settings
from entitle.core.context import ActorType
from entitle.core.exceptions import AuthenticationError
from entitle.core.security import decode_access_token

# Paths that don't require authentication
SKIP_AUTH_PATHS = {
    "/health",
    "/health/db",
    "/health/ready",
    "/metrics",
    "/docs",
    "/redoc",
    "/openapi.json",
    "/v1/billing/webhook",  # HMAC signature instead
    "/v1/license/validate",  # the license key is the credential
    "/v1/license/status",
    "/v1/license/deactivate",
    "/v1/license/reset",
    "/v1/access/validate",
}

# Deliveries from the billing provider, authenticated by their signature
PROVIDER_PATHS = {"/v1/billing/webhook"}

# Paths that start with these prefixes don't require auth
SKIP_AUTH_PREFIXES = (
    "/docs",
    "/redoc",
    "/v1/auth/",
)

_BEARER = re.compile(r"^Bearer\s+(.+)$", re.IGNORECASE)


class AuthenticationMiddleware(BaseHTTPMiddleware):
    """Middleware that validates Bearer token authentication.

    Two kinds of bearer are accepted: the service API key, which makes
    the caller a SERVICE actor, and a user session token, which makes it
    a USER actor. Public paths pass through as SYSTEM.

    Sets:
        request.state.actor_id: User id for USER actors, None otherwise
        request.state.actor_type: ActorType of the caller
        request.state.tenant_id: The user's tenant for USER actors
    """

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        """Process request and validate authentication."""
        request.state.actor_id = None
        request.state.tenant_id = None
        request.state.actor_type = (
            ActorType.PROVIDER if request.url.path in PROVIDER_PATHS else ActorType.SYSTEM
        )

        if self._should_skip_auth(request.url.path):
            # A session token on a public path is still honored
            self._try_authenticate(request)
            return await call_next(request)

        auth_header = request.headers.get("Authorization")
        if not auth_header:
            return self._unauthorized_response("Missing Authorization header")
        if not _BEARER.match(auth_header):
            return self._unauthorized_response("Invalid Authorization header format")
        if not self._try_authenticate(request):
            return self._unauthorized_response("Invalid or expired credentials")

        return await call_next(request)

    def _should_skip_auth(self, path: str) -> bool:
        """Check if path should skip authentication."""
        return path in SKIP_AUTH_PATHS or path.startswith(SKIP_AUTH_PREFIXES)

    def _try_authenticate(self, request: Request) -> bool:
        """Resolve the bearer token onto request state. Returns False if it is invalid."""
        match = _BEARER.match(request.headers.get("Authorization", ""))
        if not match:
            return False
        token = match.group(1).strip()
        settings = self._settings(request)

        if self._is_api_key(token, settings):
            request.state.actor_type = ActorType.SERVICE
            return True

        try:
            claims = decode_access_token(token, settings)
        except AuthenticationError:
            return False
        request.state.actor_id = claims["sub"]
        request.state.tenant_id = claims.get("tenant_id")
        request.state.actor_type = ActorType.USER
        return True

    def _is_api_key(self, token: str, settings: Settings) -> bool:
        if settings.API_SECRET_KEY is None:
            return False
        return secrets.compare_digest(token, settings.API_SECRET_KEY.get_secret_value())

    def _settings(self, request: Request) -> Settings:
        if hasattr(request.app.state, "settings"):
            return request.app.state.settings
        return get_settings()

    def _unauthorized_response(self, message: str) -> JSONResponse:
        """Create a 401 unauthorized response."""
        error = APIError(
            error_code=ErrorCode.UNAUTHORIZED.value,
            message=message,
            details=None,
            request_id="unknown",  # Request ID not yet assigned
            timestamp=datetime.now(UTC),
        )

        return JSONResponse(
            status_code=401,
            content=error.model_dump(mode="json"),
            headers={"WWW-Authenticate": "Bearer"},
        )
