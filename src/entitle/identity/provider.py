"""Identity provider client for SSO logins.

The accounts service only needs one call: exchange the authorization
code from the SSO redirect for the user's profile. The HTTP client speaks
the WorkOS user-management API; the mock serves canned profiles.
"""

import time
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import httpx
import structlog

from entitle.config.settings import Settings
from entitle.core.exceptions import UpstreamRejectedError, UpstreamTimeoutError
from entitle.core.logging import log_external_call
from entitle.observability.metrics import observe_provider_call

logger = structlog.get_logger()

SERVICE = "identity"


@dataclass(frozen=True)
class IdentityProfile:
    """A user as the identity provider knows them."""

    provider_id: str
    email: str
    first_name: str = ""
    last_name: str = ""
    organization_ref: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def email_domain(self) -> str:
        return self.email.rsplit("@", 1)[-1].lower()


@runtime_checkable
class IdentityProviderClient(Protocol):
    async def exchange_code(self, code: str) -> IdentityProfile:
        """Trade an authorization code for the signed-in user's profile."""
        ...


class WorkOSIdentityProvider:
    """Identity provider client for WorkOS user management."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        *,
        base_url: str = "https://api.workos.com",
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._timeout_seconds = timeout_seconds
        self._client = client or httpx.AsyncClient(
            base_url=base_url, timeout=httpx.Timeout(timeout_seconds)
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "WorkOSIdentityProvider":
        return cls(
            client_id=settings.identity_client_id or "",
            client_secret=(
                settings.identity_client_secret.get_secret_value()
                if settings.identity_client_secret
                else ""
            ),
            base_url=settings.identity_provider_base_url,
            timeout_seconds=settings.identity_provider_timeout,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def exchange_code(self, code: str) -> IdentityProfile:
        operation = "exchange_code"
        start = time.perf_counter()
        with observe_provider_call(SERVICE, operation) as call:
            try:
                response = await self._client.post(
                    "/user_management/authenticate",
                    json={
                        "client_id": self._client_id,
                        "client_secret": self._client_secret,
                        "grant_type": "authorization_code",
                        "code": code,
                    },
                )
                response.raise_for_status()
            except httpx.TimeoutException as exc:
                call["status"] = "timeout"
                self._log(start, success=False, error="timeout")
                raise UpstreamTimeoutError(
                    f"Identity provider timed out after {self._timeout_seconds}s",
                    service=SERVICE,
                    operation=operation,
                ) from exc
            except httpx.HTTPStatusError as exc:
                call["status"] = "rejected"
                self._log(start, success=False, status_code=exc.response.status_code)
                raise UpstreamRejectedError(
                    f"Identity provider returned {exc.response.status_code}",
                    service=SERVICE,
                    operation=operation,
                    status_code=exc.response.status_code,
                ) from exc
            except httpx.HTTPError as exc:
                call["status"] = "rejected"
                self._log(start, success=False, error=type(exc).__name__)
                raise UpstreamRejectedError(
                    f"Identity provider unreachable: {exc}",
                    service=SERVICE,
                    operation=operation,
                ) from exc

        self._log(start, success=True, status_code=response.status_code)
        return profile_from_workos(response.json())

    def _log(self, start: float, *, success: bool, **kwargs: Any) -> None:
        log_external_call(
            logger,
            service=SERVICE,
            operation="exchange_code",
            duration_ms=(time.perf_counter() - start) * 1000,
            success=success,
            **kwargs,
        )


def profile_from_workos(data: dict[str, Any]) -> IdentityProfile:
    """Build a profile from a WorkOS authenticate response."""
    user = data.get("user") or {}
    if not user.get("id") or not user.get("email"):
        raise UpstreamRejectedError(
            "Identity provider response carries no user", service=SERVICE, operation="exchange_code"
        )
    return IdentityProfile(
        provider_id=str(user["id"]),
        email=str(user["email"]).strip().lower(),
        first_name=user.get("first_name") or "",
        last_name=user.get("last_name") or "",
        organization_ref=data.get("organization_id"),
    )


class MockIdentityProvider:
    """Identity provider serving registered codes, for tests and local runs."""

    def __init__(self, profiles: dict[str, IdentityProfile] | None = None) -> None:
        self.profiles = dict(profiles or {})
        self.exchanged: list[str] = []

    def register(self, code: str, profile: IdentityProfile) -> None:
        self.profiles[code] = profile

    async def exchange_code(self, code: str) -> IdentityProfile:
        self.exchanged.append(code)
        profile = self.profiles.get(code)
        if profile is None:
            raise UpstreamRejectedError(
                "Invalid authorization code",
                service=SERVICE,
                operation="exchange_code",
                status_code=400,
            )
        return profile


def create_identity_provider(settings: Settings) -> IdentityProviderClient:
    """Build the configured identity provider; the mock when SSO is not configured."""
    if settings.identity_client_id and settings.identity_client_secret:
        return WorkOSIdentityProvider.from_settings(settings)
    logger.warning("identity_provider_not_configured", environment=settings.ENVIRONMENT)
    return MockIdentityProvider()
