"""FastAPI dependencies for API endpoints.

Provider clients and the handoff token cache are process-wide
singletons built lazily from the application settings; tests swap them
with ``app.dependency_overrides`` or reset them with ``reset_dependencies``.
"""

from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from entitle.accounts import AccountService
from entitle.billing import (
    BillingProviderClient,
    CheckoutService,
    SubscriptionSyncService,
    create_billing_provider,
)
from entitle.config.settings import Settings, get_settings
from entitle.core.context import ActorType
from entitle.core.exceptions import AccessDeniedError, AuthenticationError
from entitle.core.token_cache import TokenCache, create_token_cache
from entitle.db.config import get_db, get_session_factory
from entitle.db.models import User
from entitle.identity import IdentityProviderClient, create_identity_provider
from entitle.seats import SeatManager
from entitle.teams import TeamService

__all__ = [
    "get_db",
    "get_app_settings",
    "get_billing_provider",
    "get_identity_provider",
    "get_token_cache",
    "get_db_session_factory",
    "get_current_user",
    "require_service",
    "get_request_id",
    "reset_dependencies",
    "close_dependencies",
]

# Module-level singletons
_billing_provider: BillingProviderClient | None = None
_identity_provider: IdentityProviderClient | None = None
_token_cache: TokenCache | None = None


def get_app_settings(request: Request) -> Settings:
    """Settings the app was created with, else the process settings."""
    return getattr(request.app.state, "settings", None) or get_settings()


def get_billing_provider(
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> BillingProviderClient:
    global _billing_provider
    if _billing_provider is None:
        _billing_provider = create_billing_provider(settings)
    return _billing_provider


def get_identity_provider(
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> IdentityProviderClient:
    global _identity_provider
    if _identity_provider is None:
        _identity_provider = create_identity_provider(settings)
    return _identity_provider


async def get_token_cache(
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> TokenCache:
    global _token_cache
    if _token_cache is None:
        _token_cache = await create_token_cache(settings)
    return _token_cache


def get_db_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for work outside the request session (touches, sync)."""
    return get_session_factory()


def require_service(request: Request) -> None:
    """Only the service API key may call this endpoint.

    Raises:
        AuthenticationError: Caller is not authenticated with the API key
    """
    if getattr(request.state, "actor_type", None) != ActorType.SERVICE:
        raise AuthenticationError("API key required")


async def get_current_user(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """The user behind the session token.

    Raises:
        AuthenticationError: No user session, or the user no longer exists
        AccessDeniedError: The account is suspended
    """
    if getattr(request.state, "actor_type", None) != ActorType.USER:
        raise AuthenticationError("User session required")
    user = await db.get(User, request.state.actor_id)
    if user is None:
        raise AuthenticationError("User no longer exists")
    if not user.is_active:
        raise AccessDeniedError("Account is suspended", reason="account_suspended")
    return user


def get_request_id(request: Request) -> str:
    """Get the request ID set by RequestContextMiddleware."""
    return str(getattr(request.state, "request_id", "unknown"))


# =============================================================================
# Services
# =============================================================================


def get_seat_manager(
    db: Annotated[AsyncSession, Depends(get_db)],
    provider: Annotated[BillingProviderClient, Depends(get_billing_provider)],
    settings: Annotated[Settings, Depends(get_app_settings)],
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_db_session_factory)],
) -> SeatManager:
    return SeatManager(db, provider, settings, session_factory=session_factory)


def get_team_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    provider: Annotated[BillingProviderClient, Depends(get_billing_provider)],
) -> TeamService:
    return TeamService(db, provider)


def get_checkout_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    provider: Annotated[BillingProviderClient, Depends(get_billing_provider)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> CheckoutService:
    return CheckoutService(db, provider, settings)


def get_sync_service(
    provider: Annotated[BillingProviderClient, Depends(get_billing_provider)],
    settings: Annotated[Settings, Depends(get_app_settings)],
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_db_session_factory)],
) -> SubscriptionSyncService:
    return SubscriptionSyncService(session_factory, provider, settings)


def get_account_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    provider: Annotated[BillingProviderClient, Depends(get_billing_provider)],
    settings: Annotated[Settings, Depends(get_app_settings)],
    token_cache: Annotated[TokenCache, Depends(get_token_cache)],
    identity: Annotated[IdentityProviderClient, Depends(get_identity_provider)],
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_db_session_factory)],
) -> AccountService:
    return AccountService(
        db,
        provider,
        settings,
        token_cache=token_cache,
        identity=identity,
        session_factory=session_factory,
    )


# =============================================================================
# Lifecycle helpers
# =============================================================================


def reset_dependencies() -> None:
    """Forget the singletons. Used by tests to get fresh instances."""
    global _billing_provider, _identity_provider, _token_cache
    _billing_provider = None
    _identity_provider = None
    _token_cache = None


async def close_dependencies() -> None:
    """Close provider HTTP clients. Called during application shutdown."""
    for client in (_billing_provider, _identity_provider):
        aclose = getattr(client, "aclose", None)
        if aclose is not None:
            await aclose()
    reset_dependencies()
