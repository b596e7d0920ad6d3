"""Pytest fixtures for Entitle tests."""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
import structlog
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from entitle.api.dependencies import (
    get_billing_provider,
    get_db,
    get_db_session_factory,
    get_identity_provider,
    get_token_cache,
    reset_dependencies,
)
from entitle.billing.provider import MockBillingProvider
from entitle.config.settings import Settings
from entitle.core.security import create_access_token, hash_password
from entitle.core.token_cache import InMemoryTokenCache
from entitle.db.models import (
    Base,
    Organization,
    OwnerType,
    Seat,
    SeatStatus,
    Subscription,
    SubscriptionStatus,
    TeamMember,
    TeamMemberStatus,
    Tenant,
    TenantStatus,
    User,
    UserRole,
    UserStatus,
)
from entitle.entitlements import EntitlementStore
from entitle.identity.provider import MockIdentityProvider
from entitle.seats.license_keys import generate_license_key

WEBHOOK_SECRET = "whsec_test_secret"
API_KEY = "test-api-secret"
TEST_PASSWORD = "correct horse"


# =============================================================================
# Structlog Configuration Fixture
# =============================================================================


@pytest.fixture(scope="function", autouse=True)
def reset_structlog_after_test():
    """Reset structlog configuration after each test.

    This ensures tests that modify structlog global state
    don't affect other tests.
    """
    yield
    structlog.reset_defaults()
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )


@pytest.fixture(autouse=True)
def reset_api_singletons():
    """Provider clients and the token cache are module singletons."""
    reset_dependencies()
    yield
    reset_dependencies()


# =============================================================================
# Settings
# =============================================================================


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Settings for tests: file-backed SQLite, fast bcrypt, known secrets."""
    return Settings(
        ENVIRONMENT="test",
        DEBUG=True,
        log_level="DEBUG",
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'entitle.db'}",
        API_SECRET_KEY=SecretStr(API_KEY),
        JWT_SECRET_KEY=SecretStr("test-jwt-secret"),
        BCRYPT_ROUNDS=4,
        billing_webhook_secret=SecretStr(WEBHOOK_SECRET),
    )


# =============================================================================
# Database fixtures
# =============================================================================


@pytest_asyncio.fixture
async def test_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    """A fresh SQLite database file per test.

    A file rather than ``:memory:`` so that the request session, the
    background touch sessions and the test session all see one database.
    """
    engine = create_async_engine(test_settings.DATABASE_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


# =============================================================================
# Provider doubles
# =============================================================================


@pytest.fixture
def billing_provider() -> MockBillingProvider:
    return MockBillingProvider()


@pytest.fixture
def identity_provider() -> MockIdentityProvider:
    return MockIdentityProvider()


@pytest.fixture
def token_cache() -> InMemoryTokenCache:
    return InMemoryTokenCache(max_entries=100)


# =============================================================================
# Factories
# =============================================================================


class EntitlementFactory:
    """Builds committed tenants, users, subscriptions, seats and members."""

    def __init__(self, session: AsyncSession, settings: Settings):
        self.session = session
        self.settings = settings
        self._refs = 0

    def _next_ref(self, prefix: str) -> str:
        self._refs += 1
        return f"{prefix}_test_{self._refs}"

    async def tenant(
        self,
        name: str = "Acme",
        *,
        status: TenantStatus = TenantStatus.INACTIVE,
        customer_ref: str | None = None,
    ) -> Tenant:
        tenant = Tenant(
            name=name,
            billing_customer_ref=customer_ref or self._next_ref("cus"),
            status=status.value,
            seat_count=1,
        )
        self.session.add(tenant)
        await self.session.commit()
        return tenant

    async def user(
        self,
        email: str,
        *,
        tenant: Tenant | None = None,
        role: UserRole = UserRole.ADMIN,
        status: UserStatus = UserStatus.ACTIVE,
        password: str | None = TEST_PASSWORD,
        pending: bool = False,
    ) -> User:
        tenant = tenant or await self.tenant(f"{email} tenant")
        user = User(
            tenant_id=tenant.tenant_id,
            email=email,
            name="Test User",
            role=role.value,
            status=status.value,
            credential_hash=hash_password(password, rounds=4) if password else None,
            registration_pending=pending,
        )
        self.session.add(user)
        await self.session.commit()
        return user

    async def organization(
        self, name: str = "Acme Corp", *, domain: str | None = None
    ) -> Organization:
        organization = Organization(name=name, slug=name.lower().replace(" ", "-"), domain=domain)
        self.session.add(organization)
        await self.session.commit()
        return organization

    async def subscription(
        self,
        *,
        tenant: Tenant | None = None,
        user: User | None = None,
        organization: Organization | None = None,
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
        seats: int = 1,
        billing_quantity: int | None = None,
        subscription_ref: str | None = "auto",
        plan: str = "basic",
        seat_email: str | None = None,
    ) -> Subscription:
        """A subscription with ``seats`` unused seats; tenant subscriptions are mirrored."""
        subscription = Subscription(
            plan=plan,
            price_per_seat=self.settings.plans.price_for(plan),
            seats=seats,
            billing_quantity=billing_quantity or seats,
            status=status.value,
            billing_subscription_ref=(
                self._next_ref("sub") if subscription_ref == "auto" else subscription_ref
            ),
            billing_metadata={},
        )
        if user is not None:
            subscription.owner_type = OwnerType.USER.value
            subscription.user_id = user.user_id
        elif organization is not None:
            subscription.owner_type = OwnerType.ORGANIZATION.value
            subscription.organization_id = organization.organization_id
        else:
            subscription.owner_type = OwnerType.TENANT.value
            subscription.tenant_id = tenant.tenant_id
        self.session.add(subscription)
        await self.session.flush()

        for index in range(seats):
            self.session.add(
                Seat(
                    subscription_id=subscription.subscription_id,
                    assigned_email=seat_email if index == 0 else None,
                    license_key=generate_license_key(self.settings.license_key_prefix),
                    status=SeatStatus.UNUSED.value,
                )
            )
        await self.session.flush()
        await EntitlementStore(self.session).mirror_tenant(subscription)
        await self.session.commit()
        return subscription

    async def seats(self, subscription: Subscription) -> list[Seat]:
        return await EntitlementStore(self.session).seats.list_for_subscription(
            subscription.subscription_id, include_revoked=True
        )

    async def member(
        self,
        subscription: Subscription,
        email: str,
        *,
        status: TeamMemberStatus = TeamMemberStatus.ACTIVE,
    ) -> TeamMember:
        member = TeamMember(
            subscription_id=subscription.subscription_id, email=email, status=status.value
        )
        self.session.add(member)
        await self.session.commit()
        return member


@pytest.fixture
def factory(db_session: AsyncSession, test_settings: Settings) -> EntitlementFactory:
    return EntitlementFactory(db_session, test_settings)


@pytest.fixture
def reload(session_factory: async_sessionmaker[AsyncSession]):
    """Read a row back through a fresh session, bypassing any identity map."""

    async def _reload(model, pk):
        async with session_factory() as session:
            return await session.get(model, pk)

    return _reload


# =============================================================================
# API test fixtures
# =============================================================================


@pytest.fixture
def test_app(
    test_settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    billing_provider: MockBillingProvider,
    identity_provider: MockIdentityProvider,
    token_cache: InMemoryTokenCache,
) -> FastAPI:
    """The application wired to the per-test database and provider doubles."""
    from entitle.api.app import create_app

    app = create_app(settings=test_settings)

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_db_session_factory] = lambda: session_factory
    app.dependency_overrides[get_billing_provider] = lambda: billing_provider
    app.dependency_overrides[get_identity_provider] = lambda: identity_provider
    app.dependency_overrides[get_token_cache] = lambda: token_cache
    return app


@pytest_asyncio.fixture
async def test_client(test_app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Unauthenticated client calling the app in-process."""
    async with AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://test",
    ) as client:
        yield client


@pytest_asyncio.fixture
async def service_client(test_app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Client authenticated with the service API key."""
    async with AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://test",
        headers={"Authorization": f"Bearer {API_KEY}"},
    ) as client:
        yield client


@pytest.fixture
def auth_headers(test_settings: Settings):
    """Build session-token headers for a user."""

    def _headers(user: User) -> dict[str, str]:
        token = create_access_token(user.user_id, user.tenant_id, user.role, test_settings)
        return {"Authorization": f"Bearer {token}"}

    return _headers
