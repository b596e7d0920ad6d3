"""Account lifecycle: registration, login, SSO and the desktop handoff.

Signing in never consults the subscription: the dashboard is permissive
and lets a user without a plan in to pick one. The desktop handoff is
the exception, it only hands out a session after a strict evaluation.
"""

import secrets
from dataclasses import dataclass
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from entitle.access.evaluator import ACCOUNT_SUSPENDED, AccessEvaluator, Verdict
from entitle.billing.provider import BillingProviderClient
from entitle.config.settings import Settings, get_settings
from entitle.core.exceptions import (
    AccessDeniedError,
    AuthenticationError,
    DuplicateError,
    NotFoundError,
    ValidationError,
)
from entitle.core.security import (
    MAX_PASSWORD_BYTES,
    create_access_token,
    hash_password,
    verify_password,
)
from entitle.core.token_cache import InMemoryTokenCache, TokenCache
from entitle.db.models import Plan, Tenant, TenantStatus, User, UserRole
from entitle.entitlements import EntitlementStore
from entitle.identity.provider import IdentityProfile, IdentityProviderClient
from entitle.observability.metrics import record_handoff
from entitle.observability.tracing import traced_async

logger = structlog.get_logger()

MIN_PASSWORD_LENGTH = 6


@dataclass
class AuthResult:
    """A signed-in user and their session token."""

    user: User
    access_token: str
    expires_in: int
    token_type: str = "bearer"
    verdict: Verdict | None = None
    created: bool = False


class AccountService:
    """Registers users and issues session tokens.

    Args:
        db: Session for the unit of work
        billing_provider: Creates the billing customer for new tenants
        settings: Application settings
        token_cache: Handoff token store; a private in-memory cache if omitted
        identity: SSO identity provider, required only for ``sso_login``
        session_factory: Passed to the evaluator
    """

    def __init__(
        self,
        db: AsyncSession,
        billing_provider: BillingProviderClient,
        settings: Settings | None = None,
        *,
        token_cache: TokenCache | None = None,
        identity: IdentityProviderClient | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ):
        self.store = EntitlementStore(db)
        self.evaluator = AccessEvaluator(db, session_factory)
        self._billing = billing_provider
        self._settings = settings or get_settings()
        self._token_cache = token_cache or InMemoryTokenCache(
            max_entries=self._settings.handoff_cache_max_size
        )
        self._identity = identity

    # ------------------------------------------------------------------
    # Password accounts
    # ------------------------------------------------------------------

    async def register(
        self, email: str, password: str, first_name: str, last_name: str
    ) -> AuthResult:
        """Create a tenant and its first (admin) user, or complete an invited user.

        The tenant starts inactive; only the billing provider activates it.

        Raises:
            ValidationError: Malformed email, password or names
            DuplicateError: The email already belongs to a registered user
            UpstreamError: The billing customer could not be created
        """
        email = _normalize_email(email)
        _validate_password(password)
        first_name, last_name = first_name.strip(), last_name.strip()
        if not first_name or not last_name:
            raise ValidationError("First and last name are required", field="name")
        name = f"{first_name} {last_name}"

        existing = await self.store.users.get_by_email(email)
        if existing is not None:
            if not existing.registration_pending:
                raise DuplicateError(
                    "A user with this email already exists", resource="users", field="email"
                )
            existing.credential_hash = hash_password(password, self._settings.BCRYPT_ROUNDS)
            existing.name = name
            existing.registration_pending = False
            await self.store.commit()
            logger.info("invited_user_registered", user_id=str(existing.user_id))
            return self._issue(existing, created=True)

        customer = await self._billing.create_customer(email, name)
        user = await self._create_tenant_admin(
            email,
            name,
            tenant_name=f"{first_name}'s Team",
            customer_ref=customer.customer_ref,
            credential_hash=hash_password(password, self._settings.BCRYPT_ROUNDS),
        )
        await self.store.commit()
        logger.info("user_registered", user_id=str(user.user_id), tenant_id=str(user.tenant_id))
        return self._issue(user, created=True)

    async def authenticate(self, email: str, password: str) -> AuthResult:
        """Check a password and issue a session token.

        Raises:
            AuthenticationError: Unknown email or wrong password
            AccessDeniedError: Invited user who has not registered yet,
                or a suspended account
        """
        user = await self.store.users.get_by_email(_normalize_email(email, strict=False))
        if user is not None and user.registration_pending:
            raise AccessDeniedError(
                "You were invited to a team; register with this email to set a password",
                reason="registration_pending",
            )
        if user is None or not verify_password(password, user.credential_hash):
            raise AuthenticationError("Invalid email or password")
        if not user.is_active:
            raise AccessDeniedError("Account is suspended", reason=ACCOUNT_SUSPENDED)

        logger.info("user_login", user_id=str(user.user_id))
        return self._issue(user)

    # ------------------------------------------------------------------
    # Desktop handoff
    # ------------------------------------------------------------------

    async def create_handoff_token(self, user: User) -> str:
        """Mint a one-time token the desktop app trades for a session."""
        token = secrets.token_urlsafe(32)
        await self._token_cache.put(
            token,
            {"user_id": str(user.user_id), "email": user.email},
            self._settings.handoff_token_ttl_seconds,
        )
        record_handoff("minted")
        logger.info("handoff_token_created", user_id=str(user.user_id))
        return token

    async def redeem_handoff(self, token: str) -> AuthResult:
        """Consume a handoff token and issue a desktop session.

        Raises:
            NotFoundError: Token unknown, already used or expired
            AccessDeniedError: The user is not entitled to the desktop app
        """
        payload = await self._token_cache.pop(token) if token else None
        if payload is None:
            record_handoff("rejected")
            raise NotFoundError(
                "Handoff token is invalid or expired", resource="handoff_tokens"
            )
        user = await self.store.users.get(UUID(payload["user_id"]))
        if user is None:
            record_handoff("rejected")
            raise NotFoundError(
                "Handoff token is invalid or expired", resource="handoff_tokens"
            )

        verdict = await self.evaluator.evaluate_strict(user)
        if not verdict.is_granted:
            record_handoff("denied")
            raise AccessDeniedError(
                "No active subscription or team membership",
                reason=verdict.reason or "access_denied",
            )
        record_handoff("redeemed")
        logger.info("handoff_token_redeemed", user_id=str(user.user_id))
        result = self._issue(user)
        result.verdict = verdict
        return result

    # ------------------------------------------------------------------
    # SSO
    # ------------------------------------------------------------------

    @traced_async("accounts.sso_login")
    async def sso_login(self, code: str) -> AuthResult:
        """Sign in with an identity provider code, creating the user on first login.

        Users are matched by provider id, then by email. A new user joins
        the tenant of an organization that claims their email domain, or
        gets a tenant of their own.

        Raises:
            ValidationError: Missing code
            UpstreamError: The identity provider rejected the code
            AccessDeniedError: The account is suspended
        """
        if not code or not code.strip():
            raise ValidationError("Authorization code is required", field="code")
        if self._identity is None:
            raise AuthenticationError("SSO is not configured")

        profile = await self._identity.exchange_code(code)
        created = False
        user = await self.store.users.get_by_sso_ref(profile.provider_id)
        if user is None:
            user = await self.store.users.get_by_email(profile.email)
            if user is not None:
                user.sso_provider_ref = profile.provider_id
                if user.registration_pending:
                    user.registration_pending = False
                    user.name = profile.full_name or user.name
            else:
                user = await self._create_sso_user(profile)
                created = True

        if not user.is_active:
            await self.store.rollback()
            raise AccessDeniedError("Account is suspended", reason=ACCOUNT_SUSPENDED)

        await self.store.commit()
        logger.info("sso_login", user_id=str(user.user_id), created=created)
        return self._issue(user, created=created)

    async def _create_sso_user(self, profile: IdentityProfile) -> User:
        organization = await self.store.organizations.get_by_domain(profile.email_domain)
        colleague = None
        if organization is not None:
            colleague = await self.store.users.get_first_by_domain(profile.email_domain)

        if colleague is not None:
            user = User(
                tenant_id=colleague.tenant_id,
                email=profile.email,
                name=profile.full_name,
                role=UserRole.MEMBER.value,
                sso_provider_ref=profile.provider_id,
            )
            self.store.db.add(user)
            await self.store.flush()
            return user

        customer = await self._billing.create_customer(profile.email, profile.full_name)
        user = await self._create_tenant_admin(
            profile.email,
            profile.full_name,
            tenant_name=organization.name if organization else f"{profile.full_name}'s Team",
            customer_ref=customer.customer_ref,
        )
        user.sso_provider_ref = profile.provider_id
        await self.store.flush()
        return user

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _create_tenant_admin(
        self,
        email: str,
        name: str,
        *,
        tenant_name: str,
        customer_ref: str | None,
        credential_hash: str | None = None,
    ) -> User:
        tenant = Tenant(
            name=tenant_name,
            billing_customer_ref=customer_ref,
            plan=Plan.BASIC.value,
            seat_count=1,
            status=TenantStatus.INACTIVE.value,
        )
        self.store.db.add(tenant)
        await self.store.flush()
        user = User(
            tenant_id=tenant.tenant_id,
            email=email,
            name=name,
            credential_hash=credential_hash,
            role=UserRole.ADMIN.value,
        )
        self.store.db.add(user)
        await self.store.flush()
        return user

    def _issue(self, user: User, *, created: bool = False) -> AuthResult:
        token = create_access_token(user.user_id, user.tenant_id, user.role, self._settings)
        return AuthResult(
            user=user,
            access_token=token,
            expires_in=self._settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
            created=created,
        )


def _normalize_email(email: str, *, strict: bool = True) -> str:
    email = (email or "").strip().lower()
    if strict and ("@" not in email or email.startswith("@") or email.endswith("@")):
        raise ValidationError("A valid email is required", field="email")
    return email


def _validate_password(password: str) -> None:
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters", field="password"
        )
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValidationError("Password is too long", field="password")
