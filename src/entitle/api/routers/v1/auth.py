"""Account and session endpoints.

- POST /v1/auth/register - Create an account (and its tenant)
- POST /v1/auth/login - Password sign-in
- POST /v1/auth/sso/callback - Identity provider sign-in
- POST /v1/auth/handoff - Mint a desktop handoff token for the signed-in user
- POST /v1/auth/handoff/redeem - Trade a handoff token for a desktop session
- GET /v1/auth/me - The signed-in user and their dashboard access
"""

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from entitle.access.evaluator import AccessEvaluator
from entitle.accounts import AccountService, AuthResult
from entitle.api.dependencies import (
    get_account_service,
    get_app_settings,
    get_current_user,
    get_db,
    get_db_session_factory,
)
from entitle.api.schemas.access import access_response_from_verdict
from entitle.api.schemas.auth import (
    HandoffRedeemRequest,
    HandoffResponse,
    LoginRequest,
    MeResponse,
    RegisterRequest,
    SSOCallbackRequest,
    TokenResponse,
    UserResponse,
)
from entitle.api.schemas.errors import APIError
from entitle.config.settings import Settings
from entitle.db.models import User

logger = structlog.get_logger()

router = APIRouter(prefix="/auth", tags=["auth"])


async def _token_response(
    result: AuthResult, accounts: AccountService, *, desktop: bool
) -> TokenResponse:
    handoff_token = await accounts.create_handoff_token(result.user) if desktop else None
    return TokenResponse(
        access_token=result.access_token,
        token_type=result.token_type,
        expires_in=result.expires_in,
        user=UserResponse.model_validate(result.user),
        handoff_token=handoff_token,
        created=result.created,
    )


@router.post(
    "/register",
    response_model=TokenResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register an account",
    responses={
        409: {"model": APIError, "description": "Email already registered"},
        422: {"model": APIError, "description": "Invalid email or password"},
    },
)
async def register(
    body: RegisterRequest,
    accounts: Annotated[AccountService, Depends(get_account_service)],
) -> TokenResponse:
    """New emails get their own tenant as admin; invited emails complete their placeholder."""
    result = await accounts.register(body.email, body.password, body.first_name, body.last_name)
    return await _token_response(result, accounts, desktop=body.desktop)


@router.post(
    "/login",
    response_model=TokenResponse,
    summary="Sign in with email and password",
    responses={
        401: {"model": APIError, "description": "Invalid credentials"},
        403: {"model": APIError, "description": "Account suspended or registration pending"},
    },
)
async def login(
    body: LoginRequest,
    accounts: Annotated[AccountService, Depends(get_account_service)],
) -> TokenResponse:
    result = await accounts.authenticate(body.email, body.password)
    return await _token_response(result, accounts, desktop=body.desktop)


@router.post(
    "/sso/callback",
    response_model=TokenResponse,
    summary="Complete an identity provider sign-in",
    responses={
        401: {"model": APIError, "description": "SSO not configured"},
        502: {"model": APIError, "description": "Identity provider rejected the code"},
    },
)
async def sso_callback(
    body: SSOCallbackRequest,
    accounts: Annotated[AccountService, Depends(get_account_service)],
) -> TokenResponse:
    result = await accounts.sso_login(body.code)
    return await _token_response(result, accounts, desktop=body.desktop)


@router.post(
    "/handoff",
    response_model=HandoffResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Mint a desktop handoff token",
)
async def create_handoff(
    user: Annotated[User, Depends(get_current_user)],
    accounts: Annotated[AccountService, Depends(get_account_service)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> HandoffResponse:
    token = await accounts.create_handoff_token(user)
    return HandoffResponse(handoff_token=token, expires_in=settings.handoff_token_ttl_seconds)


@router.post(
    "/handoff/redeem",
    response_model=TokenResponse,
    summary="Redeem a desktop handoff token",
    responses={
        403: {"model": APIError, "description": "Not entitled to the desktop app"},
        404: {"model": APIError, "description": "Token unknown, used or expired"},
    },
)
async def redeem_handoff(
    body: HandoffRedeemRequest,
    accounts: Annotated[AccountService, Depends(get_account_service)],
) -> TokenResponse:
    """Tokens are single-use; the session is only issued on a strict grant."""
    result = await accounts.redeem_handoff(body.token)
    return await _token_response(result, accounts, desktop=False)


@router.get("/me", response_model=MeResponse, summary="Current user and dashboard access")
async def me(
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_db_session_factory)],
) -> MeResponse:
    verdict = await AccessEvaluator(db, session_factory).evaluate_permissive(user)
    return MeResponse(
        user=UserResponse.model_validate(user),
        access=access_response_from_verdict(verdict),
    )
