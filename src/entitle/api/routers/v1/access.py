"""Access validation endpoint for the desktop app.

- POST /v1/access/validate - Strict re-validation by email
"""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from entitle.access.evaluator import AccessEvaluator
from entitle.api.dependencies import get_db, get_db_session_factory
from entitle.api.schemas.access import (
    AccessResponse,
    ValidateAccessRequest,
    access_response_from_verdict,
)
from entitle.api.schemas.errors import APIError
from entitle.core.exceptions import AccessDeniedError

router = APIRouter(prefix="/access", tags=["access"])


@router.post(
    "/validate",
    response_model=AccessResponse,
    summary="Validate desktop access for an email",
    responses={403: {"model": APIError, "description": "No access; reason in details"}},
)
async def validate_access(
    body: ValidateAccessRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_db_session_factory)],
) -> AccessResponse:
    """Owner subscription first, then team membership, then the tenant mirror.

    A granted team membership is marked as used.
    """
    verdict = await AccessEvaluator(db, session_factory).validate_access(body.email)
    if not verdict.is_granted:
        raise AccessDeniedError(
            "No active subscription or team membership",
            reason=verdict.reason or "access_denied",
        )
    return access_response_from_verdict(verdict)
