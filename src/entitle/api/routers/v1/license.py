"""Desktop license endpoints.

These are public: the license key is the credential.

- POST /v1/license/validate - Activate a key on a machine
- GET /v1/license/status - Periodic check of a key bound to a machine
- POST /v1/license/deactivate - Release the machine binding
- POST /v1/license/reset - Self-service reset of the machine binding
- POST /v1/license/admin/reset - Reset without a subscription check (API key)
"""

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, Query

from entitle.access.evaluator import ACCOUNT_SUSPENDED, AccessContext
from entitle.api.dependencies import get_seat_manager, require_service
from entitle.api.schemas.errors import APIError
from entitle.api.schemas.license import LicenseRequest, LicenseResetRequest, LicenseResponse
from entitle.core.exceptions import AccessDeniedError, NotFoundError
from entitle.db.models import Seat
from entitle.seats import SeatManager

logger = structlog.get_logger()

router = APIRouter(prefix="/license", tags=["license"])


def _seat_response(
    seat: Seat, message: str, context: AccessContext | None = None
) -> LicenseResponse:
    return LicenseResponse(
        valid=True,
        license_key=seat.license_key,
        status=seat.status,
        plan=context.plan if context else None,
        subscription_status=context.subscription_status if context else None,
        user_email=context.email if context else None,
        seat_id=seat.seat_id,
        activated_at=seat.activated_at,
        message=message,
    )


@router.post(
    "/validate",
    response_model=LicenseResponse,
    summary="Activate a license key on a machine",
    responses={
        403: {"model": APIError, "description": "License holder is suspended"},
        404: {"model": APIError, "description": "Unknown or revoked key, or lapsed plan"},
        409: {"model": APIError, "description": "Key is bound to another machine"},
    },
)
async def validate_license(
    body: LicenseRequest,
    manager: Annotated[SeatManager, Depends(get_seat_manager)],
) -> LicenseResponse:
    """Bind the key to ``machine_id``. Re-validating on the bound machine succeeds."""
    activation = await manager.activate_license(body.license_key, body.machine_id)
    return _seat_response(activation.seat, "License activated", activation.context)


@router.get(
    "/status",
    response_model=LicenseResponse,
    summary="Check a license key",
    responses={
        403: {"model": APIError, "description": "License denied"},
        404: {"model": APIError, "description": "Key not bound to this machine"},
    },
)
async def license_status(
    manager: Annotated[SeatManager, Depends(get_seat_manager)],
    license_key: Annotated[str, Query(min_length=1, max_length=64)],
    machine_id: Annotated[str, Query(min_length=1, max_length=255)],
) -> LicenseResponse:
    verdict = await manager.license_status(license_key, machine_id)
    if verdict.is_not_found:
        raise NotFoundError("License not found on this device", resource="seats")
    if verdict.is_denied:
        message = (
            "License holder account is suspended"
            if verdict.reason == ACCOUNT_SUSPENDED
            else "License is not valid"
        )
        raise AccessDeniedError(message, reason=verdict.reason)

    context = verdict.context
    return LicenseResponse(
        valid=True,
        license_key=license_key,
        status=context.license_status if context else None,
        plan=context.plan if context else None,
        subscription_status=context.subscription_status if context else None,
        user_email=context.email if context else None,
        seat_id=context.seat_id if context else None,
    )


@router.post(
    "/deactivate",
    response_model=LicenseResponse,
    summary="Release a license from a machine",
    responses={404: {"model": APIError, "description": "Key not bound to this machine"}},
)
async def deactivate_license(
    body: LicenseRequest,
    manager: Annotated[SeatManager, Depends(get_seat_manager)],
) -> LicenseResponse:
    seat = await manager.deactivate_license(body.license_key, body.machine_id)
    return _seat_response(seat, "License deactivated")


@router.post(
    "/reset",
    response_model=LicenseResponse,
    summary="Reset a license's machine binding",
    responses={404: {"model": APIError, "description": "Unknown key or inactive plan"}},
)
async def reset_license(
    body: LicenseResetRequest,
    manager: Annotated[SeatManager, Depends(get_seat_manager)],
) -> LicenseResponse:
    seat = await manager.reset_license(body.license_key)
    return _seat_response(seat, "License reset")


@router.post(
    "/admin/reset",
    response_model=LicenseResponse,
    dependencies=[Depends(require_service)],
    summary="Administrative license reset",
    responses={401: {"model": APIError, "description": "API key required"}},
)
async def admin_reset_license(
    body: LicenseResetRequest,
    manager: Annotated[SeatManager, Depends(get_seat_manager)],
) -> LicenseResponse:
    seat = await manager.admin_reset_license(body.license_key)
    logger.info("license_admin_reset", seat_id=str(seat.seat_id))
    return _seat_response(seat, "License reset")
