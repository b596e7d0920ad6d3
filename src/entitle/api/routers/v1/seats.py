"""Seat management endpoints for subscription admins.

- GET /v1/seats - List the seats of a subscription
- POST /v1/seats - Add a seat (charges the provider first when needed)
- DELETE /v1/seats/{seat_id} - Revoke a seat
"""

from typing import Annotated
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query, status

from entitle.api.dependencies import get_current_user, get_seat_manager
from entitle.api.schemas.errors import APIError
from entitle.api.schemas.seats import AddSeatRequest, SeatListResponse, SeatResponse
from entitle.db.models import User
from entitle.seats import SeatManager

logger = structlog.get_logger()

router = APIRouter(prefix="/seats", tags=["seats"])


@router.get(
    "",
    response_model=SeatListResponse,
    summary="List seats",
    responses={404: {"model": APIError, "description": "No subscription"}},
)
async def list_seats(
    user: Annotated[User, Depends(get_current_user)],
    manager: Annotated[SeatManager, Depends(get_seat_manager)],
    subscription_id: Annotated[
        UUID | None, Query(description="Defaults to the caller's subscription")
    ] = None,
) -> SeatListResponse:
    if subscription_id is None:
        subscription = await manager.store.subscription_for(user)
    else:
        subscription = await manager.store.subscriptions.get_or_raise(subscription_id)
    seats = await manager.list_seats(subscription.subscription_id, actor=user)
    return SeatListResponse(
        subscription_id=subscription.subscription_id,
        seats=subscription.seats,
        billing_quantity=subscription.billing_quantity,
        items=[SeatResponse.model_validate(seat) for seat in seats],
    )


@router.post(
    "",
    response_model=SeatResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add a seat",
    responses={
        403: {"model": APIError, "description": "Not the subscription admin, or lapsed"},
        409: {"model": APIError, "description": "Subscription not linked to billing"},
        502: {"model": APIError, "description": "Billing provider refused the charge"},
        504: {"model": APIError, "description": "Billing provider timed out"},
    },
)
async def add_seat(
    body: AddSeatRequest,
    user: Annotated[User, Depends(get_current_user)],
    manager: Annotated[SeatManager, Depends(get_seat_manager)],
) -> SeatResponse:
    """Provision a seat. Nothing is written if the provider refuses the charge."""
    subscription_id = body.subscription_id
    if subscription_id is None:
        subscription_id = (await manager.store.subscription_for(user)).subscription_id
    seat = await manager.add_seat(subscription_id, body.email, actor=user)
    return SeatResponse.model_validate(seat)


@router.delete(
    "/{seat_id}",
    response_model=SeatResponse,
    summary="Revoke a seat",
    responses={
        404: {"model": APIError, "description": "Unknown seat"},
    },
)
async def revoke_seat(
    seat_id: UUID,
    user: Annotated[User, Depends(get_current_user)],
    manager: Annotated[SeatManager, Depends(get_seat_manager)],
) -> SeatResponse:
    """Revocation is permanent; the billed quantity follows best-effort."""
    seat = await manager.revoke_seat(seat_id, actor=user)
    return SeatResponse.model_validate(seat)
