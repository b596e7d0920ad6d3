"""Team management endpoints for subscription owners.

- GET /v1/team/members - List team members
- POST /v1/team/members - Invite a member (charges the provider when needed)
- DELETE /v1/team/members/{member_id} - Remove a member
- POST /v1/team/cancel - Cancel the team subscription at period end
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status

from entitle.api.dependencies import get_current_user, get_team_service
from entitle.api.schemas.errors import APIError
from entitle.api.schemas.team import (
    CancelSubscriptionRequest,
    InviteMemberRequest,
    SubscriptionResponse,
    TeamMemberListResponse,
    TeamMemberResponse,
)
from entitle.db.models import User
from entitle.teams import TeamService

router = APIRouter(prefix="/team", tags=["team"])


async def _subscription_id(team: TeamService, user: User, requested: UUID | None) -> UUID:
    if requested is not None:
        return requested
    return (await team.store.subscription_for(user)).subscription_id


@router.get("/members", response_model=TeamMemberListResponse, summary="List team members")
async def list_members(
    user: Annotated[User, Depends(get_current_user)],
    team: Annotated[TeamService, Depends(get_team_service)],
    subscription_id: Annotated[UUID | None, Query()] = None,
) -> TeamMemberListResponse:
    subscription_id = await _subscription_id(team, user, subscription_id)
    members = await team.list_members(subscription_id, actor=user)
    return TeamMemberListResponse(
        subscription_id=subscription_id,
        items=[TeamMemberResponse.model_validate(member) for member in members],
    )


@router.post(
    "/members",
    response_model=TeamMemberResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Invite a team member",
    responses={
        403: {"model": APIError, "description": "Not the owner, or subscription lapsed"},
        409: {"model": APIError, "description": "Already on the team"},
        502: {"model": APIError, "description": "Billing provider refused the charge"},
    },
)
async def invite_member(
    body: InviteMemberRequest,
    user: Annotated[User, Depends(get_current_user)],
    team: Annotated[TeamService, Depends(get_team_service)],
) -> TeamMemberResponse:
    subscription_id = await _subscription_id(team, user, body.subscription_id)
    member = await team.invite_member(subscription_id, body.email, actor=user)
    return TeamMemberResponse.model_validate(member)


@router.delete(
    "/members/{member_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    summary="Remove a team member",
    responses={404: {"model": APIError, "description": "Unknown member"}},
)
async def remove_member(
    member_id: UUID,
    user: Annotated[User, Depends(get_current_user)],
    team: Annotated[TeamService, Depends(get_team_service)],
) -> Response:
    await team.remove_member(member_id, actor=user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/cancel",
    response_model=SubscriptionResponse,
    summary="Cancel the team subscription",
    responses={502: {"model": APIError, "description": "Billing provider refused"}},
)
async def cancel_subscription(
    body: CancelSubscriptionRequest,
    user: Annotated[User, Depends(get_current_user)],
    team: Annotated[TeamService, Depends(get_team_service)],
) -> SubscriptionResponse:
    """Members lose access immediately; the provider stops billing at period end."""
    subscription_id = await _subscription_id(team, user, body.subscription_id)
    subscription = await team.cancel_subscription(subscription_id, actor=user)
    return SubscriptionResponse.model_validate(subscription)
