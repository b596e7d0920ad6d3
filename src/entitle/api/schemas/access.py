"""API schemas for access validation."""

from uuid import UUID

from pydantic import BaseModel, Field

from entitle.access.evaluator import AccessSource, Verdict


class ValidateAccessRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=320)


class AccessResponse(BaseModel):
    """An entitlement verdict.

    ``billing_blocked`` is only ever set on dashboard (permissive) verdicts:
    the user may sign in but must pick a plan before using the product.
    """

    granted: bool
    verdict: str
    reason: str | None = None
    billing_blocked: bool = False
    source: str | None = None
    plan: str | None = None
    subscription_id: UUID | None = None
    subscription_status: str | None = None
    role: str | None = Field(default=None, description="owner or member")


def access_response_from_verdict(verdict: Verdict) -> AccessResponse:
    """Render an evaluator verdict for API clients."""
    context = verdict.context
    role = None
    if context is not None and verdict.is_granted:
        role = "member" if context.source == AccessSource.TEAM_MEMBER else "owner"
    return AccessResponse(
        granted=verdict.is_granted,
        verdict=verdict.kind.value,
        reason=verdict.reason,
        billing_blocked=verdict.billing_blocked,
        source=context.source.value if context else None,
        plan=context.plan if context else None,
        subscription_id=context.subscription_id if context else None,
        subscription_status=context.subscription_status if context else None,
        role=role,
    )
