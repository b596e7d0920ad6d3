"""Request context for async-safe request correlation.

This module provides request context propagation using Python's contextvars
so that logs emitted deep inside a service call carry the request id and
the authenticated actor without threading them through every signature.

Usage:
    from entitle.core.context import create_context, request_context

    ctx = create_context(actor_id=user_id, actor_type=ActorType.USER)
    with request_context(ctx):
        current = get_current_context()
"""

from contextlib import contextmanager
from contextvars import ContextVar, Token
from datetime import UTC, datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field
from uuid_utils.compat import uuid7


class ActorType(str, Enum):
    """Type of actor performing the operation."""

    USER = "user"  # Dashboard or desktop user with a session token
    SERVICE = "service"  # Internal caller holding the API key
    PROVIDER = "provider"  # Billing provider webhook delivery
    SYSTEM = "system"  # Unauthenticated or scheduled operation


class RequestContext(BaseModel):
    """Context for a single request or webhook delivery."""

    request_id: UUID = Field(default_factory=uuid7)
    correlation_id: UUID = Field(default_factory=uuid7)
    actor_id: UUID | None = None
    actor_type: ActorType = ActorType.SYSTEM
    tenant_id: UUID | None = None
    initiated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def to_log_dict(self) -> dict[str, str | None]:
        """Convert context to a flat dictionary for log enrichment."""
        return {
            "request_id": str(self.request_id),
            "correlation_id": str(self.correlation_id),
            "actor_id": str(self.actor_id) if self.actor_id else None,
            "actor_type": self.actor_type.value,
            "tenant_id": str(self.tenant_id) if self.tenant_id else None,
        }


_request_context: ContextVar[RequestContext | None] = ContextVar("request_context", default=None)


def get_current_context_or_none() -> RequestContext | None:
    """Get the current request context, or None if not set."""
    return _request_context.get()


def set_context(ctx: RequestContext) -> Token[RequestContext | None]:
    """Set the request context and return a token for restoration."""
    return _request_context.set(ctx)


def reset_context(token: Token[RequestContext | None]) -> None:
    """Reset the context to its previous value using a token."""
    _request_context.reset(token)


@contextmanager
def request_context(ctx: RequestContext):
    """Context manager for setting request context.

    Works for both sync and async code because contextvars are
    propagated to tasks created inside the block.
    """
    token = set_context(ctx)
    try:
        yield ctx
    finally:
        reset_context(token)


def create_context(
    *,
    request_id: UUID | None = None,
    actor_id: UUID | None = None,
    actor_type: ActorType = ActorType.SYSTEM,
    tenant_id: UUID | None = None,
    correlation_id: UUID | None = None,
) -> RequestContext:
    """Factory function to create a RequestContext with defaults."""
    return RequestContext(
        request_id=request_id or uuid7(),
        actor_id=actor_id,
        actor_type=actor_type,
        tenant_id=tenant_id,
        correlation_id=correlation_id or uuid7(),
    )
