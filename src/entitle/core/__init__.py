"""Core services and utilities for Entitle."""

from .context import (
    ActorType,
    RequestContext,
    create_context,
    get_current_context_or_none,
    request_context,
    reset_context,
    set_context,
)
from .exceptions import (
    AccessDeniedError,
    AuthenticationError,
    ConcurrentUpdateError,
    ConflictError,
    DuplicateError,
    NotFoundError,
    UnresolvableEventError,
    UpstreamError,
    UpstreamRejectedError,
    UpstreamTimeoutError,
    ValidationError,
)

__all__ = [
    # Context
    "ActorType",
    "RequestContext",
    "create_context",
    "get_current_context_or_none",
    "request_context",
    "reset_context",
    "set_context",
    # Exceptions
    "AccessDeniedError",
    "AuthenticationError",
    "ConcurrentUpdateError",
    "ConflictError",
    "DuplicateError",
    "NotFoundError",
    "UnresolvableEventError",
    "UpstreamError",
    "UpstreamRejectedError",
    "UpstreamTimeoutError",
    "ValidationError",
]
