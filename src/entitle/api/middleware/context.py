"""Request context middleware for propagating context through the request lifecycle."""

from typing import Callable
from uuid import UUID

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from uuid_utils.compat import uuid7

from entitle.core.context import ActorType, create_context, request_context


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Middleware that sets up RequestContext for each request.

    An incoming ``X-Request-ID`` that parses as a UUID is kept, so a
    caller can correlate its own logs; otherwise a UUIDv7 is generated.

    Reads:
        request.state.actor_id / actor_type / tenant_id: Set by AuthenticationMiddleware

    Sets:
        request.state.request_id
        X-Request-ID response header
    """

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        """Process request within a RequestContext."""
        request_id = self._incoming_request_id(request) or uuid7()
        request.state.request_id = request_id

        ctx = create_context(
            request_id=request_id,
            actor_id=getattr(request.state, "actor_id", None),
            actor_type=getattr(request.state, "actor_type", ActorType.SYSTEM),
            tenant_id=getattr(request.state, "tenant_id", None),
        )

        with request_context(ctx):
            response = await call_next(request)

        response.headers["X-Request-ID"] = str(request_id)
        response.headers["X-Correlation-ID"] = str(ctx.correlation_id)
        return response

    def _incoming_request_id(self, request: Request) -> UUID | None:
        value = request.headers.get("X-Request-ID")
        if not value:
            return None
        try:
            return UUID(value)
        except ValueError:
            return None
