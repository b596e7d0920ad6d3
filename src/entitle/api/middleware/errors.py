"""Error handling middleware for mapping exceptions to HTTP responses."""

from datetime import UTC, datetime
from typing import Any, Callable
from uuid import UUID

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.base import BaseHTTPMiddleware

from entitle.api.schemas.errors import APIError, ErrorCode
from entitle.core.exceptions import (
    AccessDeniedError,
    AuthenticationError,
    ConflictError,
    DuplicateError,
    NotFoundError,
    UpstreamError,
    UpstreamRejectedError,
    UpstreamTimeoutError,
    ValidationError,
)

logger = structlog.get_logger()

# Exception to (status_code, error_code, client message). Subclasses are
# listed before their bases; the first isinstance match wins.
EXCEPTION_MAP: list[tuple[type[Exception], int, str, str]] = [
    (NotFoundError, 404, ErrorCode.NOT_FOUND.value, "Resource not found"),
    (ConflictError, 409, ErrorCode.CONFLICT.value, "Request conflicts with the current state"),
    (DuplicateError, 409, ErrorCode.DUPLICATE.value, "Resource already exists"),
    (ValidationError, 422, ErrorCode.VALIDATION_ERROR.value, "Request validation failed"),
    (PydanticValidationError, 422, ErrorCode.VALIDATION_ERROR.value, "Request validation failed"),
    (AuthenticationError, 401, ErrorCode.UNAUTHORIZED.value, "Authentication required"),
    (AccessDeniedError, 403, ErrorCode.FORBIDDEN.value, "Not entitled to this action"),
    (UpstreamTimeoutError, 504, ErrorCode.UPSTREAM_TIMEOUT.value, "Upstream provider timed out"),
    (
        UpstreamRejectedError,
        502,
        ErrorCode.UPSTREAM_REJECTED.value,
        "Upstream provider rejected the request",
    ),
    (UpstreamError, 502, ErrorCode.UPSTREAM_ERROR.value, "Upstream provider failed"),
    (SQLAlchemyError, 503, ErrorCode.SERVICE_UNAVAILABLE.value, "Service temporarily unavailable"),
]


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Middleware that catches exceptions and returns standardized error responses.

    Maps domain exceptions to HTTP status codes with a stable error code
    and a generic message. The exception text goes to the log only.
    """

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        """Process request and handle any exceptions."""
        try:
            return await call_next(request)
        except Exception as exc:
            return self._handle_exception(request, exc)

    def _handle_exception(self, request: Request, exc: Exception) -> JSONResponse:
        """Convert exception to JSON error response."""
        request_id = self._get_request_id(request)
        status_code, error_code, message, details = map_exception(exc)

        log = logger.bind(
            request_id=request_id,
            path=request.url.path,
            status_code=status_code,
            error_code=error_code,
        )
        if status_code >= 500:
            log.error("request_failed", error=str(exc), exc_type=type(exc).__name__)
        else:
            log.info("request_rejected", error=str(exc))

        error = APIError(
            error_code=error_code,
            message=message,
            details=details,
            request_id=request_id,
            timestamp=datetime.now(UTC),
        )
        headers = {"X-Request-ID": request_id}
        if status_code == 401:
            headers["WWW-Authenticate"] = "Bearer"

        return JSONResponse(
            status_code=status_code,
            content=error.model_dump(mode="json"),
            headers=headers,
        )

    def _get_request_id(self, request: Request) -> str:
        """Extract request ID from state or generate placeholder."""
        if hasattr(request.state, "request_id"):
            rid = request.state.request_id
            return str(rid) if isinstance(rid, UUID) else rid
        return "unknown"


def map_exception(exc: Exception) -> tuple[int, str, str, dict[str, Any] | None]:
    """Map exception to (status_code, error_code, message, details)."""
    for exc_type, status_code, error_code, message in EXCEPTION_MAP:
        if isinstance(exc, exc_type):
            return status_code, error_code, message, _details(exc)
    return 500, ErrorCode.INTERNAL_ERROR.value, "Internal server error", None


def _details(exc: Exception) -> dict[str, Any] | None:
    # Only stable, client-safe attributes
    if isinstance(exc, AccessDeniedError):
        return {"reason": exc.reason}
    if isinstance(exc, ValidationError) and exc.field:
        return {"field": exc.field}
    if isinstance(exc, (NotFoundError, ConflictError)):
        return {"resource": exc.resource}
    if isinstance(exc, DuplicateError):
        return {"resource": exc.resource, "field": exc.field}
    if isinstance(exc, PydanticValidationError):
        return {"errors": exc.errors(include_url=False, include_context=False)}
    return None
