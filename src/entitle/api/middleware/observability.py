"""Observability middleware for metrics and tracing."""

import re
import time
from collections.abc import Callable

from fastapi import Request, Response
from opentelemetry.trace import SpanKind
from starlette.middleware.base import BaseHTTPMiddleware

from entitle.observability.metrics import record_http_request
from entitle.observability.tracing import add_span_attributes, create_span, record_exception

_UUID = re.compile(r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.IGNORECASE)


class ObservabilityMiddleware(BaseHTTPMiddleware):
    """Records Prometheus request metrics and an OpenTelemetry server span.

    Health and metrics endpoints are excluded to avoid noise.
    """

    EXCLUDED_PATHS = {"/health", "/health/db", "/health/ready", "/metrics"}

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request with observability instrumentation."""
        path = request.url.path
        if path in self.EXCLUDED_PATHS:
            return await call_next(request)

        normalized_path = self._normalize_path(path)
        method = request.method
        start_time = time.perf_counter()

        with create_span(f"HTTP {method} {normalized_path}", kind=SpanKind.SERVER):
            add_span_attributes(
                http_method=method,
                http_route=normalized_path,
                http_user_agent=request.headers.get("User-Agent"),
            )
            try:
                response = await call_next(request)
            except Exception as exc:
                record_exception(exc)
                add_span_attributes(http_status_code=500)
                record_http_request(method, normalized_path, 500, time.perf_counter() - start_time)
                raise

            add_span_attributes(http_status_code=response.status_code)
            record_http_request(
                method, normalized_path, response.status_code, time.perf_counter() - start_time
            )
            return response

    def _normalize_path(self, path: str) -> str:
        """Replace ids in the path with placeholders to bound metric cardinality."""
        path = _UUID.sub("{id}", path)
        return re.sub(r"/\d+(?=/|$)", "/{id}", path)
