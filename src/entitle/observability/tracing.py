"""OpenTelemetry tracing for Entitle.

FastAPI, httpx and SQLAlchemy are instrumented automatically. The
entitlement paths that matter when a customer asks why access changed
(webhook reconciliation, seat changes, out-of-band sync, SSO sign-in) open
their own spans with ``traced_async`` and tag them with subscription ids.
"""

from __future__ import annotations

import functools
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, ParamSpec, TypeVar
from uuid import UUID

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Span, SpanKind, Status, StatusCode

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Generator

    from fastapi import FastAPI
    from sqlalchemy.ext.asyncio import AsyncEngine

    from entitle.config.settings import Settings

__all__ = [
    "TracingConfig",
    "TracingManager",
    "traced_async",
    "add_span_attributes",
    "record_exception",
    "create_span",
    "get_tracing_manager",
]

P = ParamSpec("P")
R = TypeVar("R")


@dataclass
class TracingConfig:
    """Tracing options; ``otlp_endpoint`` unset means spans are created but never exported."""

    service_name: str = "entitle"
    service_version: str = "0.1.0"
    environment: str = "development"
    otlp_endpoint: str | None = None
    enabled: bool = True

    @classmethod
    def from_settings(cls, settings: Settings, service_version: str = "0.1.0") -> TracingConfig:
        return cls(
            service_name=settings.otel_service_name,
            service_version=service_version,
            environment=settings.ENVIRONMENT,
            otlp_endpoint=settings.otel_exporter_otlp_endpoint,
            enabled=settings.otel_tracing_enabled,
        )


class TracingManager:
    """Manages OpenTelemetry tracing setup and instrumentation."""

    def __init__(self, config: TracingConfig | None = None) -> None:
        self.config = config or TracingConfig()
        self._tracer_provider: TracerProvider | None = None
        self._initialized: bool = False

    @property
    def tracer(self) -> trace.Tracer:
        return trace.get_tracer(self.config.service_name, self.config.service_version)

    def initialize(self) -> None:
        """Set up the TracerProvider and the OTLP exporter, if configured."""
        if self._initialized or not self.config.enabled:
            return

        resource = Resource.create(
            {
                "service.name": self.config.service_name,
                "service.version": self.config.service_version,
                "deployment.environment": self.config.environment,
            }
        )
        self._tracer_provider = TracerProvider(resource=resource)

        if self.config.otlp_endpoint:
            exporter = OTLPSpanExporter(endpoint=self.config.otlp_endpoint)
            self._tracer_provider.add_span_processor(BatchSpanProcessor(exporter))

        trace.set_tracer_provider(self._tracer_provider)
        self._initialized = True

    def instrument_fastapi(self, app: FastAPI) -> None:
        if not self.config.enabled:
            return
        FastAPIInstrumentor.instrument_app(
            app,
            excluded_urls="health,health/db,health/ready,metrics",
        )

    def instrument_sqlalchemy(self, engine: AsyncEngine) -> None:
        if not self.config.enabled:
            return
        SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)

    def instrument_httpx(self) -> None:
        if not self.config.enabled:
            return
        HTTPXClientInstrumentor().instrument()

    def shutdown(self) -> None:
        """Shutdown the tracing system and flush pending spans."""
        if self._tracer_provider is not None:
            self._tracer_provider.shutdown()
            self._initialized = False


_tracing_manager: TracingManager | None = None


def get_tracing_manager(settings: Settings | None = None) -> TracingManager:
    """Process-wide manager, configured from ``settings`` on first use."""
    global _tracing_manager
    if _tracing_manager is None:
        if settings is None:
            from entitle.config.settings import get_settings

            settings = get_settings()
        _tracing_manager = TracingManager(TracingConfig.from_settings(settings))
    return _tracing_manager


def add_span_attributes(**attributes: Any) -> None:
    """Add attributes to the current span, skipping None values."""
    span = trace.get_current_span()
    for key, value in attributes.items():
        if value is None:
            continue
        if isinstance(value, UUID):
            value = str(value)
        elif isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, Enum):
            value = value.value
        span.set_attribute(key, value)


def record_exception(exception: BaseException) -> None:
    """Record an exception on the current span and mark it failed."""
    span = trace.get_current_span()
    span.record_exception(exception)
    span.set_status(Status(StatusCode.ERROR, str(exception)))


@contextmanager
def create_span(name: str, kind: SpanKind = SpanKind.INTERNAL) -> Generator[Span, None, None]:
    with trace.get_tracer("entitle").start_as_current_span(name, kind=kind) as span:
        yield span


def traced_async(
    name: str | None = None,
    kind: SpanKind = SpanKind.INTERNAL,
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """Decorator to trace an asynchronous function.

    Args:
        name: Span name. Uses the qualified function name if not provided.
        kind: Span kind.
    """

    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        span_name = name or f"{func.__module__}.{func.__qualname__}"

        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            with create_span(span_name, kind) as span:
                try:
                    result = await func(*args, **kwargs)
                    span.set_status(Status(StatusCode.OK))
                    return result
                except Exception as e:
                    record_exception(e)
                    raise

        return wrapper

    return decorator
