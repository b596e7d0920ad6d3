"""Metrics and tracing for Entitle.

Usage:
    from entitle.observability import get_tracing_manager, record_webhook_event

    manager = get_tracing_manager(settings)
    manager.initialize()
    manager.instrument_fastapi(app)

    record_webhook_event("subscription.updated", "applied")
"""

from .metrics import (
    MetricsManager,
    get_metrics,
    get_metrics_manager,
    observe_provider_call,
    record_access_verdict,
    record_handoff,
    record_http_request,
    record_seat_operation,
    record_sync_report,
    record_webhook_event,
)
from .tracing import (
    TracingConfig,
    TracingManager,
    add_span_attributes,
    create_span,
    get_tracing_manager,
    record_exception,
    traced_async,
)

__all__ = [
    "MetricsManager",
    "get_metrics",
    "get_metrics_manager",
    "observe_provider_call",
    "record_access_verdict",
    "record_handoff",
    "record_http_request",
    "record_seat_operation",
    "record_sync_report",
    "record_webhook_event",
    "TracingConfig",
    "TracingManager",
    "add_span_attributes",
    "create_span",
    "get_tracing_manager",
    "record_exception",
    "traced_async",
]
