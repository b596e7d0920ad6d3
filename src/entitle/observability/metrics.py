"""Prometheus metrics for Entitle.

Entitlement-facing series:
- billing webhook deliveries and out-of-band sync passes, by outcome
- access verdicts per surface (strict desktop, permissive dashboard, license)
- seat, license and team operations
- desktop handoff tokens (minted, redeemed, rejected)

Plumbing series: provider call latency and HTTP requests.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    Info,
    generate_latest,
)

if TYPE_CHECKING:
    from collections.abc import Generator

    from entitle.billing.sync import SyncReport

PREFIX = "entitle"

WEBHOOK_EVENTS = Counter(
    f"{PREFIX}_billing_webhook_events_total",
    "Billing webhook deliveries by event type and reconciliation outcome",
    ["event_type", "outcome"],
)

SYNC_SUBSCRIPTIONS = Counter(
    f"{PREFIX}_billing_sync_subscriptions_total",
    "Subscriptions checked by out-of-band sync, by outcome",
    ["outcome"],
)

SYNC_PASS_SIZE = Histogram(
    f"{PREFIX}_billing_sync_pass_size",
    "Subscriptions checked per sync pass",
    buckets=(1, 10, 50, 100, 500, 1000, 5000),
)

ACCESS_VERDICTS = Counter(
    f"{PREFIX}_access_verdicts_total",
    "Access evaluations by surface and verdict",
    ["mode", "verdict"],
)

SEAT_OPERATIONS = Counter(
    f"{PREFIX}_seat_operations_total",
    "Seat, license and team member operations by outcome",
    ["operation", "outcome"],
)

HANDOFF_TOKENS = Counter(
    f"{PREFIX}_handoff_tokens_total",
    "Desktop handoff tokens by lifecycle step",
    ["step"],
)

PROVIDER_CALL_DURATION = Histogram(
    f"{PREFIX}_provider_call_duration_seconds",
    "Latency of billing and identity provider calls",
    ["service", "operation", "status"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

PROVIDER_CALL_COUNT = Counter(
    f"{PREFIX}_provider_calls_total",
    "Billing and identity provider calls",
    ["service", "operation", "status"],
)

HTTP_REQUEST_DURATION = Histogram(
    f"{PREFIX}_http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status_code"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

HTTP_REQUEST_COUNT = Counter(
    f"{PREFIX}_http_requests_total",
    "HTTP requests",
    ["method", "endpoint", "status_code"],
)

SERVICE_INFO = Info(f"{PREFIX}_service", "Service information")


class MetricsManager:
    """Owns the registry that ``/metrics`` exports.

    Args:
        registry: Registry to export; the process default unless a test
            supplies its own
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or REGISTRY
        self._initialized = False

    def initialize(
        self,
        service_name: str = "entitle",
        service_version: str = "0.1.0",
        environment: str = "development",
        *,
        billing_provider: str = "stripe",
        webhook_format: str = "stripe",
    ) -> None:
        """Publish service info once per process."""
        if self._initialized:
            return
        SERVICE_INFO.info(
            {
                "name": service_name,
                "version": service_version,
                "environment": environment,
                "billing_provider": billing_provider,
                "webhook_format": webhook_format,
            }
        )
        self._initialized = True

    def get_metrics(self) -> bytes:
        return generate_latest(self.registry)


_metrics_manager: MetricsManager | None = None


def get_metrics_manager() -> MetricsManager:
    global _metrics_manager
    if _metrics_manager is None:
        _metrics_manager = MetricsManager()
    return _metrics_manager


def get_metrics() -> bytes:
    """Current metrics in the Prometheus text format."""
    return get_metrics_manager().get_metrics()


@contextmanager
def observe_provider_call(
    service: str,
    operation: str,
) -> Generator[dict[str, Any], None, None]:
    """Time one billing or identity provider call.

    Yields a dict; set ``status`` (``timeout``, ``rejected``) to label a
    failure more precisely than the default ``error``.
    """
    context: dict[str, Any] = {"status": "success"}
    start_time = time.perf_counter()

    try:
        yield context
    except Exception:
        if context.get("status") == "success":
            context["status"] = "error"
        raise
    finally:
        duration = time.perf_counter() - start_time
        status = context.get("status", "success")
        PROVIDER_CALL_DURATION.labels(service=service, operation=operation, status=status).observe(
            duration
        )
        PROVIDER_CALL_COUNT.labels(service=service, operation=operation, status=status).inc()


def record_webhook_event(event_type: str, outcome: str) -> None:
    WEBHOOK_EVENTS.labels(event_type=event_type, outcome=outcome).inc()


def record_sync_report(report: SyncReport) -> None:
    """Record one sync pass: per-outcome counts plus provider failures."""
    for outcome, count in report.outcomes.items():
        SYNC_SUBSCRIPTIONS.labels(outcome=outcome).inc(count)
    if report.failed:
        SYNC_SUBSCRIPTIONS.labels(outcome="provider_failed").inc(report.failed)
    SYNC_PASS_SIZE.observe(report.checked)


def record_access_verdict(mode: str, verdict: str) -> None:
    ACCESS_VERDICTS.labels(mode=mode, verdict=verdict).inc()


def record_seat_operation(operation: str, outcome: str) -> None:
    SEAT_OPERATIONS.labels(operation=operation, outcome=outcome).inc()


def record_handoff(step: str) -> None:
    """``step`` is one of minted, redeemed, rejected or denied."""
    HANDOFF_TOKENS.labels(step=step).inc()


def record_http_request(
    method: str,
    endpoint: str,
    status_code: int,
    duration_seconds: float,
) -> None:
    HTTP_REQUEST_DURATION.labels(
        method=method, endpoint=endpoint, status_code=str(status_code)
    ).observe(duration_seconds)
    HTTP_REQUEST_COUNT.labels(method=method, endpoint=endpoint, status_code=str(status_code)).inc()
