"""
Prometheus metrics for the admission webhook.

Each ``WebhookMetrics`` instance owns its own ``CollectorRegistry`` so that
several servers (or tests) can coexist in one process without colliding on
metric names.
"""

import logging
import time
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from deployment_hpa_validator.errors import WebhookError

logger = logging.getLogger(__name__)

REQUEST_DURATION_BUCKETS = [0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]


class WebhookMetrics:
    """Metric families recorded by the webhook and its certificate manager."""

    content_type = CONTENT_TYPE_LATEST

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize metrics.

        Args:
            registry: Registry to register with; a fresh one by default
        """
        self.registry = registry if registry is not None else CollectorRegistry()

        self.requests_total = Counter(
            "webhook_requests_total",
            "Total number of HTTP requests handled by the webhook",
            ["method", "status", "resource_type"],
            registry=self.registry,
        )
        self.request_duration = Histogram(
            "webhook_request_duration_seconds",
            "Time spent handling HTTP requests",
            ["method", "resource_type"],
            buckets=REQUEST_DURATION_BUCKETS,
            registry=self.registry,
        )
        self.validation_errors_total = Counter(
            "webhook_validation_errors_total",
            "Total number of errors rendered into admission responses",
            ["error_type", "resource_type"],
            registry=self.registry,
        )
        self.certificate_expiry_days = Gauge(
            "webhook_certificate_expiry_days",
            "Days until the serving certificate expires",
            registry=self.registry,
        )
        self.certificate_valid = Gauge(
            "webhook_certificate_valid",
            "Serving certificate validity (1=valid, 0=invalid)",
            registry=self.registry,
        )
        self.certificate_reloads_total = Counter(
            "webhook_certificate_reloads_total",
            "Certificate reload attempts",
            ["status"],
            registry=self.registry,
        )
        self.certificate_monitoring_errors_total = Counter(
            "webhook_certificate_monitoring_errors_total",
            "Errors raised while checking certificate files for changes",
            ["error_type"],
            registry=self.registry,
        )
        self.kubernetes_api_requests_total = Counter(
            "webhook_kubernetes_api_requests_total",
            "Kubernetes API calls issued by the webhook",
            ["method", "resource", "status"],
            registry=self.registry,
        )
        self.webhook_up = Gauge(
            "webhook_up",
            "Whether the webhook server is serving (1=up, 0=down)",
            registry=self.registry,
        )

    @asynccontextmanager
    async def track_request(self, method: str, resource_type: str = "unknown"):
        """
        Context manager timing one HTTP request.

        The caller stores the response status in ``outcome["status"]``; an
        exception escaping the block is recorded with its HTTP status, or 500.

        Args:
            method: HTTP method
            resource_type: Kind of the object under admission, when known
        """
        start_time = time.perf_counter()
        outcome = {"status": 200, "resource_type": resource_type}
        try:
            yield outcome
        except Exception as e:
            outcome["status"] = getattr(e, "status", 500)
            raise
        finally:
            labels_resource = outcome["resource_type"] or "unknown"
            self.requests_total.labels(
                method=method,
                status=str(outcome["status"]),
                resource_type=labels_resource,
            ).inc()
            self.request_duration.labels(
                method=method, resource_type=labels_resource
            ).observe(time.perf_counter() - start_time)

    def record_error(self, error: WebhookError) -> None:
        self.validation_errors_total.labels(
            error_type=error.kind.value, resource_type=error.resource_type_label
        ).inc()

    def record_kubernetes_request(self, method: str, resource: str, success: bool) -> None:
        self.kubernetes_api_requests_total.labels(
            method=method, resource=resource, status="success" if success else "error"
        ).inc()

    def record_certificate(self, not_after: datetime) -> None:
        """
        Update certificate gauges from the active certificate's expiry.

        Args:
            not_after: Expiry timestamp (timezone-aware)
        """
        remaining = (not_after - datetime.now(UTC)).total_seconds() / 86400
        self.certificate_expiry_days.set(remaining)
        self.certificate_valid.set(1 if remaining > 0 else 0)

    def record_certificate_invalid(self) -> None:
        self.certificate_valid.set(0)

    def record_certificate_reload(self, success: bool) -> None:
        self.certificate_reloads_total.labels(
            status="success" if success else "failure"
        ).inc()

    def record_monitoring_error(self, error: BaseException) -> None:
        error_type = error.kind.value if isinstance(error, WebhookError) else type(error).__name__
        self.certificate_monitoring_errors_total.labels(error_type=error_type).inc()

    def set_up(self, up: bool) -> None:
        self.webhook_up.set(1 if up else 0)

    def render(self) -> bytes:
        """Exposition-format dump of this registry."""
        return generate_latest(self.registry)

    def sample(self, name: str, labels: dict[str, str] | None = None) -> float:
        """Current value of one sample, 0 when it has not been recorded."""
        return self.registry.get_sample_value(name, labels or {}) or 0.0
