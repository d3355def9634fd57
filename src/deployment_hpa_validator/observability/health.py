"""
Health check utilities for the admission webhook.

Kubernetes API reachability, the serving certificate and a validator smoke
test against a synthetic two-replica Deployment gate health. The metrics
registry is reported too but can only warn. The report builders return
``(http_status, body)`` pairs for the ``/health``, ``/healthz``, ``/readyz``
and ``/livez`` endpoints.
"""

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from kubernetes import client

from deployment_hpa_validator.constants import (
    CERT_EXPIRY_HEALTH_CRITICAL_DAYS,
    CERT_EXPIRY_HEALTH_WARNING_DAYS,
    HEALTH_CHECK_DEPLOYMENT_NAME,
    HEALTH_CHECK_NAMESPACE,
    KUBERNETES_READ_TIMEOUT_SECONDS,
)
from deployment_hpa_validator.models import DeploymentProjection

if TYPE_CHECKING:
    from deployment_hpa_validator.observability.metrics import WebhookMetrics
    from deployment_hpa_validator.services import CertificateManager, Validator

logger = logging.getLogger(__name__)

HEALTHY = "healthy"
UNHEALTHY = "unhealthy"
WARNING = "warning"


@dataclass
class HealthCheckResult:
    """Result of a health check operation."""

    name: str
    status: str  # "healthy", "warning" or "unhealthy"
    message: str
    details: dict[str, Any] | None = None
    duration: float = 0.0

    @property
    def failed(self) -> bool:
        return self.status == UNHEALTHY

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"status": self.status, "message": self.message}
        if self.details:
            data["details"] = self.details
        return data


def _now() -> str:
    return datetime.now(UTC).isoformat()


class HealthChecker:
    """Performs the webhook's component health checks."""

    def __init__(
        self,
        validator: "Validator",
        certificate_manager: "CertificateManager",
        k8s_client: client.ApiClient | None = None,
        version_api: client.VersionApi | None = None,
        metrics: "WebhookMetrics | None" = None,
        version: str = "",
        environment: str = "",
    ):
        """
        Initialize health checker.

        Args:
            validator: Validator exercised by the smoke test
            certificate_manager: Source of the active certificate
            k8s_client: Kubernetes API client, created lazily if not provided
            version_api: Pre-built version API, mainly for tests
            metrics: Collector whose registry backs /metrics
            version: Build version reported by /health
            environment: Environment reported by /health
        """
        self.validator = validator
        self.certificate_manager = certificate_manager
        self.k8s_client = k8s_client
        self._version_api = version_api
        self.metrics = metrics
        self.version = version
        self.environment = environment

    @property
    def version_api(self) -> client.VersionApi:
        if self._version_api is None:
            if self.k8s_client is None:
                from deployment_hpa_validator.utils.kubernetes import get_kubernetes_client

                self.k8s_client = get_kubernetes_client()
            self._version_api = client.VersionApi(self.k8s_client)
        return self._version_api

    async def check_all(self) -> dict[str, HealthCheckResult]:
        """Run the Kubernetes, certificate, validator and metrics checks."""
        return {
            "kubernetes": await self.check_kubernetes(),
            "certificate": self.check_certificate(),
            "validator": await self.check_validator(),
            "metrics": self.check_metrics(),
        }

    async def check_readiness(self) -> dict[str, HealthCheckResult]:
        """Run the checks that gate traffic: Kubernetes API and certificate."""
        return {
            "kubernetes": await self.check_kubernetes(),
            "certificate": self.check_certificate(),
        }

    async def check_kubernetes(self) -> HealthCheckResult:
        """Check Kubernetes API connectivity."""
        start_time = time.perf_counter()
        try:
            info = await asyncio.to_thread(
                self.version_api.get_code,
                _request_timeout=KUBERNETES_READ_TIMEOUT_SECONDS,
            )
        except Exception as e:
            logger.warning(f"Kubernetes API health check failed: {e}")
            return HealthCheckResult(
                name="kubernetes",
                status=UNHEALTHY,
                message=f"Kubernetes API is not reachable: {type(e).__name__}",
                duration=time.perf_counter() - start_time,
            )

        duration = time.perf_counter() - start_time
        return HealthCheckResult(
            name="kubernetes",
            status=HEALTHY,
            message="Kubernetes API is accessible",
            details={
                "server_version": getattr(info, "git_version", None) or "unknown",
                "response_time_ms": round(duration * 1000, 2),
            },
            duration=duration,
        )

    def check_certificate(self) -> HealthCheckResult:
        """Check that a certificate is loaded and not about to expire."""
        info = self.certificate_manager.get_certificate_info()
        if info is None:
            return HealthCheckResult(
                name="certificate",
                status=UNHEALTHY,
                message="No serving certificate loaded",
            )

        remaining = info.remaining_days()
        details = {
            "subject": info.subject,
            "not_after": info.not_after.isoformat(),
            "days_until_expiry": remaining,
        }
        if remaining <= CERT_EXPIRY_HEALTH_CRITICAL_DAYS:
            return HealthCheckResult(
                name="certificate",
                status=UNHEALTHY,
                message=f"Certificate expires in {remaining} days",
                details=details,
            )
        if remaining <= CERT_EXPIRY_HEALTH_WARNING_DAYS:
            return HealthCheckResult(
                name="certificate",
                status=WARNING,
                message=f"Certificate expires in {remaining} days",
                details=details,
            )
        return HealthCheckResult(
            name="certificate",
            status=HEALTHY,
            message="Certificate is valid",
            details=details,
        )

    async def check_validator(self) -> HealthCheckResult:
        """Validate a synthetic two-replica Deployment, which must pass."""
        synthetic = DeploymentProjection(
            name=HEALTH_CHECK_DEPLOYMENT_NAME,
            namespace=HEALTH_CHECK_NAMESPACE,
            replicas=2,
        )
        try:
            await self.validator.validate_deployment(synthetic)
        except Exception as e:
            return HealthCheckResult(
                name="validator",
                status=UNHEALTHY,
                message=f"Validator smoke test failed: {e}",
            )
        return HealthCheckResult(
            name="validator", status=HEALTHY, message="Validator is functional"
        )

    def check_metrics(self) -> HealthCheckResult:
        """
        Check that the metrics registry can be rendered.

        Reports healthy or warning, never unhealthy.
        """
        if self.metrics is None:
            return HealthCheckResult(
                name="metrics", status=WARNING, message="No metrics collector configured"
            )
        try:
            self.metrics.render()
        except Exception as e:
            logger.warning(f"Metrics health check failed: {e}")
            return HealthCheckResult(
                name="metrics",
                status=WARNING,
                message=f"Metrics registry cannot be rendered: {type(e).__name__}",
            )
        return HealthCheckResult(
            name="metrics",
            status=HEALTHY,
            message="Metrics are available",
            details={"endpoint": "/metrics"},
        )

    @staticmethod
    def components(results: dict[str, HealthCheckResult]) -> dict[str, Any]:
        return {name: result.to_dict() for name, result in results.items()}

    @staticmethod
    def failed_components(results: dict[str, HealthCheckResult]) -> list[str]:
        return [name for name, result in results.items() if result.failed]

    async def health_report(self) -> tuple[int, dict[str, Any]]:
        """Detailed report for /health."""
        results = await self.check_all()
        failed = self.failed_components(results)
        return (503 if failed else 200), {
            "status": UNHEALTHY if failed else HEALTHY,
            "message": (
                f"Unhealthy components: {', '.join(failed)}"
                if failed
                else "All components are healthy"
            ),
            "timestamp": _now(),
            "components": self.components(results),
            "version": self.version,
            "environment": self.environment,
        }

    async def healthz_report(self) -> tuple[int, dict[str, Any]]:
        """Kubernetes-style report for /healthz."""
        results = await self.check_all()
        failed = self.failed_components(results)
        return (503 if failed else 200), {
            "status": "error" if failed else "ok",
            "message": (
                f"Health check failed: {', '.join(failed)}" if failed else "ok"
            ),
            "timestamp": _now(),
            "components": self.components(results),
        }

    async def readiness_report(self) -> tuple[int, dict[str, Any]]:
        """Report for /readyz."""
        results = await self.check_readiness()
        failed = self.failed_components(results)
        return (503 if failed else 200), {
            "status": "not_ready" if failed else "ready",
            "timestamp": _now(),
            "components": self.components(results),
        }

    @staticmethod
    def liveness_report() -> tuple[int, dict[str, Any]]:
        """Report for /livez; the process answering is proof of life."""
        return 200, {"status": "alive", "timestamp": _now(), "pid": os.getpid()}
