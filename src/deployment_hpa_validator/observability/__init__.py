"""
Observability utilities for the admission webhook.

This module provides metrics, health checks and structured logging for
production monitoring and troubleshooting.
"""

from .health import HealthChecker, HealthCheckResult
from .logging import setup_structured_logging
from .metrics import WebhookMetrics

__all__ = [
    "HealthCheckResult",
    "HealthChecker",
    "WebhookMetrics",
    "setup_structured_logging",
]
