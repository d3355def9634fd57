"""
Structured logging utilities for the admission webhook.

This module provides request ID tracking, structured JSON log formatting and
a filter for noisy probe traffic.
"""

import json
import logging
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime

# Context variable carrying the admission request ID across awaits
request_id: ContextVar[str] = ContextVar("request_id", default="")

# Paths hit by kubelet probes and scrapers
HEALTH_PROBE_PATHS = frozenset({"/health", "/healthz", "/readyz", "/livez", "/metrics"})

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class HealthProbeFilter(logging.Filter):
    """
    Logging filter that suppresses health probe and metrics endpoint logs.

    Kubelet probes every few seconds; logging each one buries admission
    decisions in noise.
    """

    def __init__(self, suppress_health_logs: bool = True):
        super().__init__()
        self.suppress_health_logs = suppress_health_logs

    def filter(self, record: logging.LogRecord) -> bool:
        if not self.suppress_health_logs:
            return True
        path = getattr(record, "path", None)
        if path is not None:
            return path not in HEALTH_PROBE_PATHS
        message = record.getMessage()
        return all(probe not in message for probe in HEALTH_PROBE_PATHS)


class RequestIDFilter(logging.Filter):
    """Logging filter that adds the current request ID to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = request_id.get()
        return True


class StructuredFormatter(logging.Formatter):
    """
    Structured JSON formatter with request ID support.

    One JSON object per line, suitable for log shippers that parse stdout.
    """

    structured_fields = (
        "component",
        "resource_type",
        "resource_name",
        "namespace",
        "operation",
        "method",
        "path",
        "status",
        "duration",
        "allowed",
        "error_kind",
        "error_code",
        "retryable",
        "error_type",
        "http_status",
        "cert_file",
        "expires_in_days",
        "environment",
    )

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", ""),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for field in self.structured_fields:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        return json.dumps(log_data, default=str)


def generate_request_id() -> str:
    """Short ID used when the API server did not supply a UID."""
    return str(uuid.uuid4())[:8]


def set_request_id(value: str) -> str:
    """
    Set the request ID for the current context.

    Args:
        value: Request ID to set

    Returns:
        The request ID that was set
    """
    request_id.set(value)
    return value


def get_request_id() -> str:
    return request_id.get()


def setup_structured_logging(
    log_level: str = "info",
    log_format: str = "json",
    log_health_probes: bool = False,
) -> None:
    """
    Set up structured logging for the webhook.

    Args:
        log_level: debug, info, warn or error
        log_format: json for structured output, text for human-readable lines
        log_health_probes: Whether to log probe and metrics requests
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()

    if log_format == "json":
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(request_id)s - %(name)s - %(levelname)s - %(message)s"
        )

    handler.setFormatter(formatter)
    handler.addFilter(RequestIDFilter())

    if not log_health_probes:
        handler.addFilter(HealthProbeFilter(suppress_health_logs=True))

    root_logger.addHandler(handler)
    root_logger.setLevel(_LEVELS.get(log_level.lower(), logging.INFO))

    # Third-party libraries
    logging.getLogger("kubernetes").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.server").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.web").setLevel(logging.WARNING)
