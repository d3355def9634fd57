#!/usr/bin/env python3
"""
Deployment/HPA validator - main entry point for the admission webhook.

Usage:
    deployment-hpa-validator
    # Or:
    python -m deployment_hpa_validator.main

Environment Variables:
    ENVIRONMENT: development, staging or production (selects configs/<env>.yaml)
    CONFIG_FILE: Explicit YAML configuration file
    WEBHOOK_PORT, TLS_CERT_FILE, TLS_KEY_FILE, LOG_LEVEL, ...: see settings.py
"""

import asyncio
import logging
import signal
import sys

from deployment_hpa_validator import __version__
from deployment_hpa_validator.errors import WebhookError
from deployment_hpa_validator.observability.logging import setup_structured_logging
from deployment_hpa_validator.observability.metrics import WebhookMetrics
from deployment_hpa_validator.services import CertificateManager, Validator
from deployment_hpa_validator.settings import Settings, load_settings
from deployment_hpa_validator.utils.kubernetes import get_kubernetes_client
from deployment_hpa_validator.webhooks import AdmissionServer, ErrorHandler

logger = logging.getLogger(__name__)


def build_server(settings: Settings) -> AdmissionServer:
    """
    Wire the webhook's components together.

    The serving certificate is loaded here; a missing or invalid certificate
    aborts startup.

    Raises:
        WebhookError: Certificate error if the certificate cannot be loaded
    """
    metrics = WebhookMetrics()
    k8s_client = get_kubernetes_client()

    certificate_manager = CertificateManager(
        settings.tls_cert_file,
        settings.tls_key_file,
        ca_file=settings.tls_ca_file,
        metrics=metrics,
        check_interval=settings.cert_check_interval_seconds,
    )
    certificate_manager.install(certificate_manager.load_certificate())
    try:
        certificate_manager.validate_certificate_chain()
    except WebhookError as e:
        logger.warning(f"Certificate chain validation failed: {e}")

    validator = Validator(k8s_client=k8s_client, metrics=metrics)
    error_handler = ErrorHandler(settings.environment, metrics)

    return AdmissionServer(
        settings=settings,
        validator=validator,
        certificate_manager=certificate_manager,
        metrics=metrics,
        error_handler=error_handler,
    )


async def run(settings: Settings) -> None:
    """Serve until SIGINT or SIGTERM, then shut down gracefully."""
    server = build_server(settings)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    await server.start()
    try:
        await stop_event.wait()
        logger.info("Received shutdown signal")
    finally:
        await server.stop()


def main() -> None:
    """
    Main entry point for the webhook.

    This function:
    1. Loads and validates settings
    2. Configures logging
    3. Builds the server and serves until a shutdown signal arrives
    """
    try:
        settings = load_settings()
    except WebhookError as e:
        logging.basicConfig(level=logging.ERROR)
        logging.error(f"Invalid configuration: {e}")
        sys.exit(1)

    setup_structured_logging(
        log_level=settings.log_level,
        log_format=settings.log_format,
        log_health_probes=settings.log_health_probes,
    )
    if not settings.version:
        settings = settings.model_copy(update={"version": __version__})
    logger.info(
        f"Starting deployment-hpa-validator {settings.version}",
        extra={"environment": settings.environment},
    )
    logger.info(f"Configuration: {settings.summary()}")

    try:
        asyncio.run(run(settings))
    except WebhookError as e:
        logger.error(f"Webhook failed to start: {e}", extra={"error_code": e.code})
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Received shutdown signal")
        sys.exit(0)


if __name__ == "__main__":
    main()
