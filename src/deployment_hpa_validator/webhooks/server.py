"""
HTTPS admission server.

Serves the validating webhook endpoint and the health and metrics surfaces
on a single aiohttp application. The listener's TLS context comes from the
certificate manager and follows certificate rotation without a restart.

Endpoints:
- ``POST /validate``: AdmissionReview in, AdmissionReview out
- ``GET /health``, ``/healthz``, ``/readyz``, ``/livez``: probes
- ``GET /metrics``: Prometheus exposition
"""

import asyncio
import logging
import time

from aiohttp import web
from pydantic import ValidationError

from deployment_hpa_validator.constants import (
    CODE_API_TIMEOUT,
    CODE_INTERNAL_PANIC,
    CODE_INTERNAL_UNKNOWN,
    CODE_INVALID_RESOURCE,
    KIND_DEPLOYMENT,
    KIND_HPA,
    MAX_ADMISSION_BODY_BYTES,
    SECURITY_HEADERS,
)
from deployment_hpa_validator.errors import ErrorKind, WebhookError, internal_error
from deployment_hpa_validator.models import (
    AdmissionRequest,
    AdmissionResponse,
    AdmissionReview,
    DeploymentProjection,
    HPAProjection,
)
from deployment_hpa_validator.observability.health import HealthChecker
from deployment_hpa_validator.observability.logging import (
    generate_request_id,
    set_request_id,
)
from deployment_hpa_validator.observability.metrics import WebhookMetrics
from deployment_hpa_validator.services import (
    CertificateManager,
    TLSCertificate,
    Validator,
)
from deployment_hpa_validator.settings import Settings
from deployment_hpa_validator.webhooks.error_handler import ErrorHandler

logger = logging.getLogger(__name__)

VALIDATE_PATH = "/validate"

# Kind of the object under admission, read by the metrics middleware
RESOURCE_TYPE_KEY = web.RequestKey("resource_type", str)

# Operations that can never introduce a single-replica/HPA pairing
UNVALIDATED_OPERATIONS = frozenset({"DELETE", "CONNECT"})


class AdmissionServer:
    """aiohttp application and TLS listener for the admission webhook."""

    def __init__(
        self,
        settings: Settings,
        validator: Validator,
        certificate_manager: CertificateManager,
        metrics: WebhookMetrics,
        error_handler: ErrorHandler | None = None,
        health_checker: HealthChecker | None = None,
        host: str = "0.0.0.0",
    ):
        """
        Initialize the admission server.

        Args:
            settings: Webhook settings
            validator: Rule engine for Deployments and HPAs
            certificate_manager: Source of the serving certificate
            metrics: Metrics collector served on /metrics
            error_handler: Renders errors into responses
            health_checker: Component checks behind the probe endpoints
            host: Interface to bind
        """
        self.settings = settings
        self.validator = validator
        self.certificate_manager = certificate_manager
        self.metrics = metrics
        self.error_handler = error_handler or ErrorHandler(settings.environment, metrics)
        self.health_checker = health_checker or HealthChecker(
            validator,
            certificate_manager,
            metrics=metrics,
            version=settings.version,
            environment=settings.environment,
        )
        self.host = host
        self.runner: web.AppRunner | None = None
        self.site: web.TCPSite | None = None
        self.app = self.build_app()

    def build_app(self) -> web.Application:
        app = web.Application(
            middlewares=[self._request_middleware],
            client_max_size=MAX_ADMISSION_BODY_BYTES,
        )
        app.on_response_prepare.append(self._add_security_headers)

        app.router.add_post(VALIDATE_PATH, self.handle_validate)
        if self.settings.health_enabled:
            app.router.add_get("/health", self.handle_health)
            app.router.add_get("/healthz", self.handle_healthz)
            app.router.add_get("/readyz", self.handle_readyz)
            app.router.add_get("/livez", self.handle_livez)
        if self.settings.metrics_enabled:
            app.router.add_get("/metrics", self.handle_metrics)
        return app

    @web.middleware
    async def _request_middleware(self, request: web.Request, handler) -> web.StreamResponse:
        set_request_id(generate_request_id())

        async with self.metrics.track_request(request.method) as outcome:
            if request.path == VALIDATE_PATH and request.method != "POST":
                response: web.StreamResponse = web.json_response(
                    {"error": "method not allowed"},
                    status=405,
                    headers={"Allow": "POST"},
                )
            else:
                response = await handler(request)
            outcome["status"] = response.status
            outcome["resource_type"] = request.get(RESOURCE_TYPE_KEY, "unknown")

        logger.debug(
            f"{request.method} {request.path} -> {response.status}",
            extra={"method": request.method, "path": request.path, "status": response.status},
        )
        return response

    @staticmethod
    async def _add_security_headers(
        request: web.Request, response: web.StreamResponse
    ) -> None:
        response.headers.update(SECURITY_HEADERS)

    async def handle_validate(self, request: web.Request) -> web.Response:
        try:
            body = await request.json()
            review = AdmissionReview.model_validate(body)
        except ValueError as e:
            logger.warning(f"Rejected malformed AdmissionReview: {e}")
            return web.json_response(
                {"error": f"invalid AdmissionReview: {type(e).__name__}"}, status=400
            )
        if review.request is None:
            # Still an AdmissionReview exchange: answer with a denied review
            response = self.error_handler.handle_error(
                WebhookError(
                    ErrorKind.INTERNAL,
                    CODE_INTERNAL_UNKNOWN,
                    "AdmissionReview has no request",
                ),
                None,
            )
            return web.json_response(AdmissionReview.for_response(response).to_wire())

        admission_request = review.request
        request[RESOURCE_TYPE_KEY] = admission_request.kind.kind or "unknown"
        response = await self.review(admission_request)
        return web.json_response(AdmissionReview.for_response(response).to_wire())

    async def review(self, admission_request: AdmissionRequest) -> AdmissionResponse:
        """
        Decide one admission request.

        Always returns a response echoing the request UID; unexpected
        failures are rendered as internal errors.
        """
        start_time = time.perf_counter()
        kind = admission_request.kind.kind

        if kind not in (KIND_DEPLOYMENT, KIND_HPA):
            return AdmissionResponse.allow(admission_request.uid)
        if admission_request.operation in UNVALIDATED_OPERATIONS:
            return AdmissionResponse.allow(admission_request.uid)
        if self.settings.should_skip_namespace(admission_request.namespace):
            logger.debug(f"Skipping validation in namespace {admission_request.namespace}")
            return AdmissionResponse.allow(admission_request.uid)

        timeout = self.settings.request_timeout_seconds
        error: BaseException | None
        try:
            async with asyncio.timeout(timeout):
                error = await self._validate(admission_request)
        except TimeoutError as e:
            error = WebhookError(
                ErrorKind.KUBERNETES_API,
                CODE_API_TIMEOUT,
                f"Validation timed out after {timeout}s",
                suggestions=["Check the Kubernetes API server latency", "Retry the request"],
                internal_error=e,
            )
        except Exception as e:
            logger.exception("Unexpected failure while validating admission request")
            error = internal_error("admission server", e, CODE_INTERNAL_PANIC)

        response = self.error_handler.handle_error(error, admission_request)
        logger.info(
            f"{kind} {admission_request.namespace}/{admission_request.name} "
            f"{'allowed' if response.allowed else 'denied'}",
            extra={
                "resource_type": kind,
                "resource_name": admission_request.name,
                "namespace": admission_request.namespace,
                "operation": admission_request.operation,
                "allowed": response.allowed,
                "duration": time.perf_counter() - start_time,
            },
        )
        return response

    async def _validate(self, admission_request: AdmissionRequest) -> WebhookError | None:
        kind = admission_request.kind.kind
        resource: DeploymentProjection | HPAProjection
        try:
            if kind == KIND_DEPLOYMENT:
                resource = DeploymentProjection.from_object(
                    admission_request.object,
                    admission_request.name,
                    admission_request.namespace,
                )
            else:
                resource = HPAProjection.from_object(
                    admission_request.object,
                    admission_request.name,
                    admission_request.namespace,
                )
        except (ValueError, ValidationError) as e:
            return WebhookError(
                ErrorKind.INTERNAL,
                CODE_INVALID_RESOURCE,
                f"Failed to decode {kind}: {e}",
                internal_error=e,
            )

        if self.settings.should_skip_by_labels(resource.labels):
            logger.debug(f"Skipping validation of {kind} {resource.name} by label")
            return None

        try:
            if isinstance(resource, DeploymentProjection):
                await self.validator.validate_deployment(resource)
            else:
                await self.validator.validate_hpa(resource)
        except WebhookError as e:
            return e
        return None

    async def handle_health(self, request: web.Request) -> web.Response:
        status, body = await self.health_checker.health_report()
        return web.json_response(body, status=status)

    async def handle_healthz(self, request: web.Request) -> web.Response:
        status, body = await self.health_checker.healthz_report()
        return web.json_response(body, status=status)

    async def handle_readyz(self, request: web.Request) -> web.Response:
        status, body = await self.health_checker.readiness_report()
        return web.json_response(body, status=status)

    async def handle_livez(self, request: web.Request) -> web.Response:
        status, body = self.health_checker.liveness_report()
        return web.json_response(body, status=status)

    async def handle_metrics(self, request: web.Request) -> web.Response:
        response = web.Response(body=self.metrics.render())
        response.headers["Content-Type"] = self.metrics.content_type
        return response

    def on_certificate_reload(self, certificate: TLSCertificate) -> None:
        logger.info(
            f"Listener now serving certificate {certificate.info.subject}",
            extra={"expires_in_days": certificate.info.days_until_expiry},
        )

    async def start(self) -> None:
        """
        Bind the TLS listener and start certificate monitoring.

        Raises:
            WebhookError: Certificate error if no usable certificate exists
        """
        if self.certificate_manager.get_current_certificate() is None:
            self.certificate_manager.install(self.certificate_manager.load_certificate())

        ssl_context = self.certificate_manager.build_server_context()
        self.certificate_manager.set_reload_callback(self.on_certificate_reload)
        self.certificate_manager.start_monitoring(self.settings.cert_check_interval_seconds)

        self.runner = web.AppRunner(
            self.app,
            shutdown_timeout=self.settings.shutdown_timeout_seconds,
            handler_cancellation=True,
        )
        await self.runner.setup()
        self.site = web.TCPSite(
            self.runner, self.host, self.settings.port, ssl_context=ssl_context
        )
        await self.site.start()
        self.metrics.set_up(True)

        logger.info(f"Admission webhook listening on https://{self.host}:{self.settings.port}")

    async def stop(self) -> None:
        """Stop accepting connections and drain in-flight requests."""
        self.metrics.set_up(False)
        await self.certificate_manager.stop_monitoring()
        self.certificate_manager.set_reload_callback(None)
        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None
            self.site = None
        logger.info("Admission webhook stopped")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()
