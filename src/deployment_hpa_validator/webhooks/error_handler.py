"""
Rendering of webhook errors into admission responses.

Every failure raised while handling an admission request ends up here. The
handler normalizes it to a ``WebhookError``, attaches the request context,
records it, logs it at a severity chosen by its kind and renders the message
shown to the user. In production, non-validation messages are replaced by a
generic text so internal details never reach ``kubectl`` output.
"""

import logging

from deployment_hpa_validator.constants import CODE_INTERNAL_UNKNOWN, ENV_PRODUCTION
from deployment_hpa_validator.errors import ErrorKind, WebhookError, internal_error
from deployment_hpa_validator.models import (
    AdmissionRequest,
    AdmissionResponse,
    AdmissionStatus,
)
from deployment_hpa_validator.observability.logging import get_request_id
from deployment_hpa_validator.observability.metrics import WebhookMetrics

logger = logging.getLogger(__name__)

_LOG_LEVEL_BY_KIND = {
    ErrorKind.VALIDATION: logging.INFO,
    ErrorKind.CONFIGURATION: logging.ERROR,
    ErrorKind.CERTIFICATE: logging.ERROR,
    ErrorKind.INTERNAL: logging.ERROR,
    ErrorKind.NETWORK: logging.WARNING,
    ErrorKind.KUBERNETES_API: logging.WARNING,
    ErrorKind.AUTH: logging.WARNING,
    ErrorKind.RESOURCE: logging.WARNING,
}

_PRODUCTION_RETRY_KINDS = frozenset({ErrorKind.NETWORK, ErrorKind.KUBERNETES_API})


class ErrorHandler:
    """Environment-aware conversion of errors into admission responses."""

    def __init__(self, environment: str, metrics: WebhookMetrics | None = None):
        """
        Initialize error handler.

        Args:
            environment: development, staging or production
            metrics: Metrics collector for the error counter
        """
        self.environment = environment
        self.metrics = metrics

    @property
    def is_production(self) -> bool:
        return self.environment == ENV_PRODUCTION

    def handle_error(
        self, error: BaseException | None, request: AdmissionRequest | None
    ) -> AdmissionResponse:
        """
        Convert an error into the admission response for ``request``.

        Args:
            error: Failure raised while handling the request, or None
            request: The admission request being answered

        Returns:
            Allowed response when ``error`` is None, denied response otherwise
        """
        uid = request.uid if request is not None else ""
        if error is None:
            return AdmissionResponse.allow(uid)

        webhook_error = self.normalize(error)
        self.enrich(webhook_error, request)

        if self.metrics is not None:
            self.metrics.record_error(webhook_error)
        self.log_error(webhook_error)

        return AdmissionResponse(
            uid=uid,
            allowed=False,
            result=AdmissionStatus(
                code=webhook_error.http_status,
                message=self.format_message(webhook_error),
            ),
        )

    @staticmethod
    def normalize(error: BaseException) -> WebhookError:
        if isinstance(error, WebhookError):
            return error
        return internal_error("webhook", error, CODE_INTERNAL_UNKNOWN)

    @staticmethod
    def enrich(error: WebhookError, request: AdmissionRequest | None) -> None:
        """Fill request context fields that are still empty."""
        if not error.request_id:
            error.request_id = get_request_id()
        if request is None:
            return
        if not error.resource_type:
            error.resource_type = request.kind.kind
        if not error.resource_name:
            error.resource_name = request.name
        if not error.namespace:
            error.namespace = request.namespace

    def should_retry(self, error: WebhookError) -> bool:
        """
        Whether the API server's retry is expected to help.

        In production only network and Kubernetes API failures qualify; in
        other environments any error flagged retryable does.
        """
        if self.is_production:
            return error.kind in _PRODUCTION_RETRY_KINDS
        return error.retryable

    def format_message(self, error: WebhookError) -> str:
        if self.is_production:
            return error.production_message

        message = error.message
        if error.details:
            message += f"\n\nDetails: {error.details}"
        if error.suggestions:
            numbered = "\n".join(
                f"{index}. {suggestion}"
                for index, suggestion in enumerate(error.suggestions, start=1)
            )
            message += f"\n\nSuggestions:\n{numbered}"
        return message

    def log_error(self, error: WebhookError) -> None:
        retry = self.should_retry(error)
        level = _LOG_LEVEL_BY_KIND.get(error.kind, logging.ERROR)
        text = f"Admission denied ({error.kind.value}/{error.code}): {error.message}"
        if retry:
            text += " (retryable)"
        if error.internal_error is not None and level >= logging.ERROR:
            text += f": {error.internal_error!r}"
        logger.log(
            level,
            text,
            extra={
                "request_id": error.request_id,
                "resource_type": error.resource_type,
                "resource_name": error.resource_name,
                "namespace": error.namespace,
                "error_kind": error.kind.value,
                "error_code": error.code,
                "retryable": retry,
            },
        )
