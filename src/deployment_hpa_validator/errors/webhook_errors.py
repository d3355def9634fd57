"""
Webhook error taxonomy with categorization and retry logic.

Every failure inside the webhook is represented as a ``WebhookError`` tagged
with an ``ErrorKind``. Downstream code (the error handler, metrics, logging)
switches on the kind instead of inspecting exception types.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from deployment_hpa_validator.constants import (
    CODE_API_CONNECTION,
    CODE_CERT_INVALID,
    CODE_DEPLOYMENT_HPA_CONFLICT,
    CODE_HPA_SINGLE_REPLICA,
    CODE_INTERNAL_TEMPORARY,
    CODE_INTERNAL_UNKNOWN,
    CODE_INVALID_CONFIG,
    MSG_DEPLOYMENT_WITH_HPA,
    MSG_HPA_WITH_SINGLE_REPLICA,
)


class ErrorKind(str, Enum):
    """Closed set of failure categories."""

    VALIDATION = "validation"  # user-correctable admission conflict
    CONFIGURATION = "configuration"  # bad webhook setup
    NETWORK = "network"  # transient connectivity
    KUBERNETES_API = "kubernetes_api"  # transient API server failure
    CERTIFICATE = "certificate"  # TLS material problem
    AUTH = "auth"  # authorization failure against the Kubernetes API
    RESOURCE = "resource"  # local resource exhaustion
    INTERNAL = "internal"  # unexpected or unclassified failure


_HTTP_STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.AUTH: 403,
    ErrorKind.CONFIGURATION: 422,
    ErrorKind.NETWORK: 502,
    ErrorKind.KUBERNETES_API: 502,
    ErrorKind.RESOURCE: 503,
    ErrorKind.CERTIFICATE: 495,  # nginx "SSL Certificate Error"
    ErrorKind.INTERNAL: 500,
}

_PRODUCTION_MESSAGES = {
    ErrorKind.CONFIGURATION: "The webhook is misconfigured. Contact your administrator.",
    ErrorKind.NETWORK: "A network error occurred. Wait a moment and retry.",
    ErrorKind.CERTIFICATE: "The webhook certificate is invalid. Contact your administrator.",
    ErrorKind.KUBERNETES_API: (
        "Communication with the Kubernetes API failed. Wait a moment and retry."
    ),
    ErrorKind.AUTH: "Authorization failed. Check the webhook's permissions.",
    ErrorKind.RESOURCE: "Resources are exhausted. Wait a moment and retry.",
    ErrorKind.INTERNAL: "An internal error occurred. Contact your administrator.",
}

_RETRYABLE_KINDS = frozenset(
    {ErrorKind.NETWORK, ErrorKind.KUBERNETES_API, ErrorKind.RESOURCE}
)


class WebhookError(Exception):
    """
    Structured webhook failure.

    Carries the error category, a stable machine-readable code, a message for
    the end user, optional details and remediation suggestions, and the
    request context it was raised in. The internal cause is kept for logs only
    and never rendered into a response.
    """

    def __init__(
        self,
        kind: ErrorKind,
        code: str,
        message: str,
        details: str = "",
        suggestions: list[str] | None = None,
        internal_error: BaseException | None = None,
    ):
        """
        Initialize webhook error.

        Args:
            kind: Error category
            code: Stable error code (see constants.CODE_*)
            message: Human-readable error description
            details: Longer explanation shown outside production
            suggestions: Ordered remediation steps
            internal_error: Underlying exception that caused this error
        """
        super().__init__(message)
        self.kind = kind
        self.code = code
        self.message = message
        self.details = details
        self.suggestions = list(suggestions or [])
        self.internal_error = internal_error
        self.timestamp = datetime.now(UTC)
        self.request_id = ""
        self.resource_type = ""
        self.resource_name = ""
        self.namespace = ""

    def __str__(self) -> str:
        return self.message

    @property
    def retryable(self) -> bool:
        """Whether the failure is transient by construction."""
        if self.kind in _RETRYABLE_KINDS:
            return True
        if self.kind is ErrorKind.INTERNAL:
            return self.code == CODE_INTERNAL_TEMPORARY
        return False

    @property
    def http_status(self) -> int:
        """HTTP-style status code for this error's kind."""
        return _HTTP_STATUS_BY_KIND.get(self.kind, 500)

    @property
    def production_message(self) -> str:
        """Message safe to expose in production; validation text passes through."""
        if self.kind is ErrorKind.VALIDATION:
            return self.message
        return _PRODUCTION_MESSAGES.get(
            self.kind, "A system error occurred. Contact your administrator."
        )

    @property
    def resource_type_label(self) -> str:
        """Resource type for metric labels."""
        return self.resource_type or "unknown"

    def with_context(
        self,
        request_id: str,
        resource_type: str,
        resource_name: str,
        namespace: str,
    ) -> WebhookError:
        """Attach request context. Returns self for chaining."""
        self.request_id = request_id
        self.resource_type = resource_type
        self.resource_name = resource_name
        self.namespace = namespace
        return self

    def with_internal_error(self, error: BaseException) -> WebhookError:
        self.internal_error = error
        return self

    def with_suggestions(self, suggestions: list[str]) -> WebhookError:
        self.suggestions = list(suggestions)
        return self

    @classmethod
    def from_exception(
        cls, kind: ErrorKind, code: str, error: BaseException
    ) -> WebhookError:
        """Build a webhook error whose message is the underlying error's text."""
        return cls(kind, code, str(error) or type(error).__name__, internal_error=error)


def deployment_hpa_conflict_error() -> WebhookError:
    """Deployment admission found an HPA targeting a single-replica Deployment."""
    return WebhookError(
        ErrorKind.VALIDATION,
        CODE_DEPLOYMENT_HPA_CONFLICT,
        MSG_DEPLOYMENT_WITH_HPA,
        details=(
            "An HPA needs its target Deployment to run at least 2 replicas "
            "to scale correctly."
        ),
        suggestions=[
            "Set the Deployment's spec.replicas to 2 or more",
            "Or delete the HPA targeting this Deployment",
        ],
    )


def hpa_single_replica_error() -> WebhookError:
    """HPA admission found its target Deployment running a single replica."""
    return WebhookError(
        ErrorKind.VALIDATION,
        CODE_HPA_SINGLE_REPLICA,
        MSG_HPA_WITH_SINGLE_REPLICA,
        details=(
            "An HPA requires at least 2 replicas. Autoscaling does not work "
            "with a single replica."
        ),
        suggestions=[
            "Set the target Deployment's spec.replicas to 2 or more",
            "Set the HPA's spec.minReplicas to 2 or more",
        ],
    )


def kubernetes_api_error(operation: str, error: BaseException) -> WebhookError:
    return WebhookError.from_exception(
        ErrorKind.KUBERNETES_API, CODE_API_CONNECTION, error
    ).with_suggestions(
        [
            f"Check that the Kubernetes API server is available ({operation})",
            "Check network connectivity",
            "Wait a moment and retry",
        ]
    )


def configuration_error(config_item: str, error: BaseException) -> WebhookError:
    return WebhookError.from_exception(
        ErrorKind.CONFIGURATION, CODE_INVALID_CONFIG, error
    ).with_suggestions(
        [
            f"Check the {config_item} setting",
            "Check the configuration file and environment variables",
            "Contact your administrator",
        ]
    )


def certificate_error(
    cert_type: str, error: BaseException, code: str = CODE_CERT_INVALID
) -> WebhookError:
    return WebhookError.from_exception(
        ErrorKind.CERTIFICATE, code, error
    ).with_suggestions(
        [
            f"Check the path and contents of the {cert_type} certificate",
            "Check the certificate's validity period",
            "Regenerate the certificate",
        ]
    )


def internal_error(
    component: str, error: BaseException, code: str = CODE_INTERNAL_UNKNOWN
) -> WebhookError:
    return WebhookError.from_exception(
        ErrorKind.INTERNAL, code, error
    ).with_suggestions(
        [
            "Contact your administrator",
            f"Check the {component} logs",
            "Restart the webhook",
        ]
    )
