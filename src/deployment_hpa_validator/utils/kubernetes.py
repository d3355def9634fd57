"""
Kubernetes utilities for the admission webhook.

This module provides the API client factory and the mapping from client
failures to the webhook's error taxonomy.
"""

import logging

import urllib3
from kubernetes import client, config
from kubernetes.client.rest import ApiException

from deployment_hpa_validator.constants import (
    CODE_API_CONFLICT,
    CODE_API_CONNECTION,
    CODE_API_NOT_FOUND,
    CODE_AUTH_FAILED,
    CODE_AUTH_INSUFFICIENT_PERMISSIONS,
    CODE_INTERNAL_UNKNOWN,
    CODE_NETWORK_CONNECTION,
    CODE_NETWORK_DNS,
    CODE_NETWORK_TIMEOUT,
)
from deployment_hpa_validator.errors import ErrorKind, WebhookError

logger = logging.getLogger(__name__)


def get_kubernetes_client() -> client.ApiClient:
    """
    Get configured Kubernetes API client.

    In-cluster configuration is tried first; a local kubeconfig is used as a
    fallback for development.

    Returns:
        Configured Kubernetes API client
    """
    try:
        config.load_incluster_config()
        logger.debug("Loaded in-cluster Kubernetes configuration")
    except config.ConfigException:
        try:
            config.load_kube_config()
            logger.debug("Loaded kubeconfig from local environment")
        except config.ConfigException as e:
            logger.error(f"Failed to load Kubernetes configuration: {e}")
            raise

    return client.ApiClient()


def is_not_found(error: BaseException) -> bool:
    return isinstance(error, ApiException) and error.status == 404


def _classify_api_exception(operation: str, error: ApiException) -> WebhookError:
    status = error.status or 0
    reason = error.reason or "unknown"
    message = f"Kubernetes API {operation} failed: {status} {reason}"

    if status == 401:
        return WebhookError(
            ErrorKind.AUTH,
            CODE_AUTH_FAILED,
            message,
            suggestions=["Check the webhook's service account token"],
            internal_error=error,
        )
    if status == 403:
        return WebhookError(
            ErrorKind.AUTH,
            CODE_AUTH_INSUFFICIENT_PERMISSIONS,
            message,
            suggestions=[
                "Grant the webhook's service account get on deployments "
                "and list on horizontalpodautoscalers"
            ],
            internal_error=error,
        )

    code = {404: CODE_API_NOT_FOUND, 409: CODE_API_CONFLICT}.get(
        status, CODE_API_CONNECTION
    )
    return WebhookError(
        ErrorKind.KUBERNETES_API,
        code,
        message,
        suggestions=[
            f"Check that the Kubernetes API server is available ({operation})",
            "Wait a moment and retry",
        ],
        internal_error=error,
    )


def _classify_network_error(operation: str, error: BaseException) -> WebhookError:
    cause = error
    if isinstance(cause, urllib3.exceptions.MaxRetryError) and cause.reason is not None:
        cause = cause.reason

    # NewConnectionError subclasses ConnectTimeoutError in urllib3 2.x
    if isinstance(cause, urllib3.exceptions.NameResolutionError):
        code = CODE_NETWORK_DNS
    elif isinstance(cause, urllib3.exceptions.NewConnectionError):
        code = CODE_NETWORK_CONNECTION
    elif isinstance(cause, (TimeoutError, urllib3.exceptions.TimeoutError)):
        code = CODE_NETWORK_TIMEOUT
    else:
        code = CODE_NETWORK_CONNECTION

    return WebhookError(
        ErrorKind.NETWORK,
        code,
        f"Kubernetes API {operation} failed: {cause}",
        suggestions=[
            "Check network connectivity to the Kubernetes API server",
            "Wait a moment and retry",
        ],
        internal_error=error,
    )


def classify_api_error(operation: str, error: BaseException) -> WebhookError:
    """
    Map a Kubernetes client failure to a webhook error.

    Args:
        operation: Short description of the failed call, used in messages
        error: Exception raised by the client

    Returns:
        WebhookError of kind auth, kubernetes_api, network or internal
    """
    if isinstance(error, WebhookError):
        return error
    if isinstance(error, ApiException):
        return _classify_api_exception(operation, error)
    if isinstance(error, (urllib3.exceptions.HTTPError, OSError)):
        return _classify_network_error(operation, error)
    return WebhookError(
        ErrorKind.INTERNAL,
        CODE_INTERNAL_UNKNOWN,
        f"Kubernetes API {operation} failed: {error}",
        internal_error=error,
    )
