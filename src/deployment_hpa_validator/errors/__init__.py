"""
Error handling module for the Deployment/HPA validator.

This module provides a closed error taxonomy: a single ``WebhookError``
exception tagged with an ``ErrorKind``, plus constructors for the failures
raised throughout the webhook.
"""

from .webhook_errors import (
    ErrorKind,
    WebhookError,
    certificate_error,
    configuration_error,
    deployment_hpa_conflict_error,
    hpa_single_replica_error,
    internal_error,
    kubernetes_api_error,
)

__all__ = [
    "ErrorKind",
    "WebhookError",
    "certificate_error",
    "configuration_error",
    "deployment_hpa_conflict_error",
    "hpa_single_replica_error",
    "internal_error",
    "kubernetes_api_error",
]
