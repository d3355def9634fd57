"""
Constants used throughout the Deployment/HPA validator.

This module defines all constant values used by the webhook including:
- Resource kinds handled by the admission endpoint
- Error codes and user-facing messages
- HTTP security headers and TLS parameters
- Default configuration values
"""

# Resource kinds handled by the validator
KIND_DEPLOYMENT = "Deployment"
KIND_HPA = "HorizontalPodAutoscaler"

# A Deployment with this many replicas cannot be targeted by an HPA
SINGLE_REPLICA = 1

# AdmissionReview wire constants
ADMISSION_API_VERSION = "admission.k8s.io/v1"
ADMISSION_KIND = "AdmissionReview"

# Environments
ENV_DEVELOPMENT = "development"
ENV_STAGING = "staging"
ENV_PRODUCTION = "production"
VALID_ENVIRONMENTS = (ENV_DEVELOPMENT, ENV_STAGING, ENV_PRODUCTION)

# User-facing validation messages
MSG_DEPLOYMENT_WITH_HPA = (
    "A Deployment with 1 replica is targeted by an HPA. "
    "Delete the HPA or set replicas to 2 or more."
)
MSG_HPA_WITH_SINGLE_REPLICA = (
    "Cannot create an HPA targeting a Deployment with 1 replica. "
    "Set the Deployment's replicas to 2 or more."
)
MSG_SYSTEM_FAILURE = "A system error occurred. Contact your administrator."

# Validation error codes
CODE_DEPLOYMENT_HPA_CONFLICT = "VALIDATION_DEPLOYMENT_HPA_CONFLICT"
CODE_HPA_SINGLE_REPLICA = "VALIDATION_HPA_SINGLE_REPLICA"
CODE_INVALID_RESOURCE = "VALIDATION_INVALID_RESOURCE"

# Configuration error codes
CODE_INVALID_CONFIG = "CONFIG_INVALID"
CODE_MISSING_CONFIG = "CONFIG_MISSING"
CODE_CONFIG_VALIDATION = "CONFIG_VALIDATION_FAILED"

# Network error codes
CODE_NETWORK_TIMEOUT = "NETWORK_TIMEOUT"
CODE_NETWORK_CONNECTION = "NETWORK_CONNECTION_FAILED"
CODE_NETWORK_DNS = "NETWORK_DNS_RESOLUTION_FAILED"

# Certificate error codes
CODE_CERT_EXPIRED = "CERT_EXPIRED"
CODE_CERT_INVALID = "CERT_INVALID"
CODE_CERT_NOT_FOUND = "CERT_NOT_FOUND"
CODE_CERT_CHAIN_INVALID = "CERT_CHAIN_INVALID"

# Kubernetes API error codes
CODE_API_TIMEOUT = "API_TIMEOUT"
CODE_API_CONNECTION = "API_CONNECTION_FAILED"
CODE_API_NOT_FOUND = "API_RESOURCE_NOT_FOUND"
CODE_API_CONFLICT = "API_CONFLICT"
CODE_API_FORBIDDEN = "API_FORBIDDEN"

# Internal error codes
CODE_INTERNAL_PANIC = "INTERNAL_PANIC"
CODE_INTERNAL_TEMPORARY = "INTERNAL_TEMPORARY"
CODE_INTERNAL_UNKNOWN = "INTERNAL_UNKNOWN"

# Auth error codes
CODE_AUTH_FAILED = "AUTH_FAILED"
CODE_AUTH_INSUFFICIENT_PERMISSIONS = "AUTH_INSUFFICIENT_PERMISSIONS"

# Resource error codes
CODE_RESOURCE_EXHAUSTED = "RESOURCE_EXHAUSTED"
CODE_RESOURCE_UNAVAILABLE = "RESOURCE_UNAVAILABLE"

# Security headers set on every response
SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
}

# TLS 1.2 cipher suites accepted by the listener (TLS 1.3 suites are fixed by OpenSSL)
TLS_CIPHERS = ":".join(
    [
        "ECDHE-RSA-AES256-GCM-SHA384",
        "ECDHE-RSA-CHACHA20-POLY1305",
        "ECDHE-RSA-AES128-GCM-SHA256",
    ]
)

# Certificates closer than this to expiry produce warnings
CERT_EXPIRY_WARNING_DAYS = 30
CERT_EXPIRY_HEALTH_WARNING_DAYS = 7
CERT_EXPIRY_HEALTH_CRITICAL_DAYS = 1

# Default configuration values
DEFAULT_PORT = 8443
DEFAULT_TLS_CERT_FILE = "/etc/certs/tls.crt"
DEFAULT_TLS_KEY_FILE = "/etc/certs/tls.key"
DEFAULT_REQUEST_TIMEOUT_SECONDS = 10.0
DEFAULT_SHUTDOWN_TIMEOUT_SECONDS = 30.0
DEFAULT_CERT_CHECK_INTERVAL_SECONDS = 300.0
DEFAULT_SKIP_NAMESPACES = ["kube-system", "kube-public", "kube-node-lease"]
DEFAULT_SKIP_LABELS = ["k8s-deployment-hpa-validator.io/skip-validation=true"]

# Largest accepted AdmissionReview body: object and oldObject can each reach
# the API server's ~1.5 MiB object limit, plus the envelope
MAX_ADMISSION_BODY_BYTES = 8 * 1024 * 1024

# Timeout for a single Kubernetes API read issued by the validator or a probe
KUBERNETES_READ_TIMEOUT_SECONDS = 5

# Synthetic object used by the validator health check
HEALTH_CHECK_DEPLOYMENT_NAME = "health-check-test"
HEALTH_CHECK_NAMESPACE = "default"
