"""Validation and certificate services."""

from .certificate_manager import CertificateInfo, CertificateManager, TLSCertificate
from .validator import ValidationResult, Validator

__all__ = [
    "CertificateInfo",
    "CertificateManager",
    "TLSCertificate",
    "ValidationResult",
    "Validator",
]
