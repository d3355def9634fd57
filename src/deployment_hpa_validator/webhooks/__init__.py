"""
Admission webhook HTTP surface.

The ``AdmissionServer`` decodes AdmissionReview requests, dispatches
Deployments and HorizontalPodAutoscalers to the validator and renders every
failure through the ``ErrorHandler``.
"""

from .error_handler import ErrorHandler
from .server import AdmissionServer

__all__ = ["AdmissionServer", "ErrorHandler"]
