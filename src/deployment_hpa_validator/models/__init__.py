"""Pydantic models for admission wire records and workload projections."""

from .admission import (
    AdmissionRequest,
    AdmissionResponse,
    AdmissionReview,
    AdmissionStatus,
    GroupVersionKind,
)
from .resources import DeploymentProjection, HPAProjection, ScaleTargetRef

__all__ = [
    "AdmissionRequest",
    "AdmissionResponse",
    "AdmissionReview",
    "AdmissionStatus",
    "DeploymentProjection",
    "GroupVersionKind",
    "HPAProjection",
    "ScaleTargetRef",
]
