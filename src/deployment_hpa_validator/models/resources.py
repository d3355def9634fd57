"""
Projections of the workload resources the validator reasons about.

The validator never needs the full Deployment or HorizontalPodAutoscaler
objects. These models keep only the fields that drive the single-replica
rule and can be built either from raw admission JSON or from objects
returned by the ``kubernetes`` client.
"""

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, Field

from deployment_hpa_validator.constants import KIND_DEPLOYMENT


def _metadata_and_spec(obj: Any) -> tuple[Mapping[str, Any], Mapping[str, Any]]:
    if not isinstance(obj, Mapping):
        raise ValueError(f"expected a JSON object, got {type(obj).__name__}")
    metadata = obj.get("metadata") or {}
    spec = obj.get("spec") or {}
    if not isinstance(metadata, Mapping) or not isinstance(spec, Mapping):
        raise ValueError("metadata and spec must be JSON objects")
    return metadata, spec


class DeploymentProjection(BaseModel):
    """The parts of a Deployment relevant to HPA compatibility."""

    model_config = {"populate_by_name": True}

    name: str = Field("", description="Deployment name")
    namespace: str = Field("", description="Deployment namespace")
    replicas: int | None = Field(
        None, ge=0, description="spec.replicas; None when the field is absent"
    )
    labels: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_object(
        cls, obj: Any, name: str = "", namespace: str = ""
    ) -> "DeploymentProjection":
        """
        Build from a raw Deployment as found in an admission request.

        Args:
            obj: Deserialized Deployment JSON
            name: Fallback name (the request's name)
            namespace: Fallback namespace (the request's namespace)

        Raises:
            ValueError: If the object is not a well-formed Deployment
        """
        metadata, spec = _metadata_and_spec(obj)
        return cls.model_validate(
            {
                "name": metadata.get("name") or name,
                "namespace": metadata.get("namespace") or namespace,
                "replicas": spec.get("replicas"),
                "labels": metadata.get("labels") or {},
            }
        )

    @classmethod
    def from_api(cls, deployment: Any) -> "DeploymentProjection":
        """Build from a ``kubernetes.client.V1Deployment``."""
        metadata = deployment.metadata
        spec = deployment.spec
        return cls(
            name=metadata.name or "",
            namespace=metadata.namespace or "",
            replicas=spec.replicas if spec is not None else None,
            labels=metadata.labels or {},
        )


class ScaleTargetRef(BaseModel):
    """Reference from an HPA to the workload it scales."""

    model_config = {"populate_by_name": True}

    kind: str = ""
    name: str = ""
    api_version: str = Field("", alias="apiVersion")


class HPAProjection(BaseModel):
    """The parts of a HorizontalPodAutoscaler relevant to its target."""

    model_config = {"populate_by_name": True}

    name: str = Field("", description="HPA name")
    namespace: str = Field("", description="HPA namespace")
    scale_target_ref: ScaleTargetRef = Field(
        default_factory=ScaleTargetRef, alias="scaleTargetRef"
    )
    labels: dict[str, str] = Field(default_factory=dict)

    @property
    def targets_deployment(self) -> bool:
        return self.scale_target_ref.kind == KIND_DEPLOYMENT

    def targets(self, deployment: DeploymentProjection) -> bool:
        """Whether this HPA scales the given Deployment."""
        return (
            self.targets_deployment
            and self.scale_target_ref.name == deployment.name
            and self.namespace == deployment.namespace
        )

    @classmethod
    def from_object(cls, obj: Any, name: str = "", namespace: str = "") -> "HPAProjection":
        """
        Build from a raw HorizontalPodAutoscaler as found in an admission request.

        Raises:
            ValueError: If the object is not a well-formed HPA
        """
        metadata, spec = _metadata_and_spec(obj)
        return cls.model_validate(
            {
                "name": metadata.get("name") or name,
                "namespace": metadata.get("namespace") or namespace,
                "scaleTargetRef": spec.get("scaleTargetRef") or {},
                "labels": metadata.get("labels") or {},
            }
        )

    @classmethod
    def from_api(cls, hpa: Any) -> "HPAProjection":
        """Build from a ``kubernetes.client.V2HorizontalPodAutoscaler``."""
        metadata = hpa.metadata
        ref = hpa.spec.scale_target_ref if hpa.spec is not None else None
        return cls(
            name=metadata.name or "",
            namespace=metadata.namespace or "",
            scale_target_ref=ScaleTargetRef(
                kind=getattr(ref, "kind", None) or "",
                name=getattr(ref, "name", None) or "",
                api_version=getattr(ref, "api_version", None) or "",
            ),
            labels=metadata.labels or {},
        )
