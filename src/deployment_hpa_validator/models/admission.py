"""
AdmissionReview wire models (admission.k8s.io/v1).

Only the fields the webhook reads or writes are modelled; unknown fields are
ignored on input so newer API servers remain compatible.
"""

from typing import Any

from pydantic import BaseModel, Field

from deployment_hpa_validator.constants import ADMISSION_API_VERSION, ADMISSION_KIND


class GroupVersionKind(BaseModel):
    """Fully qualified kind of the object under admission."""

    model_config = {"populate_by_name": True}

    group: str = Field("", description="API group, empty for the core group")
    version: str = Field("", description="API version")
    kind: str = Field("", description="Resource kind, e.g. Deployment")


class AdmissionRequest(BaseModel):
    """Admission request sent by the API server."""

    model_config = {"populate_by_name": True}

    uid: str = Field(..., description="Unique request ID, echoed in the response")
    kind: GroupVersionKind = Field(default_factory=GroupVersionKind)
    name: str = Field("", description="Name of the object under admission")
    namespace: str = Field("", description="Namespace of the object under admission")
    operation: str = Field("", description="CREATE, UPDATE, DELETE or CONNECT")
    object: Any = Field(None, description="The object as submitted")
    old_object: Any = Field(None, alias="oldObject", description="Previous object")
    dry_run: bool = Field(False, alias="dryRun")


class AdmissionStatus(BaseModel):
    """Result attached to a denied admission response."""

    code: int = Field(..., description="HTTP-style status code")
    message: str = Field("", description="Message shown to the user")


class AdmissionResponse(BaseModel):
    """Admission decision returned to the API server."""

    model_config = {"populate_by_name": True}

    uid: str = Field("", description="UID of the request this answers")
    allowed: bool = Field(..., description="Whether the write is admitted")
    result: AdmissionStatus | None = Field(
        None,
        alias="status",
        description="Denial result; serialized as 'status' on the wire",
    )

    @classmethod
    def allow(cls, uid: str) -> "AdmissionResponse":
        return cls(uid=uid, allowed=True)


class AdmissionReview(BaseModel):
    """Envelope exchanged with the API server."""

    model_config = {"populate_by_name": True}

    api_version: str = Field(ADMISSION_API_VERSION, alias="apiVersion")
    kind: str = Field(ADMISSION_KIND)
    request: AdmissionRequest | None = None
    response: AdmissionResponse | None = None

    @classmethod
    def for_response(cls, response: AdmissionResponse) -> "AdmissionReview":
        return cls(response=response)

    def to_wire(self) -> dict[str, Any]:
        """Serialize with Kubernetes field names, omitting unset optionals."""
        return self.model_dump(by_alias=True, exclude_none=True)
