"""
Admission models for the ENI IP webhook.

This module defines the AdmissionReview envelope received from the API server,
the subjects the admission policy reasons about, and the verdict it returns.
Only the fields the webhook actually reads are modelled; everything else in
the request is ignored.
"""

from typing import Any, Literal, TypeAlias

from pydantic import BaseModel, Field, StrictBool, field_validator, model_validator

KubernetesObject: TypeAlias = dict[str, Any]
"""Raw Kubernetes object as decoded from the admission request."""

ResourceRequirements: TypeAlias = dict[str, Any]
"""
Container resource requirements.

Expected structure:
- requests: dict[str, str] of named quantities
- limits: dict[str, str] of named quantities
- claims: list of resource claims (carried through untouched)
"""


class GroupVersionResource(BaseModel):
    """Group/version/resource triple identifying the admitted resource."""

    model_config = {"populate_by_name": True, "frozen": True}

    group: str = ""
    version: str = ""
    resource: str = ""

    def __str__(self) -> str:
        group = self.group or "core"
        return f"{group}/{self.version}/{self.resource}"


POD_RESOURCE = GroupVersionResource(group="", version="v1", resource="pods")
STATEFULSET_RESOURCE = GroupVersionResource(
    group="apps", version="v1", resource="statefulsets"
)


class AdmissionRequest(BaseModel):
    """The request section of an AdmissionReview."""

    model_config = {"populate_by_name": True, "extra": "ignore"}

    uid: str = Field(..., description="Request UID echoed back in the response")
    resource: GroupVersionResource = Field(
        ..., description="Resource being admitted"
    )
    namespace: str = Field("", description="Namespace of the admitted object")
    name: str = Field("", description="Name of the object (may be empty on CREATE)")
    operation: str = Field("", description="CREATE, UPDATE, DELETE or CONNECT")
    dry_run: bool = Field(False, alias="dryRun")
    object: KubernetesObject | None = Field(
        None, description="The admitted object as raw JSON"
    )


class AdmissionReview(BaseModel):
    """AdmissionReview envelope (admission.k8s.io/v1 and v1beta1)."""

    model_config = {"populate_by_name": True, "extra": "ignore"}

    api_version: Literal["admission.k8s.io/v1", "admission.k8s.io/v1beta1"] = Field(
        "admission.k8s.io/v1", alias="apiVersion"
    )
    kind: Literal["AdmissionReview"] = "AdmissionReview"
    request: AdmissionRequest


class PodSubject(BaseModel):
    """The parts of a Pod the admission policy inspects."""

    namespace: str = ""
    name: str = ""
    owner_references: list[dict[str, Any]] = Field(default_factory=list)
    annotations: dict[str, str] = Field(default_factory=dict)
    host_network: StrictBool = False
    resources: ResourceRequirements = Field(
        default_factory=dict,
        description="Resource requirements of the first container",
    )

    @field_validator("resources")
    @classmethod
    def _quantities_are_mappings(
        cls, value: ResourceRequirements
    ) -> ResourceRequirements:
        for key in ("requests", "limits"):
            if not isinstance(value.get(key) or {}, dict):
                raise ValueError(f"resources.{key} must be an object")
        return value

    @property
    def display_name(self) -> str:
        """Owner-qualified name for log messages."""
        if self.owner_references:
            owner = self.owner_references[0]
            return (
                f"pod of {owner.get('kind', '')} {owner.get('name', '')} "
                f"in namespace {self.namespace}"
            )
        return f"pod {self.namespace}/{self.name}"


class StatefulSetSubject(BaseModel):
    """The parts of a StatefulSet the admission policy inspects."""

    namespace: str = ""
    name: str = ""
    owner_references: list[dict[str, Any]] = Field(default_factory=list)
    annotations: dict[str, str] = Field(default_factory=dict)
    template_annotations: dict[str, str] = Field(default_factory=dict)


AdmissionSubject: TypeAlias = PodSubject | StatefulSetSubject


class PatchOperation(BaseModel):
    """A single RFC 6902 JSON Patch operation."""

    op: Literal["replace", "add"]
    path: str
    value: Any


class Verdict(BaseModel):
    """Outcome of an admission decision."""

    allowed: bool
    patch: list[PatchOperation] | None = None
    deny_reason: str | None = None

    @model_validator(mode="after")
    def _denial_carries_no_patch(self) -> "Verdict":
        if not self.allowed and self.patch:
            raise ValueError("a denied verdict cannot carry a patch")
        return self

    @classmethod
    def allow(cls) -> "Verdict":
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: str) -> "Verdict":
        return cls(allowed=False, deny_reason=reason)

    @classmethod
    def mutate(cls, patch: list[PatchOperation]) -> "Verdict":
        return cls(allowed=True, patch=patch)

    def patch_document(self) -> list[dict[str, Any]]:
        """JSON-serializable form of the patch (empty when there is none)."""
        return [op.model_dump() for op in self.patch or []]
