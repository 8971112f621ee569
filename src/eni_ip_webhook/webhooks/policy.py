"""
Admission policy for pods and StatefulSets.

Pods served by an ENI based CNI get the matching extended resource injected
into their first container, so the scheduler only places them on nodes with
free ENI IPs. StatefulSets asking for a static pod IP are denied unless their
pod template selects the routed ENI CNI.

Everything here is pure: decisions depend only on the admitted object and the
default CNI handed in by the caller.
"""

import copy
import logging
from typing import Any

from eni_ip_webhook.constants import (
    CNI_NETWORKS_ANNOTATION,
    DENY_STATIC_IP_CNI_MISMATCH,
    DIRECT_ENI_RESOURCE,
    ENI_IP_RESOURCE,
    FIRST_CONTAINER_RESOURCES_PATH,
    LEGACY_STATIC_IP_ANNOTATION,
    RESOURCE_QUANTITY,
    STATIC_IP_ANNOTATION,
)
from eni_ip_webhook.errors import MalformedRequestError, UnrecognizedRequestError
from eni_ip_webhook.models.admission import (
    POD_RESOURCE,
    STATEFULSET_RESOURCE,
    AdmissionRequest,
    AdmissionSubject,
    GroupVersionResource,
    PatchOperation,
    PodSubject,
    ResourceRequirements,
    StatefulSetSubject,
    Verdict,
)
from eni_ip_webhook.models.cni import CNIKind, classify_networks_annotation

logger = logging.getLogger(__name__)

# Extended resource injected for each CNI; CNIs not listed are left alone
DEFAULT_RESOURCE_MAPPING: dict[CNIKind, str] = {
    CNIKind.ROUTE_ENI: ENI_IP_RESOURCE,
    CNIKind.DIRECT_ENI: DIRECT_ENI_RESOURCE,
}

STATIC_IP_ANNOTATIONS = (STATIC_IP_ANNOTATION, LEGACY_STATIC_IP_ANNOTATION)


def build_resources_patch(
    resources: ResourceRequirements, resource_name: str
) -> list[PatchOperation]:
    """
    Build the JSON Patch setting resource_name on the first container.

    Existing requests, limits and any other resource fields are kept; the
    request and limit of resource_name are both set to one unit.
    """
    value = copy.deepcopy(resources) if resources else {}
    requests = dict(value.get("requests") or {})
    limits = dict(value.get("limits") or {})
    requests[resource_name] = RESOURCE_QUANTITY
    limits[resource_name] = RESOURCE_QUANTITY
    value["requests"] = requests
    value["limits"] = limits

    return [
        PatchOperation(op="replace", path=FIRST_CONTAINER_RESOURCES_PATH, value=value)
    ]


def requests_static_ip(annotations: dict[str, str]) -> bool:
    return any(
        annotations.get(key, "").lower() == "true" for key in STATIC_IP_ANNOTATIONS
    )


class AdmissionPolicy:
    """Decides how to admit pods and StatefulSets."""

    def __init__(
        self,
        resource_mapping: dict[CNIKind, str] | None = None,
        static_ip_cni: CNIKind = CNIKind.ROUTE_ENI,
    ):
        """
        Initialize the policy.

        Args:
            resource_mapping: Extended resource injected per effective CNI
            static_ip_cni: CNI a StatefulSet template must select to get a static IP
        """
        self.resource_mapping = dict(
            DEFAULT_RESOURCE_MAPPING if resource_mapping is None else resource_mapping
        )
        self.static_ip_cni = static_ip_cni

    def decide(self, subject: AdmissionSubject, default_cni: CNIKind) -> Verdict:
        """
        Decide the admission of a pod or StatefulSet.

        Args:
            subject: The admitted object
            default_cni: Cluster default CNI, used for pods without a
                networks annotation

        Returns:
            The verdict, with a patch when a pod needs an extended resource
        """
        if isinstance(subject, StatefulSetSubject):
            return self.decide_statefulset(subject)
        return self.decide_pod(subject, default_cni)

    def effective_cni(self, pod: PodSubject, default_cni: CNIKind) -> CNIKind | None:
        """CNI serving the pod: its networks annotation, else the default."""
        networks = pod.annotations.get(CNI_NETWORKS_ANNOTATION)
        if networks is None:
            return default_cni
        return classify_networks_annotation(networks)

    def decide_pod(self, pod: PodSubject, default_cni: CNIKind) -> Verdict:
        if pod.host_network:
            logger.debug(f"Skipping host network {pod.display_name}")
            return Verdict.allow()

        cni = self.effective_cni(pod, default_cni)
        resource_name = self.resource_mapping.get(cni) if cni else None
        if resource_name is None:
            logger.debug(
                f"No extended resource for {pod.display_name} (cni: {cni})",
                extra={"effective_cni": str(cni)},
            )
            return Verdict.allow()

        logger.info(
            f"Adding {resource_name} to {pod.display_name}",
            extra={"effective_cni": cni.value},
        )
        return Verdict.mutate(build_resources_patch(pod.resources, resource_name))

    def decide_statefulset(self, statefulset: StatefulSetSubject) -> Verdict:
        if not (
            requests_static_ip(statefulset.annotations)
            or requests_static_ip(statefulset.template_annotations)
        ):
            return Verdict.allow()

        networks = statefulset.template_annotations.get(CNI_NETWORKS_ANNOTATION, "")
        if self.static_ip_cni.value in networks:
            return Verdict.allow()

        reason = DENY_STATIC_IP_CNI_MISMATCH.format(
            statefulset.namespace,
            statefulset.name,
            CNI_NETWORKS_ANNOTATION,
            networks,
            self.static_ip_cni.value,
        )
        logger.info(reason)
        return Verdict.deny(reason)


def _metadata(obj: dict[str, Any]) -> dict[str, Any]:
    metadata = obj.get("metadata") or {}
    if not isinstance(metadata, dict):
        raise MalformedRequestError("metadata must be an object")
    return metadata


def _pod_subject(request: AdmissionRequest, obj: dict[str, Any]) -> PodSubject:
    metadata = _metadata(obj)
    spec = obj.get("spec") or {}
    if not isinstance(spec, dict):
        raise MalformedRequestError("spec must be an object")
    containers = spec.get("containers")
    if not containers or not isinstance(containers, list):
        raise MalformedRequestError(
            f"Pod in namespace {request.namespace} has no containers"
        )

    first = containers[0] if isinstance(containers[0], dict) else {}
    return PodSubject(
        namespace=metadata.get("namespace") or request.namespace,
        name=metadata.get("name") or metadata.get("generateName") or request.name,
        owner_references=metadata.get("ownerReferences") or [],
        annotations=metadata.get("annotations") or {},
        host_network=spec.get("hostNetwork") or False,
        resources=first.get("resources") or {},
    )


def _statefulset_subject(
    request: AdmissionRequest, obj: dict[str, Any]
) -> StatefulSetSubject:
    metadata = _metadata(obj)
    spec = obj.get("spec") or {}
    template = spec.get("template") or {}
    template_metadata = _metadata(template)
    return StatefulSetSubject(
        namespace=metadata.get("namespace") or request.namespace,
        name=metadata.get("name") or request.name,
        owner_references=metadata.get("ownerReferences") or [],
        annotations=metadata.get("annotations") or {},
        template_annotations=template_metadata.get("annotations") or {},
    )


def subject_from_request(
    request: AdmissionRequest, expected: GroupVersionResource
) -> AdmissionSubject:
    """
    Extract the admission subject from a decoded request.

    Args:
        request: Request section of the AdmissionReview
        expected: Resource the serving endpoint handles

    Raises:
        UnrecognizedRequestError: If the request is for another resource
        MalformedRequestError: If the object cannot be interpreted
    """
    if request.resource != expected:
        raise UnrecognizedRequestError(str(expected), str(request.resource))

    obj = request.object
    if not isinstance(obj, dict):
        raise MalformedRequestError(f"Request {request.uid} carries no object")

    try:
        if expected == POD_RESOURCE:
            return _pod_subject(request, obj)
        if expected == STATEFULSET_RESOURCE:
            return _statefulset_subject(request, obj)
    except (TypeError, AttributeError, ValueError) as e:
        raise MalformedRequestError(
            f"Failed to decode {expected} from request {request.uid}: {e}", cause=e
        ) from e

    raise UnrecognizedRequestError(str(expected), str(request.resource))
