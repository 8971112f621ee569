"""Unit tests for the pod and StatefulSet admission policy."""

import pytest

from eni_ip_webhook.constants import (
    CNI_NETWORKS_ANNOTATION,
    DIRECT_ENI_RESOURCE,
    ENI_IP_RESOURCE,
    LEGACY_STATIC_IP_ANNOTATION,
    STATIC_IP_ANNOTATION,
)
from eni_ip_webhook.errors import MalformedRequestError, UnrecognizedRequestError
from eni_ip_webhook.models.admission import (
    POD_RESOURCE,
    STATEFULSET_RESOURCE,
    AdmissionRequest,
    GroupVersionResource,
    PodSubject,
    StatefulSetSubject,
)
from eni_ip_webhook.models.cni import CNIKind
from eni_ip_webhook.webhooks.policy import (
    AdmissionPolicy,
    build_resources_patch,
    subject_from_request,
)


@pytest.fixture
def policy():
    return AdmissionPolicy()


def patched_resource_names(verdict) -> set[str]:
    value = verdict.patch[0].value
    return set(value["requests"]) & set(value["limits"]) - {"cpu", "memory"}


class TestHostNetworkPods:
    """Host network pods never get an extended resource."""

    @pytest.mark.parametrize("default_cni", list(CNIKind))
    @pytest.mark.parametrize(
        "annotations",
        [
            {},
            {CNI_NETWORKS_ANNOTATION: "tke-route-eni"},
            {CNI_NETWORKS_ANNOTATION: "tke-direct-eni"},
        ],
    )
    def test_host_network_is_allowed_without_patch(
        self, policy, default_cni, annotations
    ):
        pod = PodSubject(
            namespace="default",
            name="web",
            host_network=True,
            annotations=annotations,
        )

        verdict = policy.decide(pod, default_cni)

        assert verdict.allowed is True
        assert verdict.patch is None


class TestNetworksAnnotation:
    """The networks annotation overrides the default CNI."""

    @pytest.mark.parametrize("default_cni", list(CNIKind))
    @pytest.mark.parametrize(
        "networks",
        ["tke-direct-eni", "tke-route-eni,tke-direct-eni", "tke-direct-eni@eth1"],
    )
    def test_direct_eni_marker_patches_direct_eni(
        self, policy, default_cni, networks
    ):
        pod = PodSubject(annotations={CNI_NETWORKS_ANNOTATION: networks})

        verdict = policy.decide(pod, default_cni)

        assert verdict.allowed is True
        assert patched_resource_names(verdict) == {DIRECT_ENI_RESOURCE}

    def test_route_eni_annotation_patches_eni_ip(self, policy):
        pod = PodSubject(annotations={CNI_NETWORKS_ANNOTATION: "tke-route-eni"})

        verdict = policy.decide(pod, CNIKind.BRIDGE)

        assert patched_resource_names(verdict) == {ENI_IP_RESOURCE}

    def test_annotation_naming_other_cni_is_not_patched(self, policy):
        """An explicit non-ENI annotation wins over an ENI default."""
        pod = PodSubject(annotations={CNI_NETWORKS_ANNOTATION: "tke-bridge"})

        verdict = policy.decide(pod, CNIKind.ROUTE_ENI)

        assert verdict.allowed is True
        assert verdict.patch is None


class TestDefaultCNI:
    """Pods without the annotation follow the cluster default CNI."""

    @pytest.mark.parametrize(
        ("default_cni", "expected"),
        [
            (CNIKind.ROUTE_ENI, {ENI_IP_RESOURCE}),
            (CNIKind.DIRECT_ENI, {DIRECT_ENI_RESOURCE}),
        ],
    )
    def test_mapped_default_is_patched(self, policy, default_cni, expected):
        verdict = policy.decide(PodSubject(), default_cni)

        assert verdict.allowed is True
        assert patched_resource_names(verdict) == expected

    @pytest.mark.parametrize(
        "default_cni", [CNIKind.BRIDGE, CNIKind.OTHER, CNIKind.UNKNOWN]
    )
    def test_unmapped_default_is_allowed_without_patch(self, policy, default_cni):
        verdict = policy.decide(PodSubject(), default_cni)

        assert verdict.allowed is True
        assert verdict.patch is None

    def test_route_eni_default_with_cpu_request(self, policy):
        pod = PodSubject(resources={"requests": {"cpu": "100m"}})

        verdict = policy.decide(pod, CNIKind.ROUTE_ENI)

        assert verdict.patch_document() == [
            {
                "op": "replace",
                "path": "/spec/containers/0/resources",
                "value": {
                    "requests": {"cpu": "100m", ENI_IP_RESOURCE: "1"},
                    "limits": {ENI_IP_RESOURCE: "1"},
                },
            }
        ]

    def test_custom_resource_mapping(self):
        policy = AdmissionPolicy(resource_mapping={CNIKind.BRIDGE: "example.com/ip"})

        verdict = policy.decide(PodSubject(), CNIKind.BRIDGE)

        assert patched_resource_names(verdict) == {"example.com/ip"}
        assert policy.decide(PodSubject(), CNIKind.ROUTE_ENI).patch is None


class TestBuildResourcesPatch:
    """Existing resource fields survive the patch."""

    def test_preserves_limits_and_other_fields(self):
        resources = {
            "requests": {"cpu": "100m", "memory": "64Mi"},
            "limits": {"memory": "128Mi"},
            "claims": [{"name": "gpu"}],
        }

        patch = build_resources_patch(resources, ENI_IP_RESOURCE)

        assert patch[0].value == {
            "requests": {"cpu": "100m", "memory": "64Mi", ENI_IP_RESOURCE: "1"},
            "limits": {"memory": "128Mi", ENI_IP_RESOURCE: "1"},
            "claims": [{"name": "gpu"}],
        }

    def test_does_not_mutate_input(self):
        resources = {"requests": {"cpu": "100m"}}

        build_resources_patch(resources, ENI_IP_RESOURCE)

        assert resources == {"requests": {"cpu": "100m"}}

    def test_overrides_existing_quantity(self):
        resources = {"limits": {ENI_IP_RESOURCE: "3"}}

        patch = build_resources_patch(resources, ENI_IP_RESOURCE)

        assert patch[0].value["limits"][ENI_IP_RESOURCE] == "1"

    def test_empty_resources(self):
        patch = build_resources_patch({}, DIRECT_ENI_RESOURCE)

        assert patch[0].op == "replace"
        assert patch[0].value == {
            "requests": {DIRECT_ENI_RESOURCE: "1"},
            "limits": {DIRECT_ENI_RESOURCE: "1"},
        }


class TestStatefulSetPolicy:
    """Static IP StatefulSets must select the routed ENI CNI."""

    def test_static_ip_with_bridge_template_is_denied(self, policy):
        statefulset = StatefulSetSubject(
            namespace="default",
            name="db",
            annotations={STATIC_IP_ANNOTATION: "true"},
            template_annotations={CNI_NETWORKS_ANNOTATION: "tke-bridge"},
        )

        verdict = policy.decide(statefulset, CNIKind.ROUTE_ENI)

        assert verdict.allowed is False
        assert verdict.patch is None
        assert "default/db" in verdict.deny_reason
        assert "tke-bridge" in verdict.deny_reason
        assert "tke-route-eni" in verdict.deny_reason

    def test_static_ip_without_template_annotation_is_denied(self, policy):
        statefulset = StatefulSetSubject(
            name="db", annotations={LEGACY_STATIC_IP_ANNOTATION: "true"}
        )

        verdict = policy.decide(statefulset, CNIKind.ROUTE_ENI)

        assert verdict.allowed is False

    def test_static_ip_on_template_is_checked(self, policy):
        statefulset = StatefulSetSubject(
            name="db",
            template_annotations={
                STATIC_IP_ANNOTATION: "true",
                CNI_NETWORKS_ANNOTATION: "tke-direct-eni",
            },
        )

        assert policy.decide(statefulset, CNIKind.ROUTE_ENI).allowed is False

    def test_static_ip_with_route_eni_template_is_allowed(self, policy):
        statefulset = StatefulSetSubject(
            name="db",
            annotations={STATIC_IP_ANNOTATION: "true"},
            template_annotations={CNI_NETWORKS_ANNOTATION: "tke-route-eni"},
        )

        verdict = policy.decide(statefulset, CNIKind.BRIDGE)

        assert verdict.allowed is True
        assert verdict.patch is None

    @pytest.mark.parametrize("value", ["false", "", "yes"])
    def test_without_static_ip_request_is_allowed(self, policy, value):
        statefulset = StatefulSetSubject(
            name="db",
            annotations={STATIC_IP_ANNOTATION: value},
            template_annotations={CNI_NETWORKS_ANNOTATION: "tke-bridge"},
        )

        assert policy.decide(statefulset, CNIKind.ROUTE_ENI).allowed is True


def pod_request(obj, resource=POD_RESOURCE, namespace="default"):
    return AdmissionRequest(
        uid="705ab4f5-6393-11e8-b7cc-42010a800002",
        resource=resource,
        namespace=namespace,
        operation="CREATE",
        object=obj,
    )


class TestSubjectFromRequest:
    """Decoding admission requests into policy subjects."""

    def test_pod_subject(self):
        request = pod_request(
            {
                "metadata": {
                    "generateName": "web-",
                    "annotations": {CNI_NETWORKS_ANNOTATION: "tke-route-eni"},
                    "ownerReferences": [{"kind": "ReplicaSet", "name": "web-5d8"}],
                },
                "spec": {
                    "hostNetwork": True,
                    "containers": [
                        {"name": "app", "resources": {"requests": {"cpu": "1"}}},
                        {"name": "sidecar"},
                    ],
                },
            }
        )

        subject = subject_from_request(request, POD_RESOURCE)

        assert isinstance(subject, PodSubject)
        assert subject.namespace == "default"
        assert subject.name == "web-"
        assert subject.host_network is True
        assert subject.resources == {"requests": {"cpu": "1"}}
        assert subject.annotations == {CNI_NETWORKS_ANNOTATION: "tke-route-eni"}
        assert subject.display_name == "pod of ReplicaSet web-5d8 in namespace default"

    def test_statefulset_subject(self):
        request = pod_request(
            {
                "metadata": {
                    "name": "db",
                    "namespace": "data",
                    "annotations": {STATIC_IP_ANNOTATION: "true"},
                },
                "spec": {
                    "template": {
                        "metadata": {
                            "annotations": {CNI_NETWORKS_ANNOTATION: "tke-bridge"}
                        }
                    }
                },
            },
            resource=STATEFULSET_RESOURCE,
        )

        subject = subject_from_request(request, STATEFULSET_RESOURCE)

        assert isinstance(subject, StatefulSetSubject)
        assert subject.namespace == "data"
        assert subject.template_annotations == {
            CNI_NETWORKS_ANNOTATION: "tke-bridge"
        }

    def test_unexpected_resource_is_unrecognized(self):
        request = pod_request(
            {"metadata": {}},
            resource=GroupVersionResource(group="apps", version="v1", resource="deployments"),
        )

        with pytest.raises(UnrecognizedRequestError) as exc_info:
            subject_from_request(request, POD_RESOURCE)

        assert exc_info.value.expected == "core/v1/pods"
        assert exc_info.value.actual == "apps/v1/deployments"

    def test_pod_on_statefulset_endpoint_is_unrecognized(self):
        request = pod_request({"spec": {"containers": [{}]}})

        with pytest.raises(UnrecognizedRequestError):
            subject_from_request(request, STATEFULSET_RESOURCE)

    @pytest.mark.parametrize(
        "obj",
        [
            None,
            {"spec": {}},
            {"spec": {"containers": []}},
            {"metadata": "web", "spec": {"containers": [{}]}},
            {"spec": {"hostNetwork": "false", "containers": [{}]}},
            {"spec": {"containers": [{"resources": {"requests": ["cpu"]}}]}},
            {"spec": {"containers": [{"resources": {"limits": "1"}}]}},
        ],
    )
    def test_malformed_pod(self, obj):
        with pytest.raises(MalformedRequestError):
            subject_from_request(pod_request(obj), POD_RESOURCE)

    def test_malformed_annotations(self):
        request = pod_request(
            {"metadata": {"annotations": {"a": 1}}, "spec": {"containers": [{}]}}
        )

        with pytest.raises(MalformedRequestError):
            subject_from_request(request, POD_RESOURCE)
