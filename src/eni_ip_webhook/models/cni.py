"""
CNI kinds recognized by the webhook.

The default CNI of a cluster is read from the multus configuration published
by the TKE CNI agent; pods may override it with the networks annotation.
"""

from enum import StrEnum

from eni_ip_webhook.constants import TKE_BRIDGE, TKE_DIRECT_ENI, TKE_ROUTE_ENI


class CNIKind(StrEnum):
    """CNI delegate serving a pod's primary network."""

    ROUTE_ENI = TKE_ROUTE_ENI
    DIRECT_ENI = TKE_DIRECT_ENI
    BRIDGE = TKE_BRIDGE
    OTHER = "other"
    UNKNOWN = "unknown"


class OnConfigMapMissing(StrEnum):
    """What to do when the CNI ConfigMap does not exist."""

    TREAT_AS_ROUTE_ENI = "treat-as-route-eni"
    RETRY = "retry"
    FAIL = "fail"


def classify_default_delegates(default_delegates: str) -> CNIKind:
    """
    Classify a multus defaultDelegates value.

    Matching is by substring in priority order route-ENI, direct-ENI,
    bridge; anything else is reported as OTHER.
    """
    if TKE_ROUTE_ENI in default_delegates:
        return CNIKind.ROUTE_ENI
    if TKE_DIRECT_ENI in default_delegates:
        return CNIKind.DIRECT_ENI
    if TKE_BRIDGE in default_delegates:
        return CNIKind.BRIDGE
    return CNIKind.OTHER


def classify_networks_annotation(networks: str) -> CNIKind | None:
    """
    Classify a pod's networks annotation.

    Direct-ENI wins over route-ENI when both names appear. Returns None
    when the annotation names neither ENI CNI.
    """
    if TKE_DIRECT_ENI in networks:
        return CNIKind.DIRECT_ENI
    if TKE_ROUTE_ENI in networks:
        return CNIKind.ROUTE_ENI
    return None
