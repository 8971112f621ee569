"""
Service layer for the ENI IP webhook.

This module provides the startup services: resolving the cluster default CNI,
issuing the webhook certificate and reconciling the cluster objects that make
the webhook trusted by the API server.
"""

from .certificate_authority import CertificateAuthority, service_dns_names
from .cni_resolver import ClusterConfigReader, DefaultCNISource
from .identity_reconciler import IdentityReconciler

__all__ = [
    "CertificateAuthority",
    "ClusterConfigReader",
    "DefaultCNISource",
    "IdentityReconciler",
    "service_dns_names",
]
