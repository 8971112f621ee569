"""
Utils package - Utility modules for ENI IP webhook functionality.

Contains helper modules for:
- Kubernetes client construction
- The cluster client capability used by the webhook core
"""

from eni_ip_webhook.utils.cluster_client import ClusterClient
from eni_ip_webhook.utils.kubernetes import get_kubernetes_client

__all__ = [
    "ClusterClient",
    "get_kubernetes_client",
]
