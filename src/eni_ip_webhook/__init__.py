"""
ENI IP Webhook - A mutating admission webhook for TKE ENI networking.

This webhook injects the ENI IP extended resource into newly created pods:
- Resolves the cluster default CNI from the multus ConfigMap
- Patches pods served by tke-route-eni or tke-direct-eni
- Denies static-IP StatefulSets that do not use the ENI CNI
- Bootstraps its own CA, serving certificate and webhook configuration
"""

__version__ = "0.1.0"
