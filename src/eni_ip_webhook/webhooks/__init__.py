"""
Admission webhooks for the ENI IP webhook.

The pod endpoint injects the ENI extended resource matching the pod's CNI;
the optional StatefulSet endpoint rejects static IP requests on CNIs that
cannot honour them. Both are served by an aiohttp HTTPS server using the
self-signed certificate issued at startup.
"""

from .policy import AdmissionPolicy, build_resources_patch, subject_from_request
from .server import AdmissionServer, review_response, write_serving_certificate

__all__ = [
    "AdmissionPolicy",
    "AdmissionServer",
    "build_resources_patch",
    "review_response",
    "subject_from_request",
    "write_serving_certificate",
]
