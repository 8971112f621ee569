"""
Models describing the webhook's identity in the cluster.

The identity is the pair of cluster objects that make the webhook reachable
and trusted: a Secret holding the serving certificate and a
MutatingWebhookConfiguration carrying the CA bundle and routing rules.
"""

from dataclasses import dataclass, field

from pydantic import BaseModel, Field

from eni_ip_webhook.constants import (
    DEFAULT_LEGACY_FAILURE_POLICY_MINOR,
    DEFAULT_REMOTE_WEBHOOK_PORT,
    DEFAULT_STATEFULSET_WEBHOOK_PATH,
    DEFAULT_WEBHOOK_PATH,
    MUTATING_WEBHOOK_NAME,
    NAMESPACE_OPT_OUT_LABEL,
    SECRET_NAME,
    SERVICE_NAME,
    STATEFULSET_WEBHOOK_NAME,
    WEBHOOK_NAME,
)


@dataclass(frozen=True)
class CertBundle:
    """PEM-encoded CA and serving certificate material.

    The CA key is only kept long enough to sign the serving certificate;
    it is never written to the cluster or to disk.
    """

    ca_cert: bytes
    ca_key: bytes = field(repr=False)
    server_cert: bytes
    server_key: bytes = field(repr=False)


class WebhookIdentity(BaseModel):
    """Desired shape of the Secret and MutatingWebhookConfiguration."""

    model_config = {"frozen": True}

    namespace: str = Field(..., description="Namespace of the webhook service")
    secret_namespace: str = Field(..., description="Namespace of the TLS secret")
    in_cluster: bool = Field(
        True, description="Route via Service reference instead of explicit URL"
    )
    secret_name: str = SECRET_NAME
    configuration_name: str = WEBHOOK_NAME
    webhook_name: str = MUTATING_WEBHOOK_NAME
    service_name: str = SERVICE_NAME
    path: str = DEFAULT_WEBHOOK_PATH
    remote_port: int = DEFAULT_REMOTE_WEBHOOK_PORT
    opt_out_label: str = NAMESPACE_OPT_OUT_LABEL
    legacy_failure_policy_minor: int = DEFAULT_LEGACY_FAILURE_POLICY_MINOR
    timeout_seconds: int = 10
    statefulset_webhook_enabled: bool = False
    statefulset_webhook_name: str = STATEFULSET_WEBHOOK_NAME
    statefulset_path: str = DEFAULT_STATEFULSET_WEBHOOK_PATH

    def url_for(self, path: str) -> str:
        """Explicit webhook URL used by remote deployments."""
        return (
            f"https://{self.configuration_name}.{self.namespace}"
            f".svc.cluster.local:{self.remote_port}{path}"
        )
