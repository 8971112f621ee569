"""
Reconciliation of the webhook identity objects.

This module upserts the two cluster objects that make the webhook reachable
and trusted by the API server:
- the Secret holding the serving certificate and key
- the MutatingWebhookConfiguration carrying the CA bundle and rules

Both objects have fixed names. Each is read first; a missing object is
created, an existing one is replaced with its resourceVersion carried forward
so that concurrent writers surface as conflicts instead of being overwritten.
"""

import base64
import logging

from kubernetes import client

from eni_ip_webhook.constants import (
    ADMISSION_REGISTRATION_V1_MIN_MINOR,
    MANAGED_BY_LABEL_KEY,
    MANAGED_BY_LABEL_VALUE,
    TLS_CERT_KEY,
    TLS_KEY_KEY,
)
from eni_ip_webhook.models.identity import CertBundle, WebhookIdentity
from eni_ip_webhook.utils.cluster_client import ClusterClient

logger = logging.getLogger(__name__)

FAILURE_POLICY_FAIL = "Fail"
FAILURE_POLICY_IGNORE = "Ignore"


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode()


class IdentityReconciler:
    """Idempotently upserts the webhook Secret and configuration."""

    def __init__(self, cluster: ClusterClient):
        self.cluster = cluster

    async def reconcile(self, bundle: CertBundle, identity: WebhookIdentity) -> None:
        """
        Make the cluster trust and call the webhook.

        Args:
            bundle: Freshly issued certificate material
            identity: Desired shape of the Secret and configuration

        Raises:
            KubernetesAPIError: If a read fails for reasons other than 404
            ConflictError: If an object changed between read and replace
        """
        await self._reconcile_secret(self.build_secret(bundle, identity))
        failure_policy = await self.failure_policy(identity)
        await self._reconcile_configuration(
            self.build_configuration(bundle, identity, failure_policy)
        )

    async def failure_policy(self, identity: WebhookIdentity) -> str:
        """
        Failure policy for the API server version.

        Kubernetes 1.10 mishandles Fail for mutating webhooks, so that one
        minor version is registered with Ignore. The configuration is written
        through admissionregistration.k8s.io/v1, which such clusters do not
        serve, so the write is expected to fail there.
        """
        major, minor = await self.cluster.get_server_version()
        if major == 1 and minor < ADMISSION_REGISTRATION_V1_MIN_MINOR:
            logger.warning(
                f"Cluster version {major}.{minor} does not serve "
                f"admissionregistration.k8s.io/v1, registering the webhook "
                f"configuration is likely to fail"
            )
        if major == 1 and minor == identity.legacy_failure_policy_minor:
            logger.info(
                f"Cluster version is {major}.{minor}, "
                f"registering webhook with failurePolicy={FAILURE_POLICY_IGNORE}"
            )
            return FAILURE_POLICY_IGNORE
        return FAILURE_POLICY_FAIL

    def build_secret(
        self, bundle: CertBundle, identity: WebhookIdentity
    ) -> client.V1Secret:
        """Desired TLS secret holding the serving certificate and key."""
        return client.V1Secret(
            api_version="v1",
            kind="Secret",
            metadata=client.V1ObjectMeta(
                name=identity.secret_name,
                namespace=identity.secret_namespace,
                labels={MANAGED_BY_LABEL_KEY: MANAGED_BY_LABEL_VALUE},
            ),
            type="Opaque",
            data={
                TLS_CERT_KEY: _b64(bundle.server_cert),
                TLS_KEY_KEY: _b64(bundle.server_key),
            },
        )

    def _client_config(
        self, bundle: CertBundle, identity: WebhookIdentity, path: str
    ) -> client.AdmissionregistrationV1WebhookClientConfig:
        if identity.in_cluster:
            return client.AdmissionregistrationV1WebhookClientConfig(
                ca_bundle=_b64(bundle.ca_cert),
                service=client.AdmissionregistrationV1ServiceReference(
                    namespace=identity.namespace,
                    name=identity.service_name,
                    path=path,
                ),
            )
        return client.AdmissionregistrationV1WebhookClientConfig(
            ca_bundle=_b64(bundle.ca_cert),
            url=identity.url_for(path),
        )

    def build_configuration(
        self,
        bundle: CertBundle,
        identity: WebhookIdentity,
        failure_policy: str = FAILURE_POLICY_FAIL,
    ) -> client.V1MutatingWebhookConfiguration:
        """Desired MutatingWebhookConfiguration."""
        namespace_selector = client.V1LabelSelector(
            match_expressions=[
                client.V1LabelSelectorRequirement(
                    key=identity.opt_out_label, operator="DoesNotExist"
                )
            ]
        )

        webhooks = [
            client.V1MutatingWebhook(
                name=identity.webhook_name,
                admission_review_versions=["v1", "v1beta1"],
                side_effects="None",
                failure_policy=failure_policy,
                timeout_seconds=identity.timeout_seconds,
                namespace_selector=namespace_selector,
                client_config=self._client_config(bundle, identity, identity.path),
                rules=[
                    client.V1RuleWithOperations(
                        operations=["CREATE"],
                        api_groups=[""],
                        api_versions=["v1"],
                        resources=["pods"],
                    )
                ],
            )
        ]

        if identity.statefulset_webhook_enabled:
            webhooks.append(
                client.V1MutatingWebhook(
                    name=identity.statefulset_webhook_name,
                    admission_review_versions=["v1", "v1beta1"],
                    side_effects="None",
                    failure_policy=failure_policy,
                    timeout_seconds=identity.timeout_seconds,
                    namespace_selector=namespace_selector,
                    client_config=self._client_config(
                        bundle, identity, identity.statefulset_path
                    ),
                    rules=[
                        client.V1RuleWithOperations(
                            operations=["CREATE", "UPDATE"],
                            api_groups=["apps"],
                            api_versions=["v1"],
                            resources=["statefulsets"],
                        )
                    ],
                )
            )

        return client.V1MutatingWebhookConfiguration(
            api_version="admissionregistration.k8s.io/v1",
            kind="MutatingWebhookConfiguration",
            metadata=client.V1ObjectMeta(
                name=identity.configuration_name,
                labels={MANAGED_BY_LABEL_KEY: MANAGED_BY_LABEL_VALUE},
            ),
            webhooks=webhooks,
        )

    async def _reconcile_secret(self, desired: client.V1Secret) -> None:
        namespace = desired.metadata.namespace
        name = desired.metadata.name

        current = await self.cluster.get_secret(name, namespace)
        if current is None:
            await self.cluster.create_secret(desired)
            logger.info(
                f"Created webhook secret {namespace}/{name}",
                extra={"resource_type": "Secret", "operation": "create"},
            )
            return

        desired.metadata.resource_version = current.metadata.resource_version
        await self.cluster.replace_secret(desired)
        logger.info(
            f"Updated webhook secret {namespace}/{name}",
            extra={"resource_type": "Secret", "operation": "update"},
        )

    async def _reconcile_configuration(
        self, desired: client.V1MutatingWebhookConfiguration
    ) -> None:
        name = desired.metadata.name

        current = await self.cluster.get_mutating_webhook_configuration(name)
        if current is None:
            await self.cluster.create_mutating_webhook_configuration(desired)
            logger.info(
                f"Created mutatingwebhookconfiguration {name}",
                extra={
                    "resource_type": "MutatingWebhookConfiguration",
                    "operation": "create",
                },
            )
            return

        desired.metadata.resource_version = current.metadata.resource_version
        await self.cluster.replace_mutating_webhook_configuration(desired)
        logger.info(
            f"Updated mutatingwebhookconfiguration {name}",
            extra={
                "resource_type": "MutatingWebhookConfiguration",
                "operation": "update",
            },
        )

    async def verify(self, bundle: CertBundle, identity: WebhookIdentity) -> bool:
        """
        Check that the live objects carry the issued material.

        A mismatch means another writer touched the objects after reconcile
        (or deleted them). The webhook keeps serving the in-memory bundle, so
        this only warns.

        Returns:
            True when both the secret and every CA bundle match
        """
        matches = True

        secret = await self.cluster.get_secret(
            identity.secret_name, identity.secret_namespace
        )
        if secret is None:
            logger.warning(
                f"Secret {identity.secret_namespace}/{identity.secret_name} "
                "disappeared; serving the certificate generated in memory"
            )
            matches = False
        else:
            data = secret.data or {}
            if data.get(TLS_CERT_KEY) != _b64(bundle.server_cert) or data.get(
                TLS_KEY_KEY
            ) != _b64(bundle.server_key):
                logger.warning(
                    f"Secret {identity.secret_namespace}/{identity.secret_name} "
                    "does not hold the certificate and key this process issued"
                )
                matches = False

        configuration = await self.cluster.get_mutating_webhook_configuration(
            identity.configuration_name
        )
        if configuration is None:
            logger.warning(
                f"Mutatingwebhookconfiguration {identity.configuration_name} disappeared"
            )
            return False

        for webhook in configuration.webhooks or []:
            ca_bundle = webhook.client_config.ca_bundle or ""
            if base64.b64decode(ca_bundle) != bundle.ca_cert:
                logger.warning(
                    f"Webhook {webhook.name} trusts a different CA than the one "
                    "this process issued; the API server will reject its TLS handshake"
                )
                matches = False

        if matches:
            logger.info("Webhook secret and configuration verified")
        return matches
