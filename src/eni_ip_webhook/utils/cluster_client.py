"""
Cluster client capability used by the webhook core.

This module wraps the handful of Kubernetes API calls the webhook needs
(ConfigMaps, Secrets, MutatingWebhookConfigurations and the server version)
and translates API exceptions into the webhook error hierarchy:

- 404 on read returns None
- 409 on write raises ConflictError
- connection failures raise a retryable KubernetesAPIError
- anything else raises KubernetesAPIError

The kubernetes client is synchronous, so every call runs in a worker thread
to keep the event loop free for concurrent admissions.
"""

import asyncio
import logging
import re
from collections.abc import Callable
from typing import Any

from kubernetes import client
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from ..errors import ConflictError, KubernetesAPIError

logger = logging.getLogger(__name__)


def _api_error(action: str, e: ApiException) -> KubernetesAPIError:
    if e.status == 409:
        return ConflictError(f"Failed to {action}: {e.reason}")
    return KubernetesAPIError(
        f"Failed to {action}: {e.reason}", reason=e.reason, status=e.status
    )


async def _call(action: str, fn: Callable[..., Any], **kwargs: Any) -> Any:
    """Run a blocking API call in a worker thread.

    ApiException propagates unchanged so callers can handle 404 and 409.
    """
    try:
        return await asyncio.to_thread(fn, **kwargs)
    except (HTTPError, OSError) as e:
        raise KubernetesAPIError(f"Failed to {action}: {e}", retryable=True) from e


class ClusterClient:
    """Reads and writes the cluster objects managed by the webhook."""

    def __init__(self, k8s_client: client.ApiClient | None = None):
        """
        Initialize cluster client.

        Args:
            k8s_client: Optional Kubernetes API client
        """
        self.k8s_client = k8s_client
        self._v1: client.CoreV1Api | None = None
        self._admission: client.AdmissionregistrationV1Api | None = None
        self._version: client.VersionApi | None = None

    @property
    def v1(self) -> client.CoreV1Api:
        """Get CoreV1Api client."""
        if self._v1 is None:
            self._v1 = client.CoreV1Api(self.k8s_client)
        return self._v1

    @property
    def admission(self) -> client.AdmissionregistrationV1Api:
        """Get AdmissionregistrationV1Api client."""
        if self._admission is None:
            self._admission = client.AdmissionregistrationV1Api(self.k8s_client)
        return self._admission

    @property
    def version(self) -> client.VersionApi:
        """Get VersionApi client."""
        if self._version is None:
            self._version = client.VersionApi(self.k8s_client)
        return self._version

    async def get_config_map(
        self, name: str, namespace: str
    ) -> client.V1ConfigMap | None:
        """
        Retrieve a ConfigMap.

        Returns:
            ConfigMap object if found, None if not found

        Raises:
            KubernetesAPIError: If read fails for reasons other than 404
        """
        action = f"read configmap {namespace}/{name}"
        try:
            return await _call(
                action,
                self.v1.read_namespaced_config_map,
                name=name,
                namespace=namespace,
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise _api_error(action, e) from e

    async def get_secret(self, name: str, namespace: str) -> client.V1Secret | None:
        """
        Retrieve a secret.

        Returns:
            Secret object if found, None if not found

        Raises:
            KubernetesAPIError: If read fails for reasons other than 404
        """
        action = f"read secret {namespace}/{name}"
        try:
            return await _call(
                action, self.v1.read_namespaced_secret, name=name, namespace=namespace
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise _api_error(action, e) from e

    async def create_secret(self, secret: client.V1Secret) -> client.V1Secret:
        namespace = secret.metadata.namespace
        action = f"create secret {namespace}/{secret.metadata.name}"
        try:
            return await _call(
                action,
                self.v1.create_namespaced_secret,
                namespace=namespace,
                body=secret,
            )
        except ApiException as e:
            raise _api_error(action, e) from e

    async def replace_secret(self, secret: client.V1Secret) -> client.V1Secret:
        namespace = secret.metadata.namespace
        name = secret.metadata.name
        action = f"update secret {namespace}/{name}"
        try:
            return await _call(
                action,
                self.v1.replace_namespaced_secret,
                name=name,
                namespace=namespace,
                body=secret,
            )
        except ApiException as e:
            raise _api_error(action, e) from e

    async def get_mutating_webhook_configuration(
        self, name: str
    ) -> client.V1MutatingWebhookConfiguration | None:
        """
        Retrieve a MutatingWebhookConfiguration.

        Returns:
            Configuration if found, None if not found

        Raises:
            KubernetesAPIError: If read fails for reasons other than 404
        """
        action = f"read mutatingwebhookconfiguration {name}"
        try:
            return await _call(
                action, self.admission.read_mutating_webhook_configuration, name=name
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise _api_error(action, e) from e

    async def create_mutating_webhook_configuration(
        self, configuration: client.V1MutatingWebhookConfiguration
    ) -> client.V1MutatingWebhookConfiguration:
        action = f"create mutatingwebhookconfiguration {configuration.metadata.name}"
        try:
            return await _call(
                action,
                self.admission.create_mutating_webhook_configuration,
                body=configuration,
            )
        except ApiException as e:
            raise _api_error(action, e) from e

    async def replace_mutating_webhook_configuration(
        self, configuration: client.V1MutatingWebhookConfiguration
    ) -> client.V1MutatingWebhookConfiguration:
        name = configuration.metadata.name
        action = f"update mutatingwebhookconfiguration {name}"
        try:
            return await _call(
                action,
                self.admission.replace_mutating_webhook_configuration,
                name=name,
                body=configuration,
            )
        except ApiException as e:
            raise _api_error(action, e) from e

    async def get_server_version(self) -> tuple[int, int]:
        """
        Get the API server's major and minor version.

        Minor versions reported by managed distributions carry suffixes
        such as "10+"; only the digits are kept.

        Raises:
            KubernetesAPIError: If the version cannot be read or parsed
        """
        action = "read server version"
        try:
            info = await _call(action, self.version.get_code)
        except ApiException as e:
            raise _api_error(action, e) from e

        major = "".join(re.findall(r"[0-9]", info.major or ""))
        minor = "".join(re.findall(r"[0-9]", info.minor or ""))
        if not major or not minor:
            raise KubernetesAPIError(
                f"Unparseable server version {info.major!r}.{info.minor!r}",
                retryable=False,
            )
        return int(major), int(minor)
