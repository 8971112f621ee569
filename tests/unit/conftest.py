"""Shared fixtures for webhook unit tests."""

import copy

import pytest
from kubernetes import client

from eni_ip_webhook.constants import SERVICE_NAME
from eni_ip_webhook.errors import ConflictError
from eni_ip_webhook.models.identity import WebhookIdentity
from eni_ip_webhook.services.certificate_authority import (
    CertificateAuthority,
    service_dns_names,
)


class FakeClusterClient:
    """In-memory stand-in for ClusterClient with resourceVersion bookkeeping."""

    def __init__(self, version: tuple[int, int] = (1, 28)):
        self.version = version
        self.config_maps: dict[tuple[str, str], client.V1ConfigMap] = {}
        self.secrets: dict[tuple[str, str], client.V1Secret] = {}
        self.configurations: dict[str, client.V1MutatingWebhookConfiguration] = {}
        self.writes: list[tuple[str, str]] = []

    def add_config_map(self, name: str, namespace: str, data: dict | None) -> None:
        self.config_maps[(namespace, name)] = client.V1ConfigMap(
            metadata=client.V1ObjectMeta(name=name, namespace=namespace), data=data
        )

    @staticmethod
    def _bump(obj) -> None:
        current = int(obj.metadata.resource_version or 0)
        obj.metadata.resource_version = str(current + 1)

    async def get_config_map(self, name, namespace):
        return copy.deepcopy(self.config_maps.get((namespace, name)))

    async def get_secret(self, name, namespace):
        return copy.deepcopy(self.secrets.get((namespace, name)))

    async def create_secret(self, secret):
        key = (secret.metadata.namespace, secret.metadata.name)
        if key in self.secrets:
            raise ConflictError(f"secret {key} already exists")
        stored = copy.deepcopy(secret)
        self._bump(stored)
        self.secrets[key] = stored
        self.writes.append(("create", "Secret"))
        return copy.deepcopy(stored)

    async def replace_secret(self, secret):
        key = (secret.metadata.namespace, secret.metadata.name)
        current = self.secrets[key]
        if secret.metadata.resource_version != current.metadata.resource_version:
            raise ConflictError(f"secret {key} was modified")
        stored = copy.deepcopy(secret)
        self._bump(stored)
        self.secrets[key] = stored
        self.writes.append(("replace", "Secret"))
        return copy.deepcopy(stored)

    async def get_mutating_webhook_configuration(self, name):
        return copy.deepcopy(self.configurations.get(name))

    async def create_mutating_webhook_configuration(self, configuration):
        name = configuration.metadata.name
        if name in self.configurations:
            raise ConflictError(f"configuration {name} already exists")
        stored = copy.deepcopy(configuration)
        self._bump(stored)
        self.configurations[name] = stored
        self.writes.append(("create", "MutatingWebhookConfiguration"))
        return copy.deepcopy(stored)

    async def replace_mutating_webhook_configuration(self, configuration):
        name = configuration.metadata.name
        current = self.configurations[name]
        if (
            configuration.metadata.resource_version
            != current.metadata.resource_version
        ):
            raise ConflictError(f"configuration {name} was modified")
        stored = copy.deepcopy(configuration)
        self._bump(stored)
        self.configurations[name] = stored
        self.writes.append(("replace", "MutatingWebhookConfiguration"))
        return copy.deepcopy(stored)

    async def get_server_version(self):
        return self.version


@pytest.fixture
def fake_cluster():
    """Empty in-memory cluster."""
    return FakeClusterClient()


@pytest.fixture
def identity():
    """In-cluster webhook identity in the kube-system namespace."""
    return WebhookIdentity(namespace="kube-system", secret_namespace="kube-system")


@pytest.fixture(scope="session")
def cert_bundle():
    """One issued bundle shared by the session; RSA generation is slow."""
    authority = CertificateAuthority(f"{SERVICE_NAME}.kube-system")
    return authority.issue(service_dns_names(SERVICE_NAME, "kube-system"))
