"""Unit tests for the cluster client capability."""

from unittest.mock import MagicMock, patch

import pytest
from kubernetes import client
from kubernetes.client.rest import ApiException
from urllib3.exceptions import MaxRetryError, ProtocolError

from eni_ip_webhook.errors import ConflictError, KubernetesAPIError
from eni_ip_webhook.utils.cluster_client import ClusterClient


@pytest.fixture
def cluster():
    cluster = ClusterClient()
    cluster._v1 = MagicMock()
    cluster._admission = MagicMock()
    cluster._version = MagicMock()
    return cluster


def secret(name="certs", namespace="kube-system"):
    return client.V1Secret(
        metadata=client.V1ObjectMeta(name=name, namespace=namespace)
    )


class TestInit:
    """Lazily created API clients."""

    def test_init_with_client(self):
        mock_client = MagicMock()
        assert ClusterClient(k8s_client=mock_client).k8s_client is mock_client

    def test_v1_property_creates_client(self):
        cluster = ClusterClient()

        with patch(
            "eni_ip_webhook.utils.cluster_client.client.CoreV1Api"
        ) as mock_v1:
            first = cluster.v1
            second = cluster.v1

        mock_v1.assert_called_once_with(None)
        assert first is second


class TestReads:
    """404 means absent; anything else is an error."""

    @pytest.mark.asyncio
    async def test_get_config_map(self, cluster):
        expected = client.V1ConfigMap(data={"k": "v"})
        cluster.v1.read_namespaced_config_map.return_value = expected

        result = await cluster.get_config_map("conf", "kube-system")

        assert result is expected
        cluster.v1.read_namespaced_config_map.assert_called_once_with(
            name="conf", namespace="kube-system"
        )

    @pytest.mark.asyncio
    async def test_missing_config_map_is_none(self, cluster):
        cluster.v1.read_namespaced_config_map.side_effect = ApiException(status=404)

        assert await cluster.get_config_map("conf", "kube-system") is None

    @pytest.mark.asyncio
    async def test_missing_secret_is_none(self, cluster):
        cluster.v1.read_namespaced_secret.side_effect = ApiException(status=404)

        assert await cluster.get_secret("certs", "kube-system") is None

    @pytest.mark.asyncio
    async def test_missing_configuration_is_none(self, cluster):
        cluster.admission.read_mutating_webhook_configuration.side_effect = (
            ApiException(status=404)
        )

        assert await cluster.get_mutating_webhook_configuration("hook") is None

    @pytest.mark.asyncio
    async def test_forbidden_read_is_not_retryable(self, cluster):
        cluster.v1.read_namespaced_secret.side_effect = ApiException(
            status=403, reason="Forbidden"
        )

        with pytest.raises(KubernetesAPIError) as exc_info:
            await cluster.get_secret("certs", "kube-system")

        assert exc_info.value.status == 403
        assert exc_info.value.retryable is False
        assert "kube-system/certs" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_server_error_is_retryable(self, cluster):
        cluster.v1.read_namespaced_config_map.side_effect = ApiException(
            status=500, reason="Internal Server Error"
        )

        with pytest.raises(KubernetesAPIError) as exc_info:
            await cluster.get_config_map("conf", "kube-system")

        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_unreachable_api_server_is_retryable(self, cluster):
        cluster.v1.read_namespaced_config_map.side_effect = MaxRetryError(
            None, "/api/v1/namespaces/kube-system/configmaps/conf"
        )

        with pytest.raises(KubernetesAPIError) as exc_info:
            await cluster.get_config_map("conf", "kube-system")

        assert exc_info.value.retryable is True
        assert exc_info.value.status is None
        assert isinstance(exc_info.value.__cause__, MaxRetryError)

    @pytest.mark.asyncio
    async def test_refused_connection_is_retryable(self, cluster):
        cluster.admission.read_mutating_webhook_configuration.side_effect = (
            ConnectionRefusedError(111, "Connection refused")
        )

        with pytest.raises(KubernetesAPIError) as exc_info:
            await cluster.get_mutating_webhook_configuration("hook")

        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_dropped_connection_on_write(self, cluster):
        cluster.v1.replace_namespaced_secret.side_effect = ProtocolError(
            "Connection aborted."
        )

        with pytest.raises(KubernetesAPIError) as exc_info:
            await cluster.replace_secret(secret())

        assert "update secret kube-system/certs" in str(exc_info.value)


class TestWrites:
    """Writes pass the object through and map conflicts."""

    @pytest.mark.asyncio
    async def test_create_secret(self, cluster):
        body = secret()

        await cluster.create_secret(body)

        cluster.v1.create_namespaced_secret.assert_called_once_with(
            namespace="kube-system", body=body
        )

    @pytest.mark.asyncio
    async def test_replace_secret_conflict(self, cluster):
        cluster.v1.replace_namespaced_secret.side_effect = ApiException(
            status=409, reason="Conflict"
        )

        with pytest.raises(ConflictError) as exc_info:
            await cluster.replace_secret(secret())

        assert exc_info.value.status == 409
        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_replace_configuration(self, cluster):
        body = client.V1MutatingWebhookConfiguration(
            metadata=client.V1ObjectMeta(name="hook", resource_version="7")
        )

        await cluster.replace_mutating_webhook_configuration(body)

        cluster.admission.replace_mutating_webhook_configuration.assert_called_once_with(
            name="hook", body=body
        )


class TestServerVersion:
    """Version parsing tolerates distribution suffixes."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("major", "minor", "expected"),
        [("1", "28", (1, 28)), ("1", "10+", (1, 10)), ("1+", "20-eks", (1, 20))],
    )
    async def test_parses_version(self, cluster, major, minor, expected):
        cluster.version.get_code.return_value = client.VersionInfo(
            major=major,
            minor=minor,
            build_date="",
            compiler="",
            git_commit="",
            git_tree_state="",
            git_version="",
            go_version="",
            platform="",
        )

        assert await cluster.get_server_version() == expected

    @pytest.mark.asyncio
    async def test_unparseable_version(self, cluster):
        cluster.version.get_code.return_value = MagicMock(major="", minor="x")

        with pytest.raises(KubernetesAPIError):
            await cluster.get_server_version()
