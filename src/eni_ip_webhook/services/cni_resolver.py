"""
Default CNI resolution from the TKE multus configuration.

The TKE CNI agent publishes the multus configuration in a ConfigMap in
kube-system. Its ``defaultDelegates`` field names the CNI that serves pods
without an explicit networks annotation, which decides the extended resource
injected into them.
"""

import asyncio
import json
import logging

from eni_ip_webhook.constants import (
    CNI_CONFIG_MAP_KEY,
    CNI_CONFIG_MAP_NAME,
    CNI_DEFAULT_DELEGATES_FIELD,
    DEFAULT_CNI_MAX_ATTEMPTS,
    DEFAULT_CNI_MAX_BACKOFF,
    DEFAULT_CNI_POLL_INTERVAL,
    NAMESPACE_KUBE_SYSTEM,
)
from eni_ip_webhook.errors import (
    ConfigurationError,
    MalformedConfigError,
    TemporaryError,
    WebhookError,
)
from eni_ip_webhook.models.cni import (
    CNIKind,
    OnConfigMapMissing,
    classify_default_delegates,
)
from eni_ip_webhook.observability.metrics import metrics_collector
from eni_ip_webhook.settings import Settings
from eni_ip_webhook.utils.cluster_client import ClusterClient

logger = logging.getLogger(__name__)


class ClusterConfigReader:
    """Reads the cluster default CNI with bounded polling."""

    def __init__(
        self,
        cluster: ClusterClient,
        on_configmap_missing: OnConfigMapMissing = OnConfigMapMissing.RETRY,
        poll_interval: float = DEFAULT_CNI_POLL_INTERVAL,
        max_backoff: float = DEFAULT_CNI_MAX_BACKOFF,
        max_attempts: int = DEFAULT_CNI_MAX_ATTEMPTS,
        fallback_cni: CNIKind | None = None,
        namespace: str = NAMESPACE_KUBE_SYSTEM,
        name: str = CNI_CONFIG_MAP_NAME,
        key: str = CNI_CONFIG_MAP_KEY,
    ):
        """
        Initialize the reader.

        Args:
            cluster: Cluster client used to read the ConfigMap
            on_configmap_missing: Policy when the ConfigMap does not exist
            poll_interval: Delay before the first retry, doubled on each retry
            max_backoff: Upper bound of the retry delay
            max_attempts: Maximum reads before giving up (0 = unbounded)
            fallback_cni: CNI returned when the budget is exhausted
            namespace: ConfigMap namespace
            name: ConfigMap name
            key: ConfigMap data key holding the multus configuration
        """
        self.cluster = cluster
        self.on_configmap_missing = on_configmap_missing
        self.poll_interval = poll_interval
        self.max_backoff = max_backoff
        self.max_attempts = max_attempts
        self.fallback_cni = fallback_cni
        self.namespace = namespace
        self.name = name
        self.key = key

    @classmethod
    def from_settings(
        cls, cluster: ClusterClient, settings: Settings
    ) -> "ClusterConfigReader":
        return cls(
            cluster,
            on_configmap_missing=settings.on_cni_configmap_missing,
            poll_interval=settings.cni_poll_interval_seconds,
            max_backoff=settings.cni_max_backoff_seconds,
            max_attempts=settings.cni_max_attempts,
            fallback_cni=settings.fallback_cni,
        )

    @property
    def source(self) -> str:
        return f"configmap {self.namespace}/{self.name} key {self.key}"

    def parse(self, raw: str) -> CNIKind:
        """
        Classify the multus configuration stored in the ConfigMap.

        Raises:
            MalformedConfigError: If the value is not a JSON object with a
                string ``defaultDelegates`` field
        """
        try:
            net_conf = json.loads(raw)
        except json.JSONDecodeError as e:
            raise MalformedConfigError(self.source, str(e), cause=e) from e

        if not isinstance(net_conf, dict):
            raise MalformedConfigError(self.source, "expected a JSON object")

        default_delegates = net_conf.get(CNI_DEFAULT_DELEGATES_FIELD) or ""
        if not isinstance(default_delegates, str):
            raise MalformedConfigError(
                self.source, f"{CNI_DEFAULT_DELEGATES_FIELD} must be a string"
            )

        cni = classify_default_delegates(default_delegates)
        if cni is CNIKind.OTHER:
            logger.warning(f"No known default cni included in {self.source}")
        return cni

    async def resolve_once(self) -> CNIKind:
        """
        Read the ConfigMap once.

        Raises:
            TemporaryError: If the ConfigMap or key is missing and may appear later
            ConfigurationError: If the ConfigMap is missing under the fail policy
            MalformedConfigError: If the stored configuration cannot be parsed
            KubernetesAPIError: If the read itself fails
        """
        config_map = await self.cluster.get_config_map(self.name, self.namespace)

        if config_map is None:
            if self.on_configmap_missing is OnConfigMapMissing.TREAT_AS_ROUTE_ENI:
                logger.info(
                    f"ConfigMap {self.namespace}/{self.name} not found, "
                    f"assuming {CNIKind.ROUTE_ENI} is the default cni"
                )
                return CNIKind.ROUTE_ENI
            if self.on_configmap_missing is OnConfigMapMissing.FAIL:
                raise ConfigurationError(
                    f"ConfigMap {self.namespace}/{self.name} not found",
                    user_action="Install the TKE CNI agent or change ON_CNI_CONFIGMAP_MISSING",
                )
            raise TemporaryError(f"ConfigMap {self.namespace}/{self.name} not found")

        raw = (config_map.data or {}).get(self.key)
        if raw is None:
            raise TemporaryError(
                f"No {self.key} key found in configmap {self.namespace}/{self.name}"
            )

        return self.parse(raw)

    async def resolve_default_cni(self) -> CNIKind:
        """
        Resolve the default CNI, retrying transient failures.

        Returns:
            The resolved CNI, or the fallback CNI once the budget is spent

        Raises:
            WebhookError: Non-retryable errors immediately, or a
                TemporaryError when the budget is spent without a fallback
        """
        delay = self.poll_interval
        attempt = 0
        last_error: WebhookError | None = None

        while True:
            attempt += 1
            try:
                cni = await self.resolve_once()
                logger.info(
                    f"Default CNI is {cni}", extra={"default_cni": cni.value}
                )
                return cni
            except WebhookError as e:
                if not e.retryable:
                    logger.error(f"Failed to determine the default cni: {e}")
                    raise
                last_error = e

            if self.max_attempts and attempt >= self.max_attempts:
                break

            logger.warning(
                f"Reading {self.source} attempt {attempt} failed, "
                f"retrying in {delay}s: {last_error}"
            )
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.max_backoff)

        if self.fallback_cni is not None:
            logger.warning(
                f"Giving up on {self.source} after {attempt} attempts, "
                f"falling back to {self.fallback_cni}: {last_error}"
            )
            return self.fallback_cni

        raise TemporaryError(
            f"Failed to determine the default cni after {attempt} attempts: {last_error}",
            cause=last_error,
        )


class DefaultCNISource:
    """Supplies the default CNI to the admission server.

    In startup mode the CNI is resolved once and cached for the process
    lifetime. In per-request mode every admission re-reads the ConfigMap
    once and falls back to the last known value if that read fails.
    """

    def __init__(self, reader: ClusterConfigReader, per_request: bool = False):
        self.reader = reader
        self.per_request = per_request
        self._cached: CNIKind | None = None

    @property
    def cached(self) -> CNIKind | None:
        return self._cached

    def _remember(self, cni: CNIKind) -> None:
        if cni is not self._cached:
            if self._cached is not None:
                logger.info(f"Default CNI changed from {self._cached} to {cni}")
            self._cached = cni
            metrics_collector.record_default_cni(cni)

    async def initialize(self) -> CNIKind:
        """Resolve the default CNI with the reader's full retry budget."""
        cni = await self.reader.resolve_default_cni()
        self._remember(cni)
        return cni

    async def current(self) -> CNIKind:
        """
        Default CNI for one admission decision.

        Raises:
            ConfigurationError: If called before initialize()
        """
        if self._cached is None:
            raise ConfigurationError("Default CNI has not been resolved yet")

        if not self.per_request:
            return self._cached

        try:
            cni = await self.reader.resolve_once()
        except WebhookError as e:
            logger.warning(
                f"Failed to re-read the default cni, using {self._cached}: {e}"
            )
            return self._cached

        self._remember(cni)
        return cni
