"""Centralized webhook settings using pydantic-settings.

This module provides a single source of truth for all webhook configuration
loaded from environment variables. Uses pydantic for automatic validation,
type coercion, and documentation.

The settings object is constructed once by the entry point and passed to the
components that need it.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from eni_ip_webhook.constants import (
    DEFAULT_CERT_DIR,
    DEFAULT_CERT_VALIDITY_HOURS,
    DEFAULT_CNI_MAX_ATTEMPTS,
    DEFAULT_CNI_MAX_BACKOFF,
    DEFAULT_CNI_POLL_INTERVAL,
    DEFAULT_LEGACY_FAILURE_POLICY_MINOR,
    DEFAULT_REMOTE_WEBHOOK_PORT,
    DEFAULT_STATEFULSET_WEBHOOK_PATH,
    DEFAULT_WEBHOOK_PATH,
    DEFAULT_WEBHOOK_PORT,
    NAMESPACE_KUBE_SYSTEM,
)
from eni_ip_webhook.models.cni import CNIKind, OnConfigMapMissing


class Settings(BaseSettings):
    """Webhook configuration loaded from environment variables.

    All settings have sensible defaults for an in-cluster deployment.
    Override via environment variables as documented per field.
    """

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Webhook identification
    namespace: str = Field(
        default=NAMESPACE_KUBE_SYSTEM,
        description="Namespace of the webhook (cluster id for remote deployments)",
        validation_alias="NAMESPACE",
    )

    # Cluster connection
    in_cluster: bool = Field(
        default=True,
        description="Whether the webhook runs inside the cluster it serves",
        validation_alias="IN_CLUSTER",
    )
    kubeconfig: str = Field(
        default="",
        description="Path to a kubeconfig file (out-of-cluster only)",
        validation_alias="KUBECONFIG",
    )
    kube_master: str = Field(
        default="",
        description="API server address overriding the kubeconfig value",
        validation_alias="KUBE_MASTER",
    )

    # Logging configuration
    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=True,
        validation_alias="JSON_LOGS",
        description="Enable JSON formatted logging for structured log aggregation",
    )
    correlation_ids: bool = Field(
        default=True,
        validation_alias="CORRELATION_IDS",
        description="Enable correlation IDs in logs for request tracing",
    )
    log_health_probes: bool = Field(
        default=False,
        validation_alias="LOG_HEALTH_PROBES",
        description="Log health probe and metrics scrape requests",
    )

    # Admission server
    webhook_host: str = Field(
        default="0.0.0.0",
        validation_alias="WEBHOOK_HOST",
        description="Host address to bind the HTTPS admission server",
    )
    webhook_port: int = Field(
        default=DEFAULT_WEBHOOK_PORT,
        validation_alias="WEBHOOK_PORT",
        description="Port for the HTTPS admission server",
    )
    remote_webhook_port: int = Field(
        default=DEFAULT_REMOTE_WEBHOOK_PORT,
        validation_alias="REMOTE_WEBHOOK_PORT",
        description="Port the API server dials for out-of-cluster deployments",
    )
    webhook_path: str = Field(
        default=DEFAULT_WEBHOOK_PATH,
        validation_alias="WEBHOOK_PATH",
        description="HTTPS path serving pod mutation",
    )
    enable_statefulset_webhook: bool = Field(
        default=False,
        validation_alias="ENABLE_STATEFULSET_WEBHOOK",
        description="Serve and register the StatefulSet static IP check",
    )
    statefulset_webhook_path: str = Field(
        default=DEFAULT_STATEFULSET_WEBHOOK_PATH,
        validation_alias="STATEFULSET_WEBHOOK_PATH",
        description="HTTPS path serving the StatefulSet static IP check",
    )
    webhook_timeout_seconds: int = Field(
        default=10,
        ge=1,
        le=30,
        validation_alias="WEBHOOK_TIMEOUT_SECONDS",
        description="Timeout the API server applies to webhook calls",
    )
    legacy_failure_policy_minor: int = Field(
        default=DEFAULT_LEGACY_FAILURE_POLICY_MINOR,
        validation_alias="LEGACY_FAILURE_POLICY_MINOR",
        description="Kubernetes 1.x minor version registered with failurePolicy=Ignore",
    )

    # Certificates
    cert_dir: str = Field(
        default=DEFAULT_CERT_DIR,
        validation_alias="CERT_DIR",
        description="Directory the serving certificate and key are written to",
    )
    cert_validity_hours: int = Field(
        default=DEFAULT_CERT_VALIDITY_HOURS,
        gt=0,
        validation_alias="CERT_VALIDITY_HOURS",
        description="Validity window of the CA and serving certificate",
    )

    # Default CNI resolution
    cni_poll_interval_seconds: float = Field(
        default=DEFAULT_CNI_POLL_INTERVAL,
        gt=0,
        validation_alias="CNI_POLL_INTERVAL_SECONDS",
        description="Initial delay between CNI ConfigMap reads",
    )
    cni_max_backoff_seconds: float = Field(
        default=DEFAULT_CNI_MAX_BACKOFF,
        gt=0,
        validation_alias="CNI_MAX_BACKOFF_SECONDS",
        description="Upper bound of the exponential backoff between reads",
    )
    cni_max_attempts: int = Field(
        default=DEFAULT_CNI_MAX_ATTEMPTS,
        ge=0,
        validation_alias="CNI_MAX_ATTEMPTS",
        description="Maximum ConfigMap reads before giving up (0 = unbounded)",
    )
    on_cni_configmap_missing: OnConfigMapMissing = Field(
        default=OnConfigMapMissing.RETRY,
        validation_alias="ON_CNI_CONFIGMAP_MISSING",
        description="Policy when the CNI ConfigMap does not exist",
    )
    fallback_cni: CNIKind | None = Field(
        default=None,
        validation_alias="FALLBACK_CNI",
        description="CNI assumed when the retry budget is exhausted (unset = fail)",
    )
    cni_resolution: Literal["startup", "per-request"] = Field(
        default="startup",
        validation_alias="CNI_RESOLUTION",
        description="Resolve the default CNI once at startup or on every admission",
    )

    # Metrics
    enable_metrics: bool = Field(
        default=True,
        validation_alias="ENABLE_METRICS",
        description="Expose Prometheus metrics on a plain HTTP port",
    )
    metrics_port: int = Field(
        default=8081,
        validation_alias="METRICS_PORT",
        description="Port for Prometheus metrics endpoint",
    )
    metrics_host: str = Field(
        default="0.0.0.0",
        validation_alias="METRICS_HOST",
        description="Host address to bind metrics server",
    )

    @property
    def secret_namespace(self) -> str:
        """Namespace holding the serving certificate secret.

        Remote deployments keep the secret in the served cluster's
        kube-system namespace, since the webhook's own namespace only
        exists in the hosting cluster.
        """
        if self.in_cluster:
            return self.namespace
        return NAMESPACE_KUBE_SYSTEM
