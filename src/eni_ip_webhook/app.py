#!/usr/bin/env python3
"""
ENI IP webhook - main entry point.

Startup runs strictly in this order, and the HTTPS listener only opens once
every step has succeeded:
1. Resolve the cluster default CNI from the TKE multus configuration
2. Issue a self-signed CA and serving certificate
3. Reconcile the webhook Secret and MutatingWebhookConfiguration
4. Serve admission requests until SIGTERM/SIGINT

Usage:
    eni-ip-webhook
    # Or:
    python -m eni_ip_webhook.app

Environment Variables:
    NAMESPACE: Namespace of the webhook service
    IN_CLUSTER: Set to 'false' when serving a cluster from outside it
    ON_CNI_CONFIGMAP_MISSING: treat-as-route-eni, retry or fail
    LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
"""

import asyncio
import logging
import signal
import sys
from datetime import timedelta

from kubernetes import config
from kubernetes.client.rest import ApiException
from pydantic import ValidationError
from urllib3.exceptions import HTTPError

from eni_ip_webhook.errors import WebhookError
from eni_ip_webhook.models.identity import WebhookIdentity
from eni_ip_webhook.observability.logging import setup_structured_logging
from eni_ip_webhook.observability.metrics import MetricsServer
from eni_ip_webhook.services import (
    CertificateAuthority,
    ClusterConfigReader,
    DefaultCNISource,
    IdentityReconciler,
    service_dns_names,
)
from eni_ip_webhook.settings import Settings
from eni_ip_webhook.utils import ClusterClient, get_kubernetes_client
from eni_ip_webhook.utils.kubernetes import log_server_version
from eni_ip_webhook.webhooks import (
    AdmissionPolicy,
    AdmissionServer,
    write_serving_certificate,
)
from eni_ip_webhook.webhooks.server import create_ssl_context

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    """Configure structured logging for the webhook based on settings."""
    setup_structured_logging(
        log_level=settings.log_level.upper(),
        enable_json_formatting=settings.json_logs,
        correlation_id_enabled=settings.correlation_ids,
        log_health_probes=settings.log_health_probes,
    )


def build_identity(settings: Settings) -> WebhookIdentity:
    """Desired webhook identity for the configured deployment topology."""
    return WebhookIdentity(
        namespace=settings.namespace,
        secret_namespace=settings.secret_namespace,
        in_cluster=settings.in_cluster,
        path=settings.webhook_path,
        remote_port=settings.remote_webhook_port,
        legacy_failure_policy_minor=settings.legacy_failure_policy_minor,
        timeout_seconds=settings.webhook_timeout_seconds,
        statefulset_webhook_enabled=settings.enable_statefulset_webhook,
        statefulset_path=settings.statefulset_webhook_path,
    )


async def bootstrap(settings: Settings, cluster: ClusterClient) -> AdmissionServer:
    """
    Resolve the default CNI and establish the webhook identity.

    Returns:
        An admission server ready to start

    Raises:
        WebhookError: If any startup step fails
    """
    cni_source = DefaultCNISource(
        ClusterConfigReader.from_settings(cluster, settings),
        per_request=settings.cni_resolution == "per-request",
    )
    await cni_source.initialize()

    identity = build_identity(settings)
    authority = CertificateAuthority(f"{identity.service_name}.{identity.namespace}")
    bundle = authority.issue(
        service_dns_names(identity.service_name, identity.namespace),
        timedelta(hours=settings.cert_validity_hours),
    )

    reconciler = IdentityReconciler(cluster)
    await reconciler.reconcile(bundle, identity)
    await reconciler.verify(bundle, identity)

    cert_path, key_path = write_serving_certificate(bundle, settings.cert_dir)
    return AdmissionServer.from_settings(
        AdmissionPolicy(),
        cni_source,
        settings,
        ssl_context=create_ssl_context(cert_path, key_path),
    )


async def run(settings: Settings) -> None:
    """Run the webhook until a termination signal arrives."""
    api_client = get_kubernetes_client(
        in_cluster=settings.in_cluster,
        kubeconfig=settings.kubeconfig,
        master=settings.kube_master,
    )
    try:
        log_server_version(api_client)
    except (ApiException, HTTPError, OSError) as e:
        # CNI resolution below retries the API server within its own budget
        logger.warning(f"Failed to read the API server version: {e}")
    cluster = ClusterClient(api_client)

    server = await bootstrap(settings, cluster)

    metrics_server: MetricsServer | None = None
    if settings.enable_metrics:
        metrics_server = MetricsServer(
            port=settings.metrics_port, host=settings.metrics_host
        )
        try:
            await metrics_server.start()
        except OSError as e:
            # Don't fail webhook startup if metrics server fails
            logger.warning(f"Continuing without metrics server: {e}")
            metrics_server = None

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_event.set)

    await server.start()
    try:
        await stop_event.wait()
        logger.info("Shutting down ENI IP webhook...")
    finally:
        await server.stop()
        if metrics_server:
            await metrics_server.stop()
        api_client.close()


def main() -> None:
    """
    Main entry point for the webhook.

    This function:
    1. Loads settings from the environment
    2. Configures logging
    3. Runs the webhook, exiting with status 1 on startup failure
    """
    try:
        settings = Settings()
    except ValidationError as e:
        logging.basicConfig(level=logging.ERROR)
        logger.error(f"Invalid webhook configuration: {e}")
        sys.exit(1)

    configure_logging(settings)
    logger.info("Starting ENI IP webhook...")

    try:
        asyncio.run(run(settings))
    except WebhookError as e:
        logger.error(f"ENI IP webhook failed to start: {e}")
        sys.exit(1)
    except config.ConfigException as e:
        logger.error(f"Failed to load Kubernetes configuration: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
