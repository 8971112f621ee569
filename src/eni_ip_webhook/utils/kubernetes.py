"""
Kubernetes client construction for the ENI IP webhook.

This module handles loading in-cluster or kubeconfig-based configuration
and verifying that the API server is reachable before the webhook starts.
"""

import logging

from kubernetes import client, config

logger = logging.getLogger(__name__)


def get_kubernetes_client(
    in_cluster: bool = True, kubeconfig: str = "", master: str = ""
) -> client.ApiClient:
    """
    Get configured Kubernetes API client.

    Args:
        in_cluster: Load the service account configuration of the pod
        kubeconfig: Path to a kubeconfig file (out-of-cluster only)
        master: API server address overriding the kubeconfig value

    Returns:
        Configured Kubernetes API client

    Raises:
        config.ConfigException: If no usable configuration is found
    """
    configuration = client.Configuration()
    try:
        if in_cluster:
            config.load_incluster_config(client_configuration=configuration)
            logger.debug("Loaded in-cluster Kubernetes configuration")
        else:
            config.load_kube_config(
                config_file=kubeconfig or None,
                client_configuration=configuration,
            )
            logger.debug("Loaded kubeconfig from local environment")
    except config.ConfigException as e:
        logger.error(f"Failed to load Kubernetes configuration: {e}")
        raise

    if master:
        configuration.host = master

    return client.ApiClient(configuration)


def log_server_version(api_client: client.ApiClient) -> client.VersionInfo:
    """
    Check communication with the API server and log its version.

    Informer-style clients log poorly when the server is unreachable, so the
    version is fetched once up front to surface misconfiguration early.
    """
    logger.info("Testing communication with server")
    version = client.VersionApi(api_client).get_code()
    logger.info(
        f"Running with Kubernetes cluster version: v{version.major}.{version.minor}. "
        f"git version: {version.git_version}. platform: {version.platform}"
    )
    logger.info("Communication with server successful")
    return version
