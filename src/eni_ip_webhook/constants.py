"""
Constants used throughout the ENI IP webhook.

This module defines all constant values used by the webhook including:
- CNI ConfigMap location and known CNI delegate names
- Pod and StatefulSet annotations inspected by the admission policy
- Extended resource names injected into pods
- Names of the cluster objects that make up the webhook identity
- Certificate subject and validity defaults
"""

# CNI configuration published by the TKE CNI agent
NAMESPACE_KUBE_SYSTEM = "kube-system"
CNI_CONFIG_MAP_NAME = "tke-cni-agent-conf"
CNI_CONFIG_MAP_KEY = "00-multus.conf"
CNI_DEFAULT_DELEGATES_FIELD = "defaultDelegates"

# Known CNI delegate names (matched by substring)
TKE_ROUTE_ENI = "tke-route-eni"
TKE_DIRECT_ENI = "tke-direct-eni"
TKE_BRIDGE = "tke-bridge"

# Annotation and resource domain
TKE_DOMAIN = "tke.cloud.tencent.com"

# Pod/template annotation naming the CNI delegates to attach
CNI_NETWORKS_ANNOTATION = f"{TKE_DOMAIN}/networks"

# StatefulSet annotations requesting a static pod IP
STATIC_IP_ANNOTATION = f"{TKE_DOMAIN}/enable-static-ip"
LEGACY_STATIC_IP_ANNOTATION = f"{TKE_DOMAIN}/static-ip"

# Extended resources injected into the first container
ENI_IP_RESOURCE = f"{TKE_DOMAIN}/eni-ip"
DIRECT_ENI_RESOURCE = f"{TKE_DOMAIN}/direct-eni"
RESOURCE_QUANTITY = "1"

# JSON Patch target for the first container's resources
FIRST_CONTAINER_RESOURCES_PATH = "/spec/containers/0/resources"

# Webhook identity objects
WEBHOOK_NAME = "add-pod-eni-ip-limit-webhook"
SERVICE_NAME = "add-pod-eni-ip-limit-webhook"
SECRET_NAME = "eni-ip-webhook-certs"
MUTATING_WEBHOOK_NAME = f"add-pod-eni-ip-limit-webhook.{TKE_DOMAIN}"
STATEFULSET_WEBHOOK_NAME = f"statefulset-static-ip.{TKE_DOMAIN}"
NAMESPACE_OPT_OUT_LABEL = "not-add-pod-eni-ip-limit"

# Secret keys holding the serving certificate
TLS_CERT_KEY = "tls.crt"
TLS_KEY_KEY = "tls.key"

# Label constants for resource identification
MANAGED_BY_LABEL_KEY = f"{TKE_DOMAIN}/managed-by"
MANAGED_BY_LABEL_VALUE = WEBHOOK_NAME

# HTTP surface
DEFAULT_WEBHOOK_PATH = "/add-pod-eni-ip-limit"
DEFAULT_STATEFULSET_WEBHOOK_PATH = "/statefulsets"
DEFAULT_WEBHOOK_PORT = 443
DEFAULT_REMOTE_WEBHOOK_PORT = 61679
DEFAULT_CERT_DIR = "/tmp/k8s-webhook-server/serving-certs"

# Certificate defaults
DEFAULT_CERT_VALIDITY_HOURS = 175300  # about 20 years
CERT_KEY_SIZE = 2048
CERT_SUBJECT_COUNTRY = "CN"
CERT_SUBJECT_STATE = "GuangDong"
CERT_SUBJECT_LOCALITY = "ShenZhen"
CERT_SUBJECT_ORGANIZATION = "Tencent Technology (Shenzhen) Company Limited"
CERT_SUBJECT_ORGANIZATIONAL_UNIT = "TKE"

# Kubernetes 1.10 mishandles failurePolicy=Fail for mutating webhooks
DEFAULT_LEGACY_FAILURE_POLICY_MINOR = 10

# First minor version serving admissionregistration.k8s.io/v1
ADMISSION_REGISTRATION_V1_MIN_MINOR = 16

# CNI resolution retry defaults (in seconds)
DEFAULT_CNI_POLL_INTERVAL = 3.0
DEFAULT_CNI_MAX_BACKOFF = 60.0
DEFAULT_CNI_MAX_ATTEMPTS = 200

# Error message templates
DENY_STATIC_IP_CNI_MISMATCH = (
    "StatefulSet {}/{} requests a static IP but its pod template annotation "
    "'{}' is '{}'; static IPs are only supported with '{}'"
)
