"""
Error handling module for the ENI IP webhook.

This module provides an error hierarchy that separates transient cluster
failures from malformed input and contract violations.
"""

from .webhook_errors import (
    CertificateError,
    ConfigurationError,
    ConflictError,
    ExternalServiceError,
    KubernetesAPIError,
    MalformedConfigError,
    MalformedRequestError,
    TemporaryError,
    UnrecognizedRequestError,
    WebhookError,
)

__all__ = [
    "WebhookError",
    "TemporaryError",
    "ConfigurationError",
    "MalformedConfigError",
    "MalformedRequestError",
    "UnrecognizedRequestError",
    "CertificateError",
    "ExternalServiceError",
    "KubernetesAPIError",
    "ConflictError",
]
