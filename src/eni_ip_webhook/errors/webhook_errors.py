"""
Webhook error hierarchy with categorization and retry logic.

This module defines the error types used throughout the ENI IP webhook,
providing clear categorization so that callers can decide whether to retry,
fall back, or fail process startup.
"""


class WebhookError(Exception):
    """
    Base error class for all webhook-related exceptions.

    Provides categorization, retry behavior, and user guidance for resolution.
    """

    def __init__(
        self,
        message: str,
        category: str,
        retryable: bool = True,
        delay: int = 30,
        user_action: str | None = None,
        cause: Exception | None = None,
    ):
        """
        Initialize webhook error.

        Args:
            message: Human-readable error description
            category: Error category (configuration, api, request, certificate)
            retryable: Whether the failed operation may succeed when retried
            delay: Suggested retry delay in seconds
            user_action: What user should do to resolve the issue
            cause: Underlying exception that caused this error
        """
        super().__init__(message)
        self.category = category
        self.retryable = retryable
        self.delay = delay
        self.user_action = user_action
        self.cause = cause

    def __str__(self) -> str:
        """Enhanced string representation with user guidance."""
        base_msg = super().__str__()
        if self.user_action:
            return f"{base_msg}\nAction required: {self.user_action}"
        return base_msg


class TemporaryError(WebhookError):
    """Temporary error that should be retried."""

    def __init__(
        self,
        message: str,
        delay: int = 30,
        user_action: str | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(
            message=message,
            category="temporary",
            retryable=True,
            delay=delay,
            user_action=user_action
            or "Wait for automatic retry or check system status",
            cause=cause,
        )


class ConfigurationError(WebhookError):
    """Error in webhook or cluster configuration."""

    def __init__(
        self, message: str, retryable: bool = False, user_action: str | None = None
    ):
        super().__init__(
            message=message,
            category="configuration",
            retryable=retryable,
            user_action=user_action or "Review and correct configuration",
        )


class MalformedConfigError(ConfigurationError):
    """Cluster configuration that cannot be parsed; retrying will not help."""

    def __init__(self, source: str, message: str, cause: Exception | None = None):
        super().__init__(
            message=f"Malformed configuration in {source}: {message}",
            retryable=False,
            user_action=f"Fix the content of {source}",
        )
        self.source = source
        self.cause = cause


class MalformedRequestError(WebhookError):
    """Admission request body that cannot be decoded."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(
            message=message,
            category="request",
            retryable=False,
            cause=cause,
        )


class UnrecognizedRequestError(WebhookError):
    """Admission request for a resource this endpoint does not handle.

    Indicates a mismatch between the registered webhook rules and the
    served paths. The request must be rejected rather than allowed.
    """

    def __init__(self, expected: str, actual: str):
        super().__init__(
            message=f"Expected resource {expected}, got {actual}",
            category="request",
            retryable=False,
            user_action="Check the rules of the MutatingWebhookConfiguration",
        )
        self.expected = expected
        self.actual = actual


class CertificateError(WebhookError):
    """Failure while generating or signing the webhook certificates."""

    def __init__(self, step: str, cause: Exception | None = None):
        detail = f": {cause}" if cause else ""
        super().__init__(
            message=f"Certificate generation failed while trying to {step}{detail}",
            category="certificate",
            retryable=False,
            cause=cause,
        )
        self.step = step


class ExternalServiceError(WebhookError):
    """Error communicating with external services."""

    def __init__(
        self,
        service: str,
        message: str,
        retryable: bool = True,
        delay: int = 60,
        user_action: str | None = None,
    ):
        action = user_action or f"Check {service} connectivity and credentials"
        super().__init__(
            message=f"{service} error: {message}",
            category="external",
            retryable=retryable,
            delay=delay,
            user_action=action,
        )


class KubernetesAPIError(ExternalServiceError):
    """Error communicating with Kubernetes API."""

    def __init__(
        self,
        message: str,
        reason: str | None = None,
        status: int | None = None,
        retryable: bool = True,
    ):
        if reason:
            message = f"{message} (reason: {reason})"

        # Some K8s errors are not retryable
        non_retryable_reasons = {"Forbidden", "Unauthorized", "Invalid"}
        if reason in non_retryable_reasons:
            retryable = False

        super().__init__(
            service="Kubernetes API",
            message=message,
            retryable=retryable,
            user_action="Check RBAC permissions and cluster connectivity",
        )
        self.reason = reason
        self.status = status


class ConflictError(KubernetesAPIError):
    """Optimistic concurrency conflict on write (HTTP 409)."""

    def __init__(self, message: str):
        super().__init__(message, reason="Conflict", status=409, retryable=False)
