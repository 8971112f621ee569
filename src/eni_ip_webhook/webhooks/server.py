"""
HTTPS admission server.

This module serves the AdmissionReview endpoints the API server calls:
- POST on the pod path mutates pods
- POST on the StatefulSet path (when enabled) checks static IP requests
- GET /healthz answers liveness probes

Requests that cannot be decoded are answered with an error carrying
AdmissionReview instead of an HTTP error, so the API server gets a definite
answer and applies the failure policy it was registered with.
"""

import base64
import json
import logging
import os
import ssl
from pathlib import Path
from typing import Any

from aiohttp.web import Application, AppRunner, Request, Response, TCPSite, json_response
from pydantic import ValidationError

from eni_ip_webhook.constants import TLS_CERT_KEY, TLS_KEY_KEY
from eni_ip_webhook.errors import WebhookError
from eni_ip_webhook.models.admission import (
    POD_RESOURCE,
    STATEFULSET_RESOURCE,
    AdmissionReview,
    GroupVersionResource,
    Verdict,
)
from eni_ip_webhook.models.identity import CertBundle
from eni_ip_webhook.observability.logging import set_correlation_id
from eni_ip_webhook.observability.metrics import metrics_collector
from eni_ip_webhook.services.cni_resolver import DefaultCNISource
from eni_ip_webhook.settings import Settings

from .policy import AdmissionPolicy, subject_from_request

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"
DEFAULT_API_VERSION = "admission.k8s.io/v1"
PATCH_TYPE_JSON = "JSONPatch"


def write_serving_certificate(bundle: CertBundle, cert_dir: str) -> tuple[Path, Path]:
    """
    Write the serving certificate and key for the TLS listener.

    Returns:
        Paths of the certificate and key files
    """
    directory = Path(cert_dir)
    directory.mkdir(parents=True, exist_ok=True)

    cert_path = directory / TLS_CERT_KEY
    key_path = directory / TLS_KEY_KEY
    cert_path.write_bytes(bundle.server_cert)

    fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as key_file:
        key_file.write(bundle.server_key)
    os.chmod(key_path, 0o600)

    logger.info(f"Wrote serving certificate to {directory}")
    return cert_path, key_path


def create_ssl_context(cert_path: Path, key_path: Path) -> ssl.SSLContext:
    context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
    context.load_cert_chain(certfile=str(cert_path), keyfile=str(key_path))
    return context


def review_response(
    uid: str,
    api_version: str = DEFAULT_API_VERSION,
    verdict: Verdict | None = None,
    error: str | None = None,
) -> dict[str, Any]:
    """
    Build the AdmissionReview answering a request.

    Exactly one of verdict or error is expected; an error always denies.
    The admitted object is never echoed back.
    """
    response: dict[str, Any] = {"uid": uid}

    if error is not None or verdict is None:
        response["allowed"] = False
        response["status"] = {
            "code": 400,
            "reason": "BadRequest",
            "message": error or "no admission decision",
        }
    elif not verdict.allowed:
        response["allowed"] = False
        response["status"] = {
            "code": 403,
            "reason": "Forbidden",
            "message": verdict.deny_reason or "",
        }
    else:
        response["allowed"] = True
        if verdict.patch:
            patch = json.dumps(verdict.patch_document()).encode()
            response["patchType"] = PATCH_TYPE_JSON
            response["patch"] = base64.b64encode(patch).decode()

    return {"apiVersion": api_version, "kind": "AdmissionReview", "response": response}


def _request_identity(body: bytes) -> tuple[str, str]:
    """Best-effort uid and apiVersion of a review that failed validation."""
    try:
        raw = json.loads(body)
        uid = raw.get("request", {}).get("uid", "")
        api_version = raw.get("apiVersion", DEFAULT_API_VERSION)
    except (ValueError, AttributeError):
        return "", DEFAULT_API_VERSION
    return str(uid or ""), str(api_version or DEFAULT_API_VERSION)


class AdmissionServer:
    """aiohttp application serving the admission endpoints."""

    def __init__(
        self,
        policy: AdmissionPolicy,
        cni_source: DefaultCNISource,
        host: str = "0.0.0.0",
        port: int = 443,
        pod_path: str = "/add-pod-eni-ip-limit",
        statefulset_path: str | None = None,
        ssl_context: ssl.SSLContext | None = None,
    ):
        """
        Initialize the admission server.

        Args:
            policy: Decision logic applied to every request
            cni_source: Supplier of the cluster default CNI
            host: Host interface to bind to
            port: HTTPS port
            pod_path: Path serving pod mutation
            statefulset_path: Path serving StatefulSets, None to disable
            ssl_context: TLS context of the listener, None for plain HTTP
        """
        self.policy = policy
        self.cni_source = cni_source
        self.host = host
        self.port = port
        self.pod_path = pod_path
        self.statefulset_path = statefulset_path
        self.ssl_context = ssl_context
        self.app = Application()
        self.runner: AppRunner | None = None
        self.site: TCPSite | None = None
        self._setup_routes()

    @classmethod
    def from_settings(
        cls,
        policy: AdmissionPolicy,
        cni_source: DefaultCNISource,
        settings: Settings,
        ssl_context: ssl.SSLContext | None = None,
    ) -> "AdmissionServer":
        return cls(
            policy,
            cni_source,
            host=settings.webhook_host,
            port=settings.webhook_port,
            pod_path=settings.webhook_path,
            statefulset_path=(
                settings.statefulset_webhook_path
                if settings.enable_statefulset_webhook
                else None
            ),
            ssl_context=ssl_context,
        )

    def _setup_routes(self) -> None:
        self.app.router.add_post(self.pod_path, self._pod_handler)
        if self.statefulset_path:
            self.app.router.add_post(self.statefulset_path, self._statefulset_handler)
        self.app.router.add_get("/healthz", self._healthz_handler)

    async def _pod_handler(self, request: Request) -> Response:
        return await self._serve(request, POD_RESOURCE, "pod")

    async def _statefulset_handler(self, request: Request) -> Response:
        return await self._serve(request, STATEFULSET_RESOURCE, "statefulset")

    async def _healthz_handler(self, request: Request) -> Response:
        return Response(text="ok")

    async def _serve(
        self, request: Request, expected: GroupVersionResource, kind: str
    ) -> Response:
        if request.content_type != JSON_CONTENT_TYPE:
            logger.error(
                f"contentType={request.content_type}, expect {JSON_CONTENT_TYPE}"
            )
            return Response(status=415)

        body = await request.read()
        with metrics_collector.track_admission(kind) as outcome:
            try:
                review = AdmissionReview.model_validate_json(body)
            except ValidationError as e:
                uid, api_version = _request_identity(body)
                logger.error(
                    f"Failed to decode admission review: {e}",
                    extra={"error_type": "MalformedRequestError"},
                )
                return json_response(
                    review_response(uid, api_version, error=f"malformed request: {e}")
                )

            admission = review.request
            set_correlation_id(admission.uid[:8])
            logger.debug(
                f"Handling {admission.operation} {admission.resource} "
                f"{admission.namespace}/{admission.name}",
                extra={"request_uid": admission.uid, "admission_kind": kind},
            )

            try:
                subject = subject_from_request(admission, expected)
                verdict = self.policy.decide(subject, await self.cni_source.current())
            except WebhookError as e:
                logger.error(
                    f"Rejecting request {admission.uid}: {e}",
                    extra={"error_type": type(e).__name__},
                )
                return json_response(
                    review_response(admission.uid, review.api_version, error=str(e))
                )

            outcome["verdict"] = verdict
            logger.debug(
                f"Admission of {admission.namespace}/{admission.name}: "
                f"allowed={verdict.allowed}",
                extra={
                    "request_uid": admission.uid,
                    "admission_kind": kind,
                    "admission_result": "allowed" if verdict.allowed else "denied",
                },
            )
            return json_response(
                review_response(admission.uid, review.api_version, verdict=verdict)
            )

    async def start(self) -> None:
        """Start listening; plain HTTP when no SSL context is configured."""
        try:
            self.runner = AppRunner(self.app)
            await self.runner.setup()

            self.site = TCPSite(
                self.runner, self.host, self.port, ssl_context=self.ssl_context
            )
            await self.site.start()

            scheme = "https" if self.ssl_context else "http"
            logger.info(f"Admission server listening on {scheme}://{self.host}:{self.port}")
        except Exception as e:
            logger.error(f"Failed to start admission server: {e}")
            raise

    async def stop(self) -> None:
        """Stop the admission server."""
        try:
            if self.site:
                await self.site.stop()
                self.site = None

            if self.runner:
                await self.runner.cleanup()
                self.runner = None

            logger.info("Admission server stopped")
        except Exception as e:
            logger.error(f"Error stopping admission server: {e}")
