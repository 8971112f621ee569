"""
Prometheus metrics for the ENI IP webhook.

This module provides metrics for admission decisions and the resolved
default CNI, plus a small plain-HTTP server exposing them for scraping.
"""

import logging
import time
from contextlib import contextmanager

from aiohttp.web import (
    Application,
    AppRunner,
    Request,
    Response,
    TCPSite,
)
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from eni_ip_webhook.models.admission import Verdict
from eni_ip_webhook.models.cni import CNIKind

logger = logging.getLogger(__name__)

# Private registry, separate from the prometheus_client default registry
METRICS_REGISTRY = CollectorRegistry()

ADMISSION_TOTAL = Counter(
    "eni_ip_webhook_admission_total",
    "Total number of admission requests by subject kind and result",
    ["kind", "result"],
    registry=METRICS_REGISTRY,
)

ADMISSION_DURATION = Histogram(
    "eni_ip_webhook_admission_duration_seconds",
    "Time spent deciding admission requests",
    ["kind"],
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0],
    registry=METRICS_REGISTRY,
)

DEFAULT_CNI_INFO = Gauge(
    "eni_ip_webhook_default_cni_info",
    "Default CNI resolved from the multus configuration (1 for the active CNI)",
    ["cni"],
    registry=METRICS_REGISTRY,
)


def verdict_result(verdict: Verdict) -> str:
    """Metric label for a verdict."""
    if not verdict.allowed:
        return "denied"
    if verdict.patch:
        return "patched"
    return "allowed"


class MetricsCollector:
    """Collects and manages metrics for the ENI IP webhook."""

    def __init__(self, registry: CollectorRegistry = METRICS_REGISTRY):
        self.registry = registry

    @contextmanager
    def track_admission(self, kind: str):
        """
        Context manager timing one admission decision.

        Yields a dict the caller fills with the verdict; an exception or a
        missing verdict is counted as an error.
        """
        start_time = time.time()
        outcome: dict[str, Verdict] = {}
        try:
            yield outcome
        finally:
            verdict = outcome.get("verdict")
            result = verdict_result(verdict) if verdict else "error"
            ADMISSION_TOTAL.labels(kind=kind, result=result).inc()
            ADMISSION_DURATION.labels(kind=kind).observe(time.time() - start_time)

    def record_default_cni(self, cni: CNIKind) -> None:
        """Mark the given CNI as the active default."""
        for kind in CNIKind:
            DEFAULT_CNI_INFO.labels(cni=kind.value).set(1 if kind is cni else 0)


class MetricsServer:
    """HTTP server for exposing Prometheus metrics."""

    def __init__(
        self,
        port: int = 8081,
        host: str = "0.0.0.0",
        registry: CollectorRegistry = METRICS_REGISTRY,
    ):
        """
        Initialize metrics server.

        Args:
            port: Port to serve metrics on
            host: Host interface to bind to
            registry: Registry to expose
        """
        self.port = port
        self.host = host
        self.registry = registry
        self.app = Application()
        self.runner: AppRunner | None = None
        self.site: TCPSite | None = None
        self._setup_routes()

    def _setup_routes(self) -> None:
        """Set up HTTP routes for the metrics server."""
        self.app.router.add_get("/metrics", self._metrics_handler)
        self.app.router.add_get("/healthz", self._healthz_handler)

    async def _metrics_handler(self, request: Request) -> Response:
        """Handle /metrics endpoint for Prometheus scraping."""
        try:
            metrics_data = generate_latest(self.registry)
            return Response(
                body=metrics_data, headers={"Content-Type": CONTENT_TYPE_LATEST}
            )
        except Exception as e:
            logger.error(f"Failed to generate metrics: {e}")
            return Response(
                text=f"Error generating metrics: {type(e).__name__}. Check logs for details.",
                status=500,
            )

    async def _healthz_handler(self, request: Request) -> Response:
        """Handle /healthz endpoint for Kubernetes liveness probes."""
        return Response(text="ok")

    async def start(self) -> None:
        """Start the metrics server."""
        try:
            self.runner = AppRunner(self.app)
            await self.runner.setup()

            self.site = TCPSite(self.runner, self.host, self.port)
            await self.site.start()

            logger.info(f"Metrics server started on {self.host}:{self.port}")
        except Exception as e:
            logger.error(f"Failed to start metrics server: {e}")
            raise

    async def stop(self) -> None:
        """Stop the metrics server."""
        try:
            if self.site:
                await self.site.stop()
                self.site = None

            if self.runner:
                await self.runner.cleanup()
                self.runner = None

            logger.info("Metrics server stopped")
        except Exception as e:
            logger.error(f"Error stopping metrics server: {e}")


# Global metrics collector instance
metrics_collector = MetricsCollector()
