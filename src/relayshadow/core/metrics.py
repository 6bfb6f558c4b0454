"""
Prometheus metrics collection and HTTP exposition.

Module-level metric objects are shared by every service in the process.
[BaseService.run_forever()][relayshadow.core.base_service.BaseService.run_forever]
records cycle counts and durations; services add their own values through
``set_gauge()``, ``inc_counter()`` and ``observe_job()`` on the base class.

Architecture:
    SERVICE_INFO:           Static metadata set once at startup.
    SERVICE_GAUGE:          Point-in-time values (connected relays, pending jobs).
    SERVICE_COUNTER:        Cumulative totals (jobs received, failed, ...).
    CYCLE_DURATION_SECONDS: Histogram of run() cycle durations.
    JOB_DURATION_SECONDS:   Histogram of job handling latency per request type.
"""

from __future__ import annotations

from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)
from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class MetricsConfig(BaseModel):
    """Configuration for the Prometheus metrics endpoint.

    The endpoint is only started when ``enabled`` is True. Set ``host`` to
    ``"0.0.0.0"`` in containers to allow external scraping.
    """

    enabled: bool = Field(default=False, description="Enable metrics collection")
    port: int = Field(default=8000, ge=1024, le=65535, description="Metrics HTTP port")
    host: str = Field(default="127.0.0.1", description="Metrics HTTP bind address")
    path: str = Field(default="/metrics", description="Metrics endpoint path")


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------

SERVICE_INFO = Info(
    "relayshadow_service",
    "Service information and metadata",
)

CYCLE_DURATION_SECONDS = Histogram(
    "relayshadow_cycle_duration_seconds",
    "Duration of service cycle in seconds",
    ["service"],
    buckets=(0.1, 0.5, 1, 5, 10, 30, 60, 120, 300),
)

JOB_DURATION_SECONDS = Histogram(
    "relayshadow_job_duration_seconds",
    "Time from job request receipt to response publication",
    ["service", "request_type"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30),
)

# Automatic names (BaseService.run_forever):
#   gauge:   consecutive_failures, last_cycle_timestamp
#   counter: cycles_success, cycles_failed, errors_{type}
# DVM names:
#   gauge:   relays_connected, pending_jobs
#   counter: jobs_received, jobs_processed, jobs_failed, jobs_rejected, jobs_fallback

SERVICE_GAUGE = Gauge(
    "relayshadow_service_gauge",
    "Service gauge values (point-in-time state)",
    ["service", "name"],
)

SERVICE_COUNTER = Counter(
    "relayshadow_service_counter",
    "Service counter values (cumulative totals)",
    ["service", "name"],
)


# ---------------------------------------------------------------------------
# HTTP Server
# ---------------------------------------------------------------------------


class MetricsServer:
    """Async HTTP server exposing a Prometheus-compatible endpoint.

    Example:
        server = MetricsServer(MetricsConfig(enabled=True, port=8001))
        await server.start()
        # ... service runs ...
        await server.stop()
    """

    def __init__(self, config: MetricsConfig) -> None:
        self._config = config
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        """Bind the endpoint. No-op when metrics are disabled.

        Raises:
            OSError: If the port is already in use or binding fails.
        """
        if not self._config.enabled:
            return

        app = web.Application()
        app.router.add_get(self._config.path, self._handle_metrics)

        self._runner = web.AppRunner(app, access_log=None)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._config.host, self._config.port)
        await site.start()

    async def stop(self) -> None:
        """Stop the HTTP server. Idempotent."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    @staticmethod
    async def _handle_metrics(_request: web.Request) -> web.Response:
        return web.Response(
            body=generate_latest(),
            headers={"Content-Type": CONTENT_TYPE_LATEST},
        )


async def start_metrics_server(config: MetricsConfig | None = None) -> MetricsServer:
    """Create and start a metrics server; the caller must ``stop()`` it."""
    server = MetricsServer(config or MetricsConfig())
    await server.start()
    return server
