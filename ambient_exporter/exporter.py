# ABOUTME: HTTP server for exposing metrics and health endpoints
# ABOUTME: Provides /healthz, /metrics, and /status endpoints via aiohttp
from dataclasses import dataclass
from typing import Optional
from aiohttp import web

from prometheus_client import generate_latest

from ambient_exporter.config import AppConfig
from ambient_exporter.metrics import ExporterMetrics, build_metrics


@dataclass
class StatusTracker:
    """Tracks poll status and metadata for /status endpoint."""
    poll_interval_seconds: int
    last_poll_timestamp: int = 0
    last_success_timestamp: int = 0
    last_status_code: int = 0
    devices_seen: int = 0
    consecutive_failures: int = 0

    def update(self, timestamp: int, num_devices: int, status_code: int = 200) -> None:
        """Update poll status after a successful cycle."""
        self.last_poll_timestamp = timestamp
        self.last_success_timestamp = timestamp
        self.last_status_code = status_code
        self.devices_seen = num_devices
        self.consecutive_failures = 0

    def record_failure(self, timestamp: int, status_code: int) -> None:
        """Update poll status after an abandoned cycle."""
        self.last_poll_timestamp = timestamp
        self.last_status_code = status_code
        self.consecutive_failures += 1


# AppKey for type-safe access to config, metrics, and status
CONFIG_KEY = web.AppKey('config', AppConfig)
METRICS_KEY = web.AppKey('metrics', ExporterMetrics)
STATUS_KEY = web.AppKey('status', StatusTracker)


async def healthz_handler(request: web.Request) -> web.Response:
    """
    Health check endpoint.

    Returns:
        200 OK with "ok" body
    """
    return web.Response(text="ok", status=200)


async def metrics_handler(request: web.Request) -> web.Response:
    """
    Prometheus metrics endpoint.

    Returns:
        200 OK with the exporter's registry in text format
    """
    metrics_output = generate_latest(request.app[METRICS_KEY].registry)
    return web.Response(
        body=metrics_output,
        content_type='text/plain',
        charset='utf-8'
    )


async def status_handler(request: web.Request) -> web.Response:
    """
    Status endpoint returning poll metadata.

    Returns:
        200 OK with JSON containing poll status
    """
    status = request.app[STATUS_KEY]

    status_data = {
        "poll_interval_seconds": status.poll_interval_seconds,
        "last_poll_timestamp": status.last_poll_timestamp,
        "last_success_timestamp": status.last_success_timestamp,
        "last_status_code": status.last_status_code,
        "devices_seen": status.devices_seen,
        "consecutive_failures": status.consecutive_failures
    }

    return web.json_response(status_data)


def create_app(
    config: AppConfig,
    metrics: Optional[ExporterMetrics] = None,
    status_tracker: Optional[StatusTracker] = None
) -> web.Application:
    """
    Create and configure aiohttp application.

    Args:
        config: Application configuration
        metrics: Exporter gauges; built from config if not provided
        status_tracker: Optional StatusTracker for /status endpoint

    Returns:
        Configured aiohttp Application instance
    """
    app = web.Application()

    app[CONFIG_KEY] = config

    if metrics is None:
        metrics = build_metrics(
            config.devices,
            metric_prefix=config.metric_prefix,
            disable_default_gauges=config.disable_default_gauges
        )
    app[METRICS_KEY] = metrics

    if status_tracker is None:
        status_tracker = StatusTracker(poll_interval_seconds=config.poll_interval_seconds)
    app[STATUS_KEY] = status_tracker

    # Register routes
    app.router.add_get('/healthz', healthz_handler)
    app.router.add_get('/metrics', metrics_handler)
    app.router.add_get('/status', status_handler)

    return app
