# ABOUTME: Main entry point for Ambient Weather Prometheus exporter
# ABOUTME: Wires together config, gauge registry, API client, poll loop, and HTTP server
import argparse
import asyncio
import logging
import sys
from typing import List, Optional
from aiohttp import web

from ambient_exporter.ambient import AbstractApiClient, get_api_client
from ambient_exporter.config import (
    DEFAULT_LOG_FILE,
    DEFAULT_METRIC_PREFIX,
    DEFAULT_PORT,
    AppConfig,
    ConfigError,
    FileConfig,
    load_config,
)
from ambient_exporter.exporter import CONFIG_KEY, METRICS_KEY, STATUS_KEY, StatusTracker, create_app
from ambient_exporter.logger import get_logger
from ambient_exporter.metrics import build_metrics
from ambient_exporter.poller import poll_loop

CLIENT_KEY = web.AppKey('api_client', AbstractApiClient)
LOGGER_KEY = web.AppKey('logger', logging.Logger)
POLL_TASK_KEY = web.AppKey('poll_task', asyncio.Task)


async def start_background_tasks(app):
    """
    Startup handler that launches the background poll loop.

    Args:
        app: aiohttp Application instance
    """
    config = app[CONFIG_KEY]

    app[POLL_TASK_KEY] = asyncio.create_task(
        poll_loop(
            app[CLIENT_KEY],
            app[METRICS_KEY],
            app[STATUS_KEY],
            app[LOGGER_KEY],
            interval_seconds=config.poll_interval_seconds
        )
    )


async def cleanup_background_tasks(app):
    """
    Cleanup handler that cancels the poll loop and closes the API client.

    Args:
        app: aiohttp Application instance
    """
    app[POLL_TASK_KEY].cancel()
    try:
        await app[POLL_TASK_KEY]
    except asyncio.CancelledError:
        pass  # Expected when cancelling the task
    await app[CLIENT_KEY].close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Ambient Weather Prometheus Exporter'
    )
    parser.add_argument('app_key', nargs='?', help='Ambient application key')
    parser.add_argument('api_key', nargs='?', help='Ambient API key')
    parser.add_argument(
        '--config',
        type=str,
        help='Path to YAML or JSON config file with per-device gauge mappings'
    )
    parser.add_argument(
        '--port',
        type=int,
        default=DEFAULT_PORT,
        help=f'HTTP port to listen on (default: {DEFAULT_PORT})'
    )
    parser.add_argument(
        '--metric-prefix',
        type=str,
        default=DEFAULT_METRIC_PREFIX,
        help=f'Metric name prefix (default: {DEFAULT_METRIC_PREFIX})'
    )
    parser.add_argument(
        '--log-file',
        type=str,
        help=f'Log file path (default: config file log_file or {DEFAULT_LOG_FILE})'
    )
    parser.add_argument('--debug', action='store_true', help='Set log level to debug')
    parser.add_argument(
        '--disable-default-gauges',
        action='store_true',
        help='Disable default gauge metrics'
    )
    parser.add_argument(
        '--mock-api',
        action='store_true',
        help='Use MockApiClient instead of the Ambient API (for testing)'
    )
    return parser


def build_app_config(args: argparse.Namespace) -> AppConfig:
    """
    Merge CLI arguments with the optional config file.

    Raises:
        ConfigError: If the config file is invalid
    """
    file_config = load_config(args.config) if args.config else FileConfig(devices=[])

    return AppConfig(
        app_key=args.app_key or "",
        api_key=args.api_key or "",
        devices=file_config.devices,
        listen_port=args.port,
        metric_prefix=args.metric_prefix,
        disable_default_gauges=args.disable_default_gauges,
        poll_interval_seconds=file_config.poll_interval_seconds,
        log_file=args.log_file or file_config.log_file or DEFAULT_LOG_FILE,
        debug=args.debug
    )


def main(argv: Optional[List[str]] = None):
    """
    Main entry point. Parses CLI arguments, loads config, and starts the server.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.mock_api and not (args.app_key and args.api_key):
        parser.error('app_key and api_key are required unless --mock-api is given')

    try:
        config = build_app_config(args)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    logger = get_logger(config)
    logger.info("Starting Ambient Weather Prometheus Exporter")
    if args.config:
        logger.info(f"Config loaded from {args.config}: {len(config.devices)} devices")

    # Build every gauge before polling starts so bad config fails fast
    try:
        metrics = build_metrics(
            config.devices,
            metric_prefix=config.metric_prefix,
            disable_default_gauges=config.disable_default_gauges
        )
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    logger.info(
        f"Registered {len(metrics.gauges)} custom gauges; default gauges "
        f"{'enabled' if metrics.defaults_enabled else 'disabled'}"
    )

    client = get_api_client(config.app_key, config.api_key, use_mock=args.mock_api)
    if args.mock_api:
        logger.info("Using MockApiClient (no Ambient API access)")

    status_tracker = StatusTracker(poll_interval_seconds=config.poll_interval_seconds)

    app = create_app(config, metrics, status_tracker)
    app[CLIENT_KEY] = client
    app[LOGGER_KEY] = logger

    app.on_startup.append(start_background_tasks)
    app.on_cleanup.append(cleanup_background_tasks)

    logger.info(f"Metrics will be served on http://localhost:{config.listen_port}/metrics")
    web.run_app(app, host='0.0.0.0', port=config.listen_port)


if __name__ == '__main__':
    main()
