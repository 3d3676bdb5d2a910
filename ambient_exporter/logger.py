# ABOUTME: Logging setup for Ambient exporter application and its diagnostics tool
# ABOUTME: Configures TimedRotatingFileHandler with daily rotation, or stderr output for one-shot runs
import logging
import sys
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from ambient_exporter.config import AppConfig

LOGGER_NAME = 'ambient_exporter'
LOG_FORMAT = '%(asctime)s %(levelname)s %(name)s %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def get_logger(app_config: AppConfig) -> logging.Logger:
    """
    Create and configure logger for the Ambient exporter application.

    Module loggers (ambient_exporter.registry, ...) propagate here.

    Args:
        app_config: Application configuration containing log file path and debug flag

    Returns:
        Configured logger instance with file handler
    """
    logger = logging.getLogger(LOGGER_NAME)

    # Avoid adding duplicate handlers if get_logger is called multiple times
    if logger.handlers:
        return logger

    logger.setLevel(logging.DEBUG if app_config.debug else logging.INFO)

    # Ensure log directory exists
    log_path = Path(app_config.log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    # Create rotating file handler (daily at midnight, keep 30 days)
    handler = TimedRotatingFileHandler(
        app_config.log_file,
        when='midnight',
        interval=1,
        backupCount=30
    )

    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))

    logger.addHandler(handler)

    return logger


def get_console_logger(level: int = logging.WARNING) -> logging.Logger:
    """Logger for the one-shot diagnostics tool: same format, written to stderr."""
    logger = logging.getLogger(LOGGER_NAME)

    if logger.handlers:
        return logger

    logger.setLevel(level)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(handler)

    return logger
