# ABOUTME: Configuration parser for Ambient Weather exporter application
# ABOUTME: Loads and validates YAML/JSON device config with per-device gauge mapping rules
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import yaml

DEFAULT_PORT = 9876
DEFAULT_METRIC_PREFIX = "ambient_wx_"
DEFAULT_POLL_INTERVAL_SECONDS = 60
DEFAULT_LOG_FILE = "./logs/ambient_exporter.log"


METRIC_NAME_RE = re.compile(r'^[a-zA-Z_:][a-zA-Z0-9_:]*$')
LABEL_NAME_RE = re.compile(r'^[a-zA-Z_][a-zA-Z0-9_]*$')


class ConfigError(ValueError):
    """Raised when configuration is malformed or ambiguous."""


def check_metric_name(name: str, where: str = "") -> None:
    """
    Reject metric names outside the classic Prometheus charset.

    Newer prometheus_client releases accept such names and escape them on
    exposition, which would let two configured names collide on the wire.
    """
    if not METRIC_NAME_RE.match(name):
        raise ConfigError(f"{where}Invalid metric name {name!r}")


def check_label_name(name: str, where: str = "") -> None:
    if not LABEL_NAME_RE.match(name) or name.startswith('__'):
        raise ConfigError(f"{where}Invalid label name {name!r}")


@dataclass(frozen=True)
class GaugeMappingRule:
    """Routes one raw API field of a device to a named gauge with static labels."""
    raw_field: str
    gauge_name: str
    labels: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class DeviceConfig:
    mac_address: str
    gauges: List[GaugeMappingRule] = field(default_factory=list)


@dataclass
class AppConfig:
    """Application configuration assembled from CLI arguments and the config file."""
    app_key: str
    api_key: str
    devices: List[DeviceConfig] = field(default_factory=list)
    listen_port: int = DEFAULT_PORT
    metric_prefix: str = DEFAULT_METRIC_PREFIX
    disable_default_gauges: bool = False
    poll_interval_seconds: int = DEFAULT_POLL_INTERVAL_SECONDS
    log_file: str = DEFAULT_LOG_FILE
    debug: bool = False


@dataclass
class FileConfig:
    """Settings read from the config file."""
    devices: List[DeviceConfig]
    poll_interval_seconds: int = DEFAULT_POLL_INTERVAL_SECONDS
    log_file: Optional[str] = None


def _parse_rule(mac_address: str, index: int, data) -> GaugeMappingRule:
    where = f"device {mac_address} gauge #{index}"
    if not isinstance(data, dict):
        raise ConfigError(f"{where} must be a mapping")

    labels = data.get('labels') or {}
    if not isinstance(labels, dict):
        raise ConfigError(f"{where}: 'labels' must be a mapping")
    for key, value in labels.items():
        if not isinstance(key, str) or not isinstance(value, str):
            raise ConfigError(f"{where}: label {key!r} must map a string to a string")

    return GaugeMappingRule(
        raw_field=str(data.get('api_name') or ''),
        gauge_name=str(data.get('name') or ''),
        labels=dict(labels)
    )


def _parse_device(index: int, data) -> DeviceConfig:
    if not isinstance(data, dict):
        raise ConfigError(f"Device #{index} must be a mapping")

    mac_address = data.get('mac_address')
    if not mac_address or not isinstance(mac_address, str):
        raise ConfigError(f"Device #{index} is missing 'mac_address'")

    gauges = data.get('gauges', data.get('Gauges')) or []
    if not isinstance(gauges, list):
        raise ConfigError(f"Device {mac_address}: 'gauges' must be a list")

    return DeviceConfig(
        mac_address=mac_address,
        gauges=[_parse_rule(mac_address, i, g) for i, g in enumerate(gauges)]
    )


def load_config(path: str) -> FileConfig:
    """
    Load and validate device configuration from a YAML (or JSON) file.

    Args:
        path: Path to config file

    Returns:
        FileConfig with parsed devices and optional runtime settings

    Raises:
        ConfigError: If config is invalid or cannot be read
    """
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError("Config file must contain a mapping")

    # The original JSON format capitalises the key
    devices = data.get('devices', data.get('Devices')) or []
    if not isinstance(devices, list):
        raise ConfigError("'devices' must be a list of device entries")

    poll_interval = data.get('poll_interval_seconds', DEFAULT_POLL_INTERVAL_SECONDS)
    if not isinstance(poll_interval, int) or isinstance(poll_interval, bool) or poll_interval <= 0:
        raise ConfigError("'poll_interval_seconds' must be a positive integer")

    return FileConfig(
        devices=[_parse_device(i, d) for i, d in enumerate(devices)],
        poll_interval_seconds=poll_interval,
        log_file=data.get('log_file')
    )
