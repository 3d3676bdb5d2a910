# ABOUTME: Prometheus metrics state for the Ambient exporter
# ABOUTME: Builds custom, default, and freshness gauges in one registry without name collisions
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from prometheus_client import CollectorRegistry

from ambient_exporter.config import ConfigError, DeviceConfig, check_metric_name
from ambient_exporter.defaults import DEFAULT_FIELDS, DefaultGaugeSet
from ambient_exporter.freshness import DATA_AGE_METRIC, RAIN_AGE_METRIC, FreshnessCalculator
from ambient_exporter.registry import GaugeRegistry


@dataclass
class ExporterMetrics:
    """All gauges of the exporter and the registry that serves them."""
    registry: CollectorRegistry
    gauges: GaugeRegistry
    freshness: FreshnessCalculator
    defaults: Optional[DefaultGaugeSet] = None

    @property
    def defaults_enabled(self) -> bool:
        return self.defaults is not None


def _check_name_collisions(
    devices: List[DeviceConfig],
    metric_prefix: str,
    disable_default_gauges: bool
) -> None:
    """Reject custom gauge names that clash with default or freshness gauges."""
    reserved: Dict[str, str] = {
        metric_prefix + DATA_AGE_METRIC: "freshness gauge",
        metric_prefix + RAIN_AGE_METRIC: "freshness gauge",
    }
    if not disable_default_gauges:
        for field_name in DEFAULT_FIELDS:
            reserved[metric_prefix + field_name] = "default gauge"

    for full_name in reserved:
        check_metric_name(full_name, f"Metric prefix {metric_prefix!r}: ")

    for device in devices:
        for rule in device.gauges:
            full_name = metric_prefix + rule.gauge_name
            # Exact comparison is only sound once names are in the unescaped charset
            check_metric_name(full_name, f"Device {device.mac_address}: ")
            if full_name in reserved:
                raise ConfigError(
                    f"Device {device.mac_address}: gauge name {full_name} collides with the "
                    f"{reserved[full_name]} of the same name"
                )


def build_metrics(
    devices: Iterable[DeviceConfig],
    metric_prefix: str = "",
    disable_default_gauges: bool = False,
    registry: Optional[CollectorRegistry] = None,
    now: Callable[[], float] = time.time
) -> ExporterMetrics:
    """
    Build every gauge the exporter publishes.

    Args:
        devices: Device configuration with custom gauge mapping rules
        metric_prefix: Prepended to every metric name
        disable_default_gauges: Skip the default catalogue gauges
        registry: Registry to register gauges in (a fresh one if None)
        now: Clock used for freshness computation

    Returns:
        ExporterMetrics holding the registry and all gauge schemes

    Raises:
        ConfigError: If the configuration is invalid or names collide
    """
    devices = list(devices)
    if registry is None:
        registry = CollectorRegistry()

    _check_name_collisions(devices, metric_prefix, disable_default_gauges)

    gauges = GaugeRegistry.build(devices, registry, metric_prefix)
    freshness = FreshnessCalculator.build(registry, metric_prefix, now)
    defaults = None
    if not disable_default_gauges:
        defaults = DefaultGaugeSet.build(registry, metric_prefix)

    return ExporterMetrics(
        registry=registry,
        gauges=gauges,
        freshness=freshness,
        defaults=defaults
    )
