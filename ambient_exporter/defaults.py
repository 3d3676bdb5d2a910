# ABOUTME: Default gauge catalogue with one gauge per well-known Ambient API field
# ABOUTME: Each default gauge carries only the device MAC address label
import logging
from typing import Any, Dict, List

from prometheus_client import CollectorRegistry, Gauge

from ambient_exporter.config import ConfigError
from ambient_exporter.fields import NON_METRIC_FIELDS, FieldValue, set_gauge
from ambient_exporter.registry import DEVICE_LABEL

logger = logging.getLogger(__name__)

DEFAULT_FIELDS = (
    "baromabsin", "baromrelin",
    "batt1", "batt2", "batt3", "batt4", "batt5", "batt6", "batt7", "batt8", "battin", "battout",
    "dewPoint", "dewPoint1", "dewPoint2", "dewPoint3", "dewPoint4", "dewPoint5",
    "dewPoint6", "dewPoint7", "dewPoint8", "dewPointin",
    "dailyrainin", "eventrainin", "hourlyrainin",
    "feelsLike", "feelsLike1", "feelsLike2", "feelsLike3", "feelsLike4", "feelsLike5",
    "feelsLike6", "feelsLike7", "feelsLike8", "feelsLikein",
    "humidity", "humidity1", "humidity2", "humidity3", "humidity4", "humidity5",
    "humidity6", "humidity7", "humidity8", "humidityin",
    "maxdailygust", "monthlyrainin", "solarradiation",
    "temp1f", "temp2f", "temp3f", "temp4f", "temp5f", "temp6f", "temp7f", "temp8f",
    "tempf", "tempinf", "uv", "weeklyrainin",
    "winddir", "winddir_avg10m", "windgustmph", "windspdmph_avg10m",
    "windspeedmph", "yearlyrainin",
)


class DefaultGaugeSet:
    """One gauge per catalogue field, labelled by device only."""

    def __init__(self, gauges: Dict[str, Gauge], metric_prefix: str = ""):
        self._gauges = gauges
        self.metric_prefix = metric_prefix

    @classmethod
    def build(
        cls,
        registry: CollectorRegistry,
        metric_prefix: str = "",
        catalogue=DEFAULT_FIELDS
    ) -> "DefaultGaugeSet":
        gauges = {}
        for field_name in catalogue:
            try:
                gauges[field_name] = Gauge(
                    metric_prefix + field_name,
                    f"Value of {field_name} reported by Ambient API",
                    [DEVICE_LABEL],
                    registry=registry
                )
            except ValueError as e:
                raise ConfigError(f"Cannot create default gauge {metric_prefix + field_name}: {e}") from e
        return cls(gauges, metric_prefix)

    @property
    def fields(self) -> List[str]:
        return list(self._gauges)

    @property
    def metric_names(self) -> List[str]:
        return [self.metric_prefix + name for name in self._gauges]

    def __contains__(self, field_name: str) -> bool:
        return field_name in self._gauges

    def apply(self, field_name: str, mac_address: str, raw_value: Any) -> bool:
        """
        Set the default gauge for a field.

        Unknown and non-metric fields are a no-op.

        Returns:
            True if a gauge was updated
        """
        if field_name in NON_METRIC_FIELDS:
            return False

        gauge = self._gauges.get(field_name)
        if gauge is None:
            logger.debug(f"No default metric defined for api key {field_name} on {mac_address}")
            return False

        return set_gauge(gauge, (mac_address,), FieldValue.classify(raw_value), field_name)
