# ABOUTME: Registry of user-configured gauges built once from device mapping rules
# ABOUTME: Resolves (device MAC, raw API field) to a gauge and a complete label set
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from prometheus_client import CollectorRegistry, Gauge

from ambient_exporter.config import ConfigError, DeviceConfig, check_label_name, check_metric_name
from ambient_exporter.fields import NON_METRIC_FIELDS, FieldValue, set_gauge

logger = logging.getLogger(__name__)

DEVICE_LABEL = "mac_address"

# Value for schema label keys a rule does not declare
MISSING_LABEL_VALUE = ""


@dataclass(frozen=True)
class GaugeBinding:
    """Resolved target for one (device, raw field) pair."""
    gauge_name: str
    gauge: Gauge
    labels: Mapping[str, str]
    schema: Tuple[str, ...]

    @property
    def label_values(self) -> Tuple[str, ...]:
        return tuple(self.labels[key] for key in self.schema)


class GaugeRegistry:
    """
    Custom per-device gauges built from configuration.

    Every rule targeting the same gauge name shares one Gauge whose label
    schema is the union of all those rules' label keys plus the device
    label. Lookups are read-only after build().
    """

    def __init__(
        self,
        gauges: Dict[str, Gauge],
        schemas: Dict[str, Tuple[str, ...]],
        bindings: Dict[str, Dict[str, GaugeBinding]],
        metric_prefix: str = ""
    ):
        self._gauges = gauges
        self._schemas = schemas
        self._bindings = bindings
        self.metric_prefix = metric_prefix

    @classmethod
    def build(
        cls,
        devices: Iterable[DeviceConfig],
        registry: CollectorRegistry,
        metric_prefix: str = ""
    ) -> "GaugeRegistry":
        """
        Build the registry from device configuration.

        Args:
            devices: Device entries with their gauge mapping rules
            registry: Prometheus registry the gauges are registered in
            metric_prefix: Prepended to every gauge name

        Returns:
            GaugeRegistry ready for resolve()/apply()

        Raises:
            ConfigError: For empty names, duplicate (device, field) mappings,
                label-set collisions, or names Prometheus rejects
        """
        devices = list(devices)

        # Pass 1: validate rules and collect the label key union per gauge name
        label_keys: Dict[str, Set[str]] = {}
        for device in devices:
            for index, rule in enumerate(device.gauges):
                if not rule.raw_field:
                    raise ConfigError(
                        f"Device {device.mac_address}: gauge rule #{index} has an empty 'api_name'"
                    )
                if not rule.gauge_name:
                    raise ConfigError(
                        f"Device {device.mac_address}: gauge rule #{index} "
                        f"({rule.raw_field}) has an empty 'name'"
                    )
                if rule.raw_field in NON_METRIC_FIELDS:
                    raise ConfigError(
                        f"Device {device.mac_address}: field {rule.raw_field} is not numeric "
                        f"and cannot be mapped to a gauge"
                    )
                where = f"Device {device.mac_address}: "
                check_metric_name(metric_prefix + rule.gauge_name, where)
                for key in rule.labels:
                    check_label_name(key, where)
                keys = label_keys.setdefault(rule.gauge_name, set())
                keys.update(rule.labels.keys())
                keys.add(DEVICE_LABEL)

        # Pass 2: one gauge per distinct name
        gauges: Dict[str, Gauge] = {}
        schemas: Dict[str, Tuple[str, ...]] = {}
        for name in sorted(label_keys):
            schema = tuple(sorted(label_keys[name]))
            full_name = metric_prefix + name
            try:
                gauges[name] = Gauge(
                    full_name,
                    f"Value of {name} reported by Ambient API",
                    schema,
                    registry=registry
                )
            except ValueError as e:
                raise ConfigError(f"Cannot create gauge {full_name}: {e}") from e
            schemas[name] = schema

        # Pass 3: resolve every (device, field) to its gauge and full label set
        bindings: Dict[str, Dict[str, GaugeBinding]] = {}
        seen_series: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], str] = {}
        for device in devices:
            device_bindings = bindings.setdefault(device.mac_address, {})
            for rule in device.gauges:
                if rule.raw_field in device_bindings:
                    previous = device_bindings[rule.raw_field].gauge_name
                    raise ConfigError(
                        f"Device {device.mac_address}: field {rule.raw_field} is mapped more than once "
                        f"(to {previous} and {rule.gauge_name})"
                    )

                labels = {key: MISSING_LABEL_VALUE for key in schemas[rule.gauge_name]}
                labels.update(rule.labels)
                labels[DEVICE_LABEL] = device.mac_address

                series = (rule.gauge_name, tuple(sorted(labels.items())))
                if series in seen_series:
                    raise ConfigError(
                        f"Device {device.mac_address}: fields {seen_series[series]} and {rule.raw_field} "
                        f"both write {rule.gauge_name} with labels {dict(series[1])}"
                    )
                seen_series[series] = rule.raw_field

                device_bindings[rule.raw_field] = GaugeBinding(
                    gauge_name=rule.gauge_name,
                    gauge=gauges[rule.gauge_name],
                    labels=MappingProxyType(labels),
                    schema=schemas[rule.gauge_name]
                )

        logger.debug(
            f"Built gauge registry: {len(gauges)} gauges for {len(bindings)} devices"
        )
        return cls(gauges, schemas, bindings, metric_prefix)

    @property
    def gauge_names(self) -> List[str]:
        """Configured gauge names, without the metric prefix."""
        return sorted(self._gauges)

    @property
    def metric_names(self) -> List[str]:
        """Full exposed metric names."""
        return [self.metric_prefix + name for name in self.gauge_names]

    def label_schema(self, gauge_name: str) -> Tuple[str, ...]:
        return self._schemas[gauge_name]

    def has_device(self, mac_address: str) -> bool:
        return bool(self._bindings.get(mac_address))

    def __len__(self) -> int:
        return len(self._gauges)

    def resolve(self, mac_address: str, raw_field: str) -> Optional[GaugeBinding]:
        """Look up the binding for a device field; None means not configured."""
        return self._bindings.get(mac_address, {}).get(raw_field)

    def apply(self, binding: GaugeBinding, value: FieldValue) -> bool:
        """Overwrite the gauge value for the binding's exact label tuple."""
        return set_gauge(binding.gauge, binding.label_values, value, binding.gauge_name)

    def record(self, mac_address: str, raw_field: str, raw_value: Any) -> bool:
        """
        Resolve and apply a single raw field.

        Returns:
            True if a configured gauge was updated
        """
        binding = self.resolve(mac_address, raw_field)
        if binding is None:
            logger.debug(f"No config for ambient metric {raw_field} on {mac_address}")
            return False
        return self.apply(binding, FieldValue.classify(raw_value))
