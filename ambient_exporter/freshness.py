# ABOUTME: Data freshness gauges derived from Ambient API timestamp fields
# ABOUTME: Computes seconds since last report (epoch ms) and since last rain (ISO-8601 string)
import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional

from prometheus_client import CollectorRegistry, Gauge

from ambient_exporter.config import ConfigError
from ambient_exporter.fields import FieldKind, FieldValue
from ambient_exporter.registry import DEVICE_LABEL

logger = logging.getLogger(__name__)

DATA_TIMESTAMP_FIELD = "dateutc"
RAIN_TIMESTAMP_FIELD = "lastRain"
RAIN_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"
# strptime alone accepts unpadded fields and 1-6 fraction digits
RAIN_TIMESTAMP_RE = re.compile(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z")

DATA_AGE_METRIC = "data_age"
RAIN_AGE_METRIC = "time_since_rain"


@dataclass(frozen=True)
class FreshnessState:
    """Ages computed for one device in one poll cycle; None when skipped."""
    data_age_seconds: Optional[float] = None
    rain_age_seconds: Optional[float] = None


def parse_rain_timestamp(value: str) -> datetime:
    """
    Parse a lastRain timestamp such as 2023-11-14T22:13:20.000Z as UTC.

    Raises:
        ValueError: If the string does not match the expected format
    """
    if not RAIN_TIMESTAMP_RE.fullmatch(value):
        raise ValueError(f"expected YYYY-MM-DDTHH:MM:SS.sssZ, got {value!r}")
    return datetime.strptime(value, RAIN_TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


class FreshnessCalculator:
    """Owns the data_age and time_since_rain gauges."""

    def __init__(
        self,
        data_age_gauge: Gauge,
        rain_age_gauge: Gauge,
        now: Callable[[], float] = time.time,
        metric_prefix: str = ""
    ):
        self.data_age_gauge = data_age_gauge
        self.rain_age_gauge = rain_age_gauge
        self.metric_prefix = metric_prefix
        self._now = now

    @classmethod
    def build(
        cls,
        registry: CollectorRegistry,
        metric_prefix: str = "",
        now: Callable[[], float] = time.time
    ) -> "FreshnessCalculator":
        try:
            data_age_gauge = Gauge(
                metric_prefix + DATA_AGE_METRIC,
                "Seconds since the station last reported data",
                [DEVICE_LABEL],
                registry=registry
            )
            rain_age_gauge = Gauge(
                metric_prefix + RAIN_AGE_METRIC,
                "Seconds since the station last recorded rain",
                [DEVICE_LABEL],
                registry=registry
            )
        except ValueError as e:
            raise ConfigError(f"Cannot create freshness gauges with prefix {metric_prefix!r}: {e}") from e
        return cls(data_age_gauge, rain_age_gauge, now, metric_prefix)

    @property
    def metric_names(self):
        return [self.metric_prefix + DATA_AGE_METRIC, self.metric_prefix + RAIN_AGE_METRIC]

    def data_age(self, mac_address: str, raw_value: Any, now: float) -> Optional[float]:
        value = FieldValue.classify(raw_value)
        if value.kind is not FieldKind.NUMERIC:
            logger.warning(
                f"Unable to read {DATA_TIMESTAMP_FIELD} for {mac_address}: "
                f"expected epoch milliseconds, got {raw_value!r}"
            )
            return None

        now_millis = int(now * 1000)
        return (now_millis - value.number) / 1000.0

    def rain_age(self, mac_address: str, raw_value: Any, now: float) -> Optional[float]:
        if not isinstance(raw_value, str):
            logger.warning(f"Unable to parse last rain timestamp {raw_value!r} for {mac_address}")
            return None

        try:
            rained_at = parse_rain_timestamp(raw_value)
        except ValueError as e:
            logger.warning(f"Unable to parse last rain timestamp {raw_value!r} for {mac_address}: {e}")
            return None

        # Whole seconds on both sides; negative when clocks disagree
        return float(int(now) - int(rained_at.timestamp()))

    def record(self, mac_address: str, fields: Mapping[str, Any]) -> FreshnessState:
        """
        Update both freshness gauges for a device record.

        A missing or unusable timestamp leaves that gauge at its previous value.
        """
        now = self._now()
        data_age = None
        rain_age = None

        if DATA_TIMESTAMP_FIELD in fields:
            data_age = self.data_age(mac_address, fields[DATA_TIMESTAMP_FIELD], now)
            if data_age is not None:
                self.data_age_gauge.labels(mac_address).set(data_age)

        if RAIN_TIMESTAMP_FIELD in fields:
            rain_age = self.rain_age(mac_address, fields[RAIN_TIMESTAMP_FIELD], now)
            if rain_age is not None:
                self.rain_age_gauge.labels(mac_address).set(rain_age)

        return FreshnessState(data_age_seconds=data_age, rain_age_seconds=rain_age)
