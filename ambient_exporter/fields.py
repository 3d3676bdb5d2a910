# ABOUTME: Tagged representation of raw Ambient API field values
# ABOUTME: Classifies JSON values as numeric, string, or unknown and sets gauges from them
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Sequence

from prometheus_client import Gauge

logger = logging.getLogger(__name__)

# Date-like and free-text fields, never exported as plain gauges
NON_METRIC_FIELDS = frozenset({"dateutc", "date", "tz", "lastRain"})


class FieldKind(Enum):
    NUMERIC = "numeric"
    STRING = "string"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class FieldValue:
    """A raw API value tagged with its kind."""
    kind: FieldKind
    raw: Any

    @classmethod
    def classify(cls, raw: Any) -> "FieldValue":
        # bool is a subclass of int but never a measurement
        if isinstance(raw, bool):
            return cls(FieldKind.UNKNOWN, raw)
        if isinstance(raw, (int, float)):
            return cls(FieldKind.NUMERIC, raw)
        if isinstance(raw, str):
            return cls(FieldKind.STRING, raw)
        return cls(FieldKind.UNKNOWN, raw)

    @property
    def number(self) -> Optional[float]:
        if self.kind is FieldKind.NUMERIC:
            return float(self.raw)
        return None


def set_gauge(gauge: Gauge, label_values: Sequence[str], value: FieldValue, field_name: str = "") -> bool:
    """
    Set a labelled gauge from a tagged field value.

    Only numeric values are written. Strings and anything else are logged
    and dropped.
    Label values are given in the gauge's label-name order.

    Returns:
        True if the gauge was updated
    """
    number = value.number
    if number is None:
        logger.warning(
            f"Unhandled metric type {type(value.raw).__name__} "
            f"({value.kind.value}) for field {field_name or '?'}"
        )
        return False

    gauge.labels(*label_values).set(number)
    return True
