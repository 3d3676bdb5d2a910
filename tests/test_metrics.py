# ABOUTME: Unit tests for building the exporter's Prometheus metrics
# ABOUTME: Tests scheme composition, default toggle, registry isolation, and name collisions
import pytest
from prometheus_client import REGISTRY, CollectorRegistry

from ambient_exporter.config import ConfigError, DeviceConfig, GaugeMappingRule
from ambient_exporter.metrics import build_metrics


@pytest.fixture
def devices():
    return [
        DeviceConfig("AA:BB:CC", [GaugeMappingRule("tempf", "outdoor_temp", {"unit": "F"})]),
    ]


def metric_names(registry):
    return {metric.name for metric in registry.collect()}


def test_build_all_schemes(devices):
    metrics = build_metrics(devices, metric_prefix="ambient_wx_")
    names = metric_names(metrics.registry)

    assert metrics.defaults_enabled
    assert "ambient_wx_outdoor_temp" in names
    assert "ambient_wx_tempf" in names
    assert "ambient_wx_data_age" in names
    assert "ambient_wx_time_since_rain" in names


def test_disable_default_gauges(devices):
    metrics = build_metrics(devices, metric_prefix="ambient_wx_", disable_default_gauges=True)
    names = metric_names(metrics.registry)

    assert not metrics.defaults_enabled
    assert metrics.defaults is None
    assert "ambient_wx_tempf" not in names
    # Freshness gauges exist regardless of the default toggle
    assert "ambient_wx_data_age" in names
    assert "ambient_wx_time_since_rain" in names


def test_uses_given_registry(devices):
    registry = CollectorRegistry()

    metrics = build_metrics(devices, registry=registry)

    assert metrics.registry is registry
    assert "outdoor_temp" in metric_names(registry)


def test_does_not_touch_global_registry(devices):
    build_metrics(devices, metric_prefix="isolated_")

    assert "isolated_outdoor_temp" not in metric_names(REGISTRY)


def test_two_builds_do_not_conflict(devices):
    """Each build owns its registry, so the same config can be built twice."""
    first = build_metrics(devices)
    second = build_metrics(devices)

    assert first.registry is not second.registry


def test_custom_name_colliding_with_default_gauge_rejected():
    devices = [DeviceConfig("AA:BB:CC", [GaugeMappingRule("temp1f", "tempf")])]

    with pytest.raises(ConfigError, match="collides with the default gauge"):
        build_metrics(devices, metric_prefix="ambient_wx_")


def test_custom_name_matching_default_allowed_when_defaults_disabled():
    devices = [DeviceConfig("AA:BB:CC", [GaugeMappingRule("temp1f", "tempf")])]

    metrics = build_metrics(devices, disable_default_gauges=True)

    assert metrics.gauges.gauge_names == ["tempf"]


def test_custom_name_colliding_with_freshness_gauge_rejected():
    devices = [DeviceConfig("AA:BB:CC", [GaugeMappingRule("tempf", "data_age")])]

    with pytest.raises(ConfigError, match="collides with the freshness gauge"):
        build_metrics(devices, disable_default_gauges=True)


def test_collision_leaves_registry_untouched():
    """Name collisions are detected before any gauge is registered."""
    registry = CollectorRegistry()
    devices = [DeviceConfig("AA:BB:CC", [GaugeMappingRule("tempf", "time_since_rain")])]

    with pytest.raises(ConfigError):
        build_metrics(devices, registry=registry)

    assert list(registry.collect()) == []


def test_invalid_prefix_rejected():
    with pytest.raises(ConfigError, match="Invalid metric name 'bad-prefix-data_age'"):
        build_metrics([], metric_prefix="bad-prefix-")


def test_invalid_prefix_leaves_registry_untouched():
    registry = CollectorRegistry()

    with pytest.raises(ConfigError):
        build_metrics([], metric_prefix="wx-", registry=registry)

    assert list(registry.collect()) == []


@pytest.mark.parametrize("gauge_name", ["data-age", "time-since-rain"])
def test_escaped_freshness_name_rejected(gauge_name):
    """A name that escapes onto a freshness gauge never reaches /metrics."""
    registry = CollectorRegistry()
    devices = [DeviceConfig("AA:BB:CC", [GaugeMappingRule("tempf", gauge_name)])]

    with pytest.raises(ConfigError, match="Invalid metric name"):
        build_metrics(devices, registry=registry)

    assert list(registry.collect()) == []


def test_escaped_default_name_rejected():
    devices = [DeviceConfig("AA:BB:CC", [GaugeMappingRule("temp1f", "temp-f")])]

    with pytest.raises(ConfigError, match="Invalid metric name 'ambient_wx_temp-f'"):
        build_metrics(devices, metric_prefix="ambient_wx_")
