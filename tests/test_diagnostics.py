"""
Tests for the field-mapping diagnostic tool.
"""
import json

import pytest

from ambient_exporter.ambient import DeviceRecord, DeviceResponse, MockApiClient
from ambient_exporter.config import DeviceConfig, GaugeMappingRule
from ambient_exporter.diagnostics import FieldDiagnostics, route_field
from ambient_exporter.metrics import build_metrics

MAC = "AA:BB:CC"


@pytest.fixture
def metrics():
    devices = [DeviceConfig(MAC, [GaugeMappingRule("tempf", "outdoor_temp", {"unit": "F"})])]
    return build_metrics(devices, metric_prefix="ambient_wx_")


@pytest.fixture
def record():
    return DeviceRecord(MAC, {
        "tempf": 72.5,
        "humidity": 55,
        "dateutc": 1700000000000,
        "tz": "America/Chicago",
        "pm25": 12,
        "battout": "1",
    }, name="Backyard")


def test_route_custom_and_default(metrics):
    route = route_field(MAC, "tempf", 72.5, metrics)

    assert route.routes == ["custom", "default"]
    assert route.gauge == "ambient_wx_outdoor_temp"
    assert route.labels == {"mac_address": MAC, "unit": "F"}
    assert route.exported


def test_route_default_only(metrics):
    route = route_field(MAC, "humidity", 55, metrics)

    assert route.routes == ["default"]
    assert route.gauge is None


def test_route_freshness(metrics):
    assert route_field(MAC, "dateutc", 1700000000000, metrics).routes == ["freshness"]
    assert route_field(MAC, "lastRain", "2023-11-14T22:13:20.000Z", metrics).routes == ["freshness"]


def test_route_ignored_and_unknown_fields(metrics):
    assert not route_field(MAC, "tz", "America/Chicago", metrics).exported
    assert not route_field(MAC, "pm25", 12, metrics).exported


def test_route_non_numeric_value_not_exported(metrics):
    route = route_field(MAC, "battout", "1", metrics)

    assert route.routes == ["default"]
    assert route.kind == "string"
    assert not route.exported


def test_route_with_defaults_disabled():
    metrics = build_metrics([], disable_default_gauges=True)

    assert route_field(MAC, "humidity", 55, metrics).routes == []


def test_inspect_and_statistics(metrics, record):
    diagnostics = FieldDiagnostics(metrics, quiet=True)

    reports = diagnostics.inspect([record, DeviceRecord("DD:EE:FF", {"tempinf": 70.0})])

    assert [r.mac_address for r in reports] == [MAC, "DD:EE:FF"]
    assert reports[0].configured
    assert not reports[1].configured

    stats = diagnostics.get_statistics()
    assert stats["devices"] == 2
    assert stats["configured_devices"] == 1
    assert stats["total_fields"] == 7
    assert stats["custom_fields"] == 1
    assert stats["exported_fields"] == 4  # tempf, humidity, dateutc, tempinf
    assert stats["unmapped_fields"] == ["battout", "pm25", "tz"]


def test_inspect_prints_routes(metrics, record, capsys):
    FieldDiagnostics(metrics).inspect([record])

    output = capsys.readouterr().out
    assert "AA:BB:CC (Backyard)" in output
    assert 'ambient_wx_outdoor_temp{mac_address="AA:BB:CC", unit="F"}' in output
    assert "pm25" in output


def test_quiet_mode_prints_nothing(metrics, record, capsys):
    FieldDiagnostics(metrics, quiet=True).inspect([record])

    assert capsys.readouterr().out == ""


@pytest.mark.asyncio
async def test_run_fetches_once(metrics, record):
    client = MockApiClient(DeviceResponse(status=200, records=[record]))
    diagnostics = FieldDiagnostics(metrics, quiet=True)

    assert await diagnostics.run(client) is True
    assert client.calls == 1
    assert len(diagnostics.devices) == 1


@pytest.mark.asyncio
async def test_run_reports_api_failure(metrics, capsys):
    client = MockApiClient(DeviceResponse(status=401))
    diagnostics = FieldDiagnostics(metrics, quiet=True)

    assert await diagnostics.run(client) is False
    assert "status 401" in capsys.readouterr().out


def test_save_json(metrics, record, tmp_path):
    diagnostics = FieldDiagnostics(metrics, quiet=True)
    diagnostics.inspect([record])

    path = diagnostics.save_json(str(tmp_path / "report.json"))

    with open(path) as f:
        data = json.load(f)
    assert data["devices"][0]["mac_address"] == MAC
    assert data["devices"][0]["name"] == "Backyard"
    assert data["statistics"]["devices"] == 1
    assert data["fetched_at"] is not None
