# ABOUTME: Diagnostic tool for troubleshooting Ambient station field mappings
# ABOUTME: Fetches once and shows how every reported field routes to custom, default, or freshness gauges
import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from ambient_exporter.ambient import AbstractApiClient, AmbientApiClient, DeviceRecord, FetchOutcome
from ambient_exporter.config import ConfigError, DeviceConfig, load_config
from ambient_exporter.fields import NON_METRIC_FIELDS, FieldKind, FieldValue
from ambient_exporter.freshness import DATA_TIMESTAMP_FIELD, RAIN_TIMESTAMP_FIELD
from ambient_exporter.logger import get_console_logger
from ambient_exporter.metrics import ExporterMetrics, build_metrics
from ambient_exporter.poller import fetch_with_retry

logger = logging.getLogger('ambient_exporter.diagnostics')

FRESHNESS_FIELDS = (DATA_TIMESTAMP_FIELD, RAIN_TIMESTAMP_FIELD)


@dataclass
class FieldRoute:
    """Where one reported field ends up."""
    field: str
    value: Any
    kind: str
    routes: List[str] = field(default_factory=list)  # custom, default, freshness
    gauge: Optional[str] = None
    labels: Optional[Dict[str, str]] = None

    @property
    def exported(self) -> bool:
        if "freshness" in self.routes:
            return True
        return bool(self.routes) and self.kind == FieldKind.NUMERIC.value


@dataclass
class DeviceReport:
    mac_address: str
    name: Optional[str]
    configured: bool
    fields: List[FieldRoute]


def route_field(mac_address: str, field_name: str, raw_value: Any, metrics: ExporterMetrics) -> FieldRoute:
    """Describe how the poll loop would treat one field of a device record."""
    value = FieldValue.classify(raw_value)
    route = FieldRoute(field=field_name, value=raw_value, kind=value.kind.value)

    if field_name in FRESHNESS_FIELDS:
        route.routes.append("freshness")
        return route
    if field_name in NON_METRIC_FIELDS:
        return route

    binding = metrics.gauges.resolve(mac_address, field_name)
    if binding is not None:
        route.routes.append("custom")
        route.gauge = metrics.gauges.metric_prefix + binding.gauge_name
        route.labels = dict(binding.labels)
    if metrics.defaults is not None and field_name in metrics.defaults:
        route.routes.append("default")
    return route


class FieldDiagnostics:
    """
    Inspect live API data against the exporter's gauge configuration.

    Gauges are registered in a private registry, so running diagnostics
    never touches a live exporter.
    """

    def __init__(self, metrics: ExporterMetrics, quiet: bool = False):
        self.metrics = metrics
        self.quiet = quiet
        self.devices: List[DeviceReport] = []
        self.fetched_at: Optional[str] = None

    def inspect(self, records: List[DeviceRecord]) -> List[DeviceReport]:
        self.fetched_at = datetime.now().isoformat(timespec='seconds')
        self.devices = []
        for record in records:
            report = DeviceReport(
                mac_address=record.mac_address,
                name=record.name,
                configured=self.metrics.gauges.has_device(record.mac_address),
                fields=[
                    route_field(record.mac_address, name, value, self.metrics)
                    for name, value in sorted(record.fields.items())
                ]
            )
            self.devices.append(report)
            if not self.quiet:
                self._display_device(report)
        return self.devices

    def _display_device(self, report: DeviceReport):
        title = f"{report.mac_address} ({report.name})" if report.name else report.mac_address
        print(f"\n{title}")
        if not report.configured:
            print("  No custom gauge config for this device")

        for route in report.fields:
            if "custom" in route.routes:
                labels = ", ".join(f'{k}="{v}"' for k, v in sorted(route.labels.items()))
                target = f"{route.gauge}{{{labels}}}"
                if "default" in route.routes:
                    target += " + default gauge"
            elif route.routes:
                target = f"{route.routes[0]} gauge"
            else:
                target = "not exported"

            status = "✅" if route.exported else "❌"
            print(f"  {status} {route.field} = {route.value!r} [{route.kind}] -> {target}")

    def get_statistics(self) -> dict:
        routes = [route for device in self.devices for route in device.fields]
        return {
            "devices": len(self.devices),
            "configured_devices": sum(1 for device in self.devices if device.configured),
            "total_fields": len(routes),
            "exported_fields": sum(1 for route in routes if route.exported),
            "custom_fields": sum(1 for route in routes if "custom" in route.routes),
            "default_fields": sum(1 for route in routes if "default" in route.routes),
            "unmapped_fields": sorted({route.field for route in routes if not route.exported}),
        }

    async def run(self, client: AbstractApiClient) -> bool:
        response = await fetch_with_retry(client, logger)
        if response.outcome is not FetchOutcome.SUCCESS:
            print(f"Ambient API request failed (status {response.status}): {response.error or 'unexpected status'}")
            return False
        self.inspect(response.records)
        return True

    def save_json(self, filename: Optional[str] = None) -> str:
        if filename is None:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            filename = f"ambient_diagnostics_{timestamp}.json"

        data = {
            "fetched_at": self.fetched_at,
            "devices": [asdict(device) for device in self.devices],
            "statistics": self.get_statistics()
        }

        with open(filename, 'w') as f:
            json.dump(data, f, indent=2, default=str)

        return filename


async def _run(diagnostics: FieldDiagnostics, client: AbstractApiClient) -> bool:
    try:
        return await diagnostics.run(client)
    finally:
        await client.close()


def main():
    """Main entry point for diagnostic tool."""
    parser = argparse.ArgumentParser(
        description='Ambient Exporter Diagnostic Tool - Show how station fields map to gauges',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Check a config file against live data
  python -m ambient_exporter.diagnostics APP_KEY API_KEY --config config.yaml

  # Save results to JSON without console output
  python -m ambient_exporter.diagnostics APP_KEY API_KEY --json report.json --quiet
        """
    )
    parser.add_argument('app_key', help='Ambient application key')
    parser.add_argument('api_key', help='Ambient API key')
    parser.add_argument('--config', help='Path to YAML or JSON config file')
    parser.add_argument(
        '--disable-default-gauges',
        action='store_true',
        help='Inspect as if default gauges were disabled'
    )
    parser.add_argument(
        '--json',
        nargs='?',
        const='',  # Flag present but no value
        metavar='FILENAME',
        help='Save results to JSON file (auto-generates filename if not provided)'
    )
    parser.add_argument(
        '--quiet',
        action='store_true',
        help='Suppress console output (useful with --json)'
    )

    args = parser.parse_args()
    get_console_logger()

    devices: List[DeviceConfig] = []
    try:
        if args.config:
            devices = load_config(args.config).devices
        metrics = build_metrics(devices, disable_default_gauges=args.disable_default_gauges)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    diagnostics = FieldDiagnostics(metrics, quiet=args.quiet)
    client = AmbientApiClient(args.app_key, args.api_key)

    if not asyncio.run(_run(diagnostics, client)):
        sys.exit(1)

    if not args.quiet:
        print("\n" + "=" * 60)
        print("STATISTICS")
        print("=" * 60)
        stats = diagnostics.get_statistics()
        print(f"Devices: {stats['devices']} ({stats['configured_devices']} with custom config)")
        print(f"Fields exported: {stats['exported_fields']} of {stats['total_fields']}")
        print(f"Custom gauge fields: {stats['custom_fields']}")
        print(f"Default gauge fields: {stats['default_fields']}")
        if stats['unmapped_fields']:
            print("Fields not exported:")
            for name in stats['unmapped_fields']:
                print(f"  - {name}")

    if args.json is not None:
        filename = args.json if args.json else None
        saved_path = diagnostics.save_json(filename)
        print(f"\nResults saved to: {saved_path}")


if __name__ == '__main__':
    main()
