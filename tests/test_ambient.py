# ABOUTME: Unit tests for the Ambient API client abstraction
# ABOUTME: Tests response parsing, outcome classification, MockApiClient, and the aiohttp client
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from ambient_exporter.ambient import (
    AmbientApiClient,
    DeviceRecord,
    DeviceResponse,
    FetchOutcome,
    MockApiClient,
    get_api_client,
    parse_device_records,
)

SAMPLE_BODY = [
    {
        "macAddress": "AA:BB:CC",
        "lastData": {"dateutc": 1700000000000, "tempf": 72.5, "humidity": 55, "tz": "America/Chicago"},
        "info": {"name": "Backyard"},
    },
    {
        "macAddress": "DD:EE:FF",
        "lastData": {"tempinf": 68.0},
    },
]


def test_parse_device_records():
    records = parse_device_records(SAMPLE_BODY)

    assert records == [
        DeviceRecord(
            mac_address="AA:BB:CC",
            fields={"dateutc": 1700000000000, "tempf": 72.5, "humidity": 55, "tz": "America/Chicago"},
            name="Backyard"
        ),
        DeviceRecord(mac_address="DD:EE:FF", fields={"tempinf": 68.0}, name=None),
    ]


def test_parse_skips_entries_without_mac():
    records = parse_device_records([{"lastData": {"tempf": 1}}, SAMPLE_BODY[1]])

    assert [r.mac_address for r in records] == ["DD:EE:FF"]


@pytest.mark.parametrize("payload", [{"error": "bad key"}, "nope", [1, 2], [{"macAddress": "AA", "lastData": "x"}]])
def test_parse_rejects_unexpected_shapes(payload):
    with pytest.raises(ValueError):
        parse_device_records(payload)


@pytest.mark.parametrize("status, outcome", [
    (200, FetchOutcome.SUCCESS),
    (429, FetchOutcome.TRANSIENT),
    (502, FetchOutcome.TRANSIENT),
    (503, FetchOutcome.TRANSIENT),
    (401, FetchOutcome.FATAL),
    (500, FetchOutcome.FATAL),
    (0, FetchOutcome.FATAL),
])
def test_outcome_by_status(status, outcome):
    assert DeviceResponse(status=status).outcome is outcome


def test_error_is_always_fatal():
    assert DeviceResponse(status=200, error="Invalid JSON").outcome is FetchOutcome.FATAL


@pytest.mark.asyncio
async def test_mock_client_replays_responses_then_repeats_last():
    client = MockApiClient([DeviceResponse(status=429), DeviceResponse(status=200)])

    statuses = [(await client.get_devices()).status for _ in range(3)]

    assert statuses == [429, 200, 200]
    assert client.calls == 3


@pytest.mark.asyncio
async def test_mock_client_returns_copy_of_records():
    record = DeviceRecord("AA:BB:CC", {"tempf": 1.0})
    client = MockApiClient(DeviceResponse(status=200, records=[record]))

    first = await client.get_devices()
    first.records.append(DeviceRecord("XX", {}))
    second = await client.get_devices()

    assert second.records == [record]


@pytest.mark.asyncio
async def test_mock_client_defaults_to_empty_success():
    response = await MockApiClient().get_devices()

    assert response.status == 200
    assert response.records == []


def test_get_api_client_factory():
    assert isinstance(get_api_client(use_mock=True), MockApiClient)
    client = get_api_client("app", "api")
    assert isinstance(client, AmbientApiClient)
    assert client.app_key == "app"
    assert client.api_key == "api"


def make_server(handler):
    app = web.Application()
    app.router.add_get('/v1/devices', handler)
    return TestServer(app)


@pytest.mark.asyncio
async def test_ambient_client_fetches_devices():
    seen_params = {}

    async def handler(request):
        seen_params.update(request.query)
        return web.json_response(SAMPLE_BODY)

    async with make_server(handler) as server:
        client = AmbientApiClient("app-key", "api-key", url=str(server.make_url('/v1/devices')))
        try:
            response = await client.get_devices()
        finally:
            await client.close()

    assert response.outcome is FetchOutcome.SUCCESS
    assert [r.mac_address for r in response.records] == ["AA:BB:CC", "DD:EE:FF"]
    assert seen_params == {"applicationKey": "app-key", "apiKey": "api-key"}


@pytest.mark.asyncio
async def test_ambient_client_reports_status():
    async def handler(request):
        return web.Response(status=429, text="Too Many Requests")

    async with make_server(handler) as server:
        client = AmbientApiClient("app", "api", url=str(server.make_url('/v1/devices')))
        try:
            response = await client.get_devices()
        finally:
            await client.close()

    assert response.status == 429
    assert response.outcome is FetchOutcome.TRANSIENT
    assert response.records == []


@pytest.mark.asyncio
async def test_ambient_client_invalid_json_is_fatal():
    async def handler(request):
        return web.Response(status=200, text="<html>oops</html>")

    async with make_server(handler) as server:
        client = AmbientApiClient("app", "api", url=str(server.make_url('/v1/devices')))
        try:
            response = await client.get_devices()
        finally:
            await client.close()

    assert response.outcome is FetchOutcome.FATAL
    assert "Invalid JSON" in response.error


@pytest.mark.asyncio
async def test_ambient_client_unexpected_body_is_fatal():
    async def handler(request):
        return web.json_response({"error": "apiKey invalid"})

    async with make_server(handler) as server:
        client = AmbientApiClient("app", "api", url=str(server.make_url('/v1/devices')))
        try:
            response = await client.get_devices()
        finally:
            await client.close()

    assert response.outcome is FetchOutcome.FATAL
    assert "Unexpected response" in response.error


@pytest.mark.asyncio
async def test_ambient_client_connection_error_is_fatal(unused_tcp_port):
    client = AmbientApiClient("app", "api", url=f"http://127.0.0.1:{unused_tcp_port}/v1/devices")
    try:
        response = await client.get_devices()
    finally:
        await client.close()

    assert response.status == 0
    assert response.outcome is FetchOutcome.FATAL
    assert "Request to Ambient API failed" in response.error
