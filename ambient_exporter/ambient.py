# ABOUTME: Ambient Weather REST API client abstraction
# ABOUTME: Provides Protocol interface, aiohttp implementation, and MockApiClient for testing
import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Sequence, Union

import aiohttp

logger = logging.getLogger(__name__)

API_URL = "https://rt.ambientweather.net/v1/devices"
REQUEST_TIMEOUT_SECONDS = 30
TRANSIENT_STATUS_CODES = frozenset({429, 502, 503})


class FetchOutcome(Enum):
    SUCCESS = "success"
    TRANSIENT = "transient"
    FATAL = "fatal"


@dataclass(frozen=True)
class DeviceRecord:
    """Latest data reported by one weather station."""
    mac_address: str
    fields: Dict[str, Any]
    name: Optional[str] = None


@dataclass
class DeviceResponse:
    """Result of one /devices request."""
    status: int
    records: List[DeviceRecord] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def outcome(self) -> FetchOutcome:
        if self.error is not None:
            return FetchOutcome.FATAL
        if self.status == 200:
            return FetchOutcome.SUCCESS
        if self.status in TRANSIENT_STATUS_CODES:
            return FetchOutcome.TRANSIENT
        return FetchOutcome.FATAL


def parse_device_records(payload: Any) -> List[DeviceRecord]:
    """
    Convert a /devices JSON body into device records.

    Entries without a macAddress are skipped with a warning.

    Raises:
        ValueError: If the body is not a list of device objects
    """
    if not isinstance(payload, list):
        raise ValueError(f"Expected a list of devices, got {type(payload).__name__}")

    records = []
    for entry in payload:
        if not isinstance(entry, dict):
            raise ValueError(f"Expected a device object, got {type(entry).__name__}")

        mac_address = entry.get('macAddress')
        if not mac_address or not isinstance(mac_address, str):
            logger.warning(f"Skipping device entry without macAddress: {sorted(entry.keys())}")
            continue

        last_data = entry.get('lastData') or {}
        if not isinstance(last_data, dict):
            raise ValueError(f"Device {mac_address}: 'lastData' must be an object")

        info = entry.get('info') or {}
        name = info.get('name') if isinstance(info, dict) else None

        records.append(DeviceRecord(mac_address=mac_address, fields=dict(last_data), name=name))

    return records


class AbstractApiClient(Protocol):
    """Protocol for clients returning the latest record of every station on the account."""

    async def get_devices(self) -> DeviceResponse:
        ...

    async def close(self) -> None:
        ...


class AmbientApiClient:
    """
    Ambient Weather REST API client using aiohttp.

    The session is created lazily so the client can be constructed outside
    a running event loop.
    """

    def __init__(
        self,
        app_key: str,
        api_key: str,
        url: str = API_URL,
        timeout_seconds: float = REQUEST_TIMEOUT_SECONDS,
        session: Optional[aiohttp.ClientSession] = None
    ):
        self.app_key = app_key
        self.api_key = api_key
        self.url = url
        self.timeout_seconds = timeout_seconds
        self._session = session

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
            )
        return self._session

    async def get_devices(self) -> DeviceResponse:
        """
        Fetch the latest data for all devices on the account.

        Transport failures and malformed bodies are reported through the
        response's error field rather than raised.
        """
        params = {'applicationKey': self.app_key, 'apiKey': self.api_key}
        session = self._get_session()

        try:
            async with session.get(self.url, params=params) as resp:
                if resp.status != 200:
                    return DeviceResponse(status=resp.status)
                payload = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            return DeviceResponse(status=0, error=f"Request to Ambient API failed: {e!r}")
        except ValueError as e:
            return DeviceResponse(status=200, error=f"Invalid JSON from Ambient API: {e}")

        try:
            records = parse_device_records(payload)
        except ValueError as e:
            return DeviceResponse(status=200, error=f"Unexpected response from Ambient API: {e}")

        return DeviceResponse(status=200, records=records)

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()


class MockApiClient:
    """
    Mock API client for testing without network access.

    Returns the configured responses in order; the last one repeats once
    the sequence is exhausted.
    """

    def __init__(self, responses: Optional[Union[DeviceResponse, Sequence[DeviceResponse]]] = None):
        if isinstance(responses, DeviceResponse):
            responses = [responses]
        elif not responses:
            responses = [DeviceResponse(status=200)]
        self.responses = list(responses)
        self.calls = 0

    async def get_devices(self) -> DeviceResponse:
        await asyncio.sleep(0)
        index = min(self.calls, len(self.responses) - 1)
        self.calls += 1
        response = self.responses[index]
        return DeviceResponse(
            status=response.status,
            records=list(response.records),
            error=response.error
        )

    async def close(self) -> None:
        pass


def get_api_client(
    app_key: str = "",
    api_key: str = "",
    use_mock: bool = False,
    responses: Optional[Sequence[DeviceResponse]] = None
) -> AbstractApiClient:
    """
    Factory function to get appropriate API client implementation.

    Args:
        app_key: Ambient application key
        api_key: Ambient API key
        use_mock: If True, return MockApiClient; otherwise return AmbientApiClient
        responses: Canned responses for MockApiClient (only used when use_mock=True)
    """
    if use_mock:
        return MockApiClient(responses)
    return AmbientApiClient(app_key, api_key)
