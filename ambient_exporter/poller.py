# ABOUTME: Periodic poll loop fetching Ambient API data and updating gauges
# ABOUTME: Retries transient API failures once and routes each field to custom, default, and freshness gauges
import asyncio
import time

from ambient_exporter.ambient import AbstractApiClient, DeviceRecord, DeviceResponse, FetchOutcome
from ambient_exporter.exporter import StatusTracker
from ambient_exporter.fields import NON_METRIC_FIELDS
from ambient_exporter.metrics import ExporterMetrics

RETRY_BACKOFF_SECONDS = 1.0


async def fetch_with_retry(
    client: AbstractApiClient,
    logger,
    backoff_seconds: float = RETRY_BACKOFF_SECONDS,
    sleep=asyncio.sleep
) -> DeviceResponse:
    """
    Fetch device data, retrying exactly once on a transient status.

    Args:
        client: API client
        logger: Logger instance
        backoff_seconds: Wait before the retry
        sleep: Awaitable sleep function (injectable for tests)

    Returns:
        The final response. Its outcome is SUCCESS, or the cycle should be
        abandoned (a transient status on the retry counts as fatal).
    """
    response = await client.get_devices()

    if response.outcome is FetchOutcome.TRANSIENT:
        logger.warning(
            f"HTTP error from Ambient API (status {response.status}). "
            f"Retrying in {backoff_seconds}s."
        )
        await sleep(backoff_seconds)
        response = await client.get_devices()

    if response.outcome is FetchOutcome.SUCCESS:
        logger.info("Successfully fetched data from Ambient API")

    return response


def apply_device_record(record: DeviceRecord, metrics: ExporterMetrics, logger) -> int:
    """
    Route every field of one device record to its gauges.

    Custom gauges are used when the device has mapping rules, default gauges
    when enabled; freshness gauges are always updated.

    Returns:
        Number of custom and default gauge values written
    """
    mac_address = record.mac_address
    has_custom = metrics.gauges.has_device(mac_address)
    if not has_custom and len(metrics.gauges) > 0:
        logger.warning(f"No config for mac address {mac_address}")

    updated = 0
    for field_name, raw_value in record.fields.items():
        if field_name in NON_METRIC_FIELDS:
            continue
        if has_custom and metrics.gauges.record(mac_address, field_name, raw_value):
            updated += 1
        if metrics.defaults is not None and metrics.defaults.apply(field_name, mac_address, raw_value):
            updated += 1

    metrics.freshness.record(mac_address, record.fields)
    return updated


async def poll_once(
    client: AbstractApiClient,
    metrics: ExporterMetrics,
    status_tracker: StatusTracker,
    logger,
    backoff_seconds: float = RETRY_BACKOFF_SECONDS
) -> bool:
    """
    Run a single fetch-and-apply cycle.

    Returns:
        True if the cycle applied fresh data, False if it was abandoned
    """
    response = await fetch_with_retry(client, logger, backoff_seconds)
    timestamp = int(time.time())

    if response.outcome is not FetchOutcome.SUCCESS:
        logger.error(
            f"Unrecoverable error from Ambient API (status {response.status}): "
            f"{response.error or 'unexpected status'}. Skipping this cycle."
        )
        status_tracker.record_failure(timestamp, response.status)
        return False

    for record in response.records:
        updated = apply_device_record(record, metrics, logger)
        logger.info(f"Recorded device metrics for {record.mac_address}: {updated} gauges updated")

    status_tracker.update(timestamp, len(response.records), response.status)
    logger.info(f"Poll complete: {len(response.records)} devices updated")
    return True


async def poll_loop(
    client: AbstractApiClient,
    metrics: ExporterMetrics,
    status_tracker: StatusTracker,
    logger,
    interval_seconds: float,
    backoff_seconds: float = RETRY_BACKOFF_SECONDS,
    clock=time.monotonic
):
    """
    Background task polling the API at a fixed rate until cancelled.

    Cycles start every interval_seconds measured from the previous start.
    A cycle that overruns the interval is followed immediately by the next.

    Args:
        client: API client
        metrics: Exporter gauges to update
        status_tracker: StatusTracker for updating poll metadata
        logger: Logger instance
        interval_seconds: Time between cycle starts
        backoff_seconds: Wait before retrying a transient API failure
        clock: Monotonic clock (injectable for tests)
    """
    next_start = clock()
    while True:
        next_start += interval_seconds
        try:
            await poll_once(client, metrics, status_tracker, logger, backoff_seconds)
        except Exception as e:
            logger.error(f"Error in poll loop: {e}", exc_info=True)

        delay = next_start - clock()
        if delay > 0:
            await asyncio.sleep(delay)
        else:
            logger.warning(
                f"Poll cycle overran the {interval_seconds}s interval by {-delay:.1f}s. "
                f"Starting next cycle immediately."
            )
            next_start = clock()
