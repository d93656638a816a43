"""Liveness heartbeats to an external monitoring endpoint."""

import asyncio
import time
from collections.abc import Callable
from datetime import datetime, timezone

import httpx
import psutil
import structlog

log = structlog.get_logger()

HEARTBEAT_TIMEOUT = 10.0


class HeartbeatValidationError(Exception):
    """Heartbeat endpoint rejected or could not be reached during validation."""


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def process_uptime() -> float:
    """Seconds since this process started."""
    return max(0.0, time.time() - psutil.Process().create_time())


def build_payload(process_name: str, uptime: float) -> dict:
    return {
        "processName": process_name,
        "timestamp": _iso_now(),
        "uptime": uptime,
    }


async def validate_heartbeat_endpoint(url: str, process_name: str) -> None:
    """Send one heartbeat and require a 2xx answer.

    Raises:
        HeartbeatValidationError: On any network failure or non-2xx status
    """
    try:
        async with httpx.AsyncClient(timeout=HEARTBEAT_TIMEOUT) as client:
            response = await client.post(url, json=build_payload(process_name, 0))
    except httpx.HTTPError as e:
        raise HeartbeatValidationError(f"Heartbeat validation failed: {e}") from e

    if not response.is_success:
        raise HeartbeatValidationError(
            f"Heartbeat validation failed: {response.status_code} {response.reason_phrase}"
        )

    log.info("heartbeat_validated", url=url)


async def send_heartbeat(url: str, process_name: str) -> bool:
    """Send a single heartbeat. Failures are logged, never raised."""
    try:
        async with httpx.AsyncClient(timeout=HEARTBEAT_TIMEOUT) as client:
            response = await client.post(url, json=build_payload(process_name, process_uptime()))
    except httpx.HTTPError as e:
        log.warning("heartbeat_failed", error=str(e))
        return False

    if not response.is_success:
        log.warning("heartbeat_rejected", status=response.status_code)
        return False

    log.debug("heartbeat_sent")
    return True


def start_heartbeat(url: str, process_name: str, interval: int) -> Callable[[], None]:
    """Send a heartbeat now and then every `interval` milliseconds.

    Must be called from a running event loop. Each send is dispatched as its
    own task so a slow endpoint never delays the schedule.

    Returns:
        Cleanup callable that stops future heartbeats

    Raises:
        ValueError: If interval is below 1ms
    """
    if interval < 1:
        raise ValueError(f"Heartbeat interval must be at least 1ms, got {interval}")

    pending: set[asyncio.Task] = set()

    def dispatch() -> None:
        task = asyncio.create_task(send_heartbeat(url, process_name))
        pending.add(task)
        task.add_done_callback(pending.discard)

    async def schedule() -> None:
        while True:
            await asyncio.sleep(interval / 1000)
            dispatch()

    dispatch()
    schedule_task = asyncio.create_task(schedule())
    log.info("heartbeat_started", url=url, interval_ms=interval)

    def cleanup() -> None:
        schedule_task.cancel()
        log.info("heartbeat_stopped")

    return cleanup
