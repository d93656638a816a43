"""Fire-and-forget delivery of agent messages to the webhook endpoint."""

from typing import Any

import httpx
import structlog

from premortem.collector import SystemMetrics
from premortem.monitor import ThresholdBreach

log = structlog.get_logger()

WEBHOOK_TIMEOUT = 30.0


async def send_webhook(url: str, message: Any) -> bool:
    """POST a JSON message to the webhook.

    Never raises: network errors and non-2xx responses are logged.

    Returns:
        True if the endpoint answered with a 2xx status
    """
    try:
        async with httpx.AsyncClient(timeout=WEBHOOK_TIMEOUT) as client:
            response = await client.post(url, json=message)
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        log.error("webhook_post_error", error=str(e))
        return False
    except (TypeError, ValueError) as e:
        # Payload could not be serialized
        log.error("webhook_payload_invalid", error=str(e))
        return False

    if not response.is_success:
        log.warning(
            "webhook_post_failed",
            status=response.status_code,
            reason=response.reason_phrase,
        )
        return False

    log.info("webhook_sent", status=response.status_code)
    return True


def build_vitals_message(
    breach: ThresholdBreach, metrics: SystemMetrics, session_id: str
) -> dict:
    """Build the synthetic system message sent before the first agent message."""
    content = (
        "System Vitals at Breach Detection:\n\n"
        f"Breach Type: {breach.type.value}\n"
        f"Current Value: {breach.current_value}%\n"
        f"Threshold: {breach.threshold_value}%\n\n"
        "System Metrics:\n"
        f"- Memory: {metrics.memory_percent}%\n"
        f"- Disk: {metrics.disk_percent}%\n"
        f"- CPU: {metrics.cpu_percent}%\n"
        f"- Processes: {metrics.process_count}"
    )
    return {
        "type": "system",
        "session_id": session_id,
        "message": {"role": "system", "content": content},
    }
