"""
Operational alerts for pipeline failures.

Every alert is logged. When OPS_ALERT_WEBHOOK_URL is set it is also POSTed as
JSON; webhook delivery problems are logged and never raised to the caller.
"""
import logging
from typing import Literal, Optional, Protocol

import httpx

from api.services.crm_types import utcnow
from config.settings import settings

logger = logging.getLogger(__name__)

Severity = Literal["warning", "error"]


class OpsAlertSender(Protocol):
    async def __call__(
        self,
        event: str,
        severity: Severity,
        message: str,
        details: Optional[dict] = None,
    ) -> None: ...


def build_alert_payload(event: str, severity: Severity, message: str, details: Optional[dict] = None) -> dict:
    return {
        "timestamp": utcnow().isoformat(),
        "event": event,
        "severity": severity,
        "message": message,
        "details": details or {},
    }


async def send_ops_alert(
    event: str,
    severity: Severity,
    message: str,
    details: Optional[dict] = None,
    webhook_url: Optional[str] = None,
    timeout: float = 10.0,
) -> None:
    """
    Log an operational alert and forward it to the configured webhook.

    Args:
        event: Machine-readable event name (e.g. "source_processor_failed")
        severity: "warning" or "error"
        message: Human-readable description
        details: Extra context, JSON-serializable
        webhook_url: Overrides settings.ops_alert_webhook_url
        timeout: Webhook request timeout in seconds
    """
    prefix = "[OPS-ERROR]" if severity == "error" else "[OPS-WARN]"
    logger.error(f"{prefix} {event}: {message} {details or {}}")

    url = webhook_url if webhook_url is not None else settings.ops_alert_webhook_url
    if not url:
        return

    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.post(url, json=build_alert_payload(event, severity, message, details))
            response.raise_for_status()
    except httpx.HTTPError as e:
        logger.error(f"Failed to send ops alert webhook: {e}")
