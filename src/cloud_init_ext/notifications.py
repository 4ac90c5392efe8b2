"""Failure notifications for provisioning jobs."""

from typing import Protocol

import httpx
import structlog

from cloud_init_ext.errors import NotificationDeliveryError

logger = structlog.get_logger(__name__)

# Discord embed colour for failures (red)
EMBED_COLOR_ERROR = 0xE74C3C


class NotificationSink(Protocol):
    """Delivers a failure report to operators."""

    async def report(self, hostname: str, error: Exception) -> None: ...


def build_failure_payload(hostname: str, error: Exception) -> dict:
    """Build a Discord webhook body for a failed job."""
    return {
        "embeds": [
            {
                "title": "Provision failed",
                "description": f"Failed to provision client '{hostname}'",
                "color": EMBED_COLOR_ERROR,
                "fields": [{"name": "Error", "value": str(error) or type(error).__name__}],
            }
        ]
    }


class DiscordWebhookSink:
    """Posts failure reports to a Discord webhook."""

    def __init__(
        self,
        webhook_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.webhook_url = webhook_url
        self.timeout = timeout
        self._transport = transport

        if not self.webhook_url:
            logger.warning("discord_webhook_missing", action="skip_notifications")

    async def report(self, hostname: str, error: Exception) -> None:
        """Send the failure report.

        Raises:
            NotificationDeliveryError: Webhook unreachable or returned an error status
        """
        if not self.webhook_url:
            logger.warning("discord_webhook_missing", action="skip_notification", hostname=hostname)
            return

        payload = build_failure_payload(hostname, error)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(self.webhook_url, json=payload)
                resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise NotificationDeliveryError(
                f"Discord webhook returned {e.response.status_code}: {e.response.text[:200]}"
            ) from e
        except httpx.HTTPError as e:
            raise NotificationDeliveryError(f"Discord webhook unreachable: {e}") from e

        logger.info("notification_sent", hostname=hostname)
