"""
Generic outbound webhook channel.

Posts a JSON event to the organization's own webhook URL, falling back to
a configured default URL.
"""

from typing import Any, Dict, Optional

import structlog

from usage_alerts.config.models import GenericWebhookChannelConfig
from usage_alerts.detection.channels.base import HttpChannel
from usage_alerts.models.alerts import Alert, AlertSummary, ChannelResult
from usage_alerts.storage.base import OrganizationDirectory, StorageError

logger = structlog.get_logger(__name__)

EVENT_HEADER = "X-Usage-Alerts-Event"
ALERT_EVENT = "usage.alert"
SUMMARY_EVENT = "usage.alert_summary"


def alert_body(alert: Alert) -> Dict[str, Any]:
    """Serialize an alert for the webhook event body."""
    return {
        "id": alert.id,
        "type": alert.type.value,
        "severity": alert.severity.value,
        "title": alert.title,
        "description": alert.description,
        "metadata": alert.metadata,
        "timestamp": alert.created_at.isoformat(),
    }


class GenericWebhookChannel(HttpChannel):
    """
    JSON webhook delivery.

    Example:
        >>> channel = GenericWebhookChannel(config, directory)
        >>> await channel.send(alert)
        ChannelResult(channel='generic-webhook', success=True, error=None)
    """

    name = "generic-webhook"

    def __init__(
        self,
        config: GenericWebhookChannelConfig,
        directory: Optional[OrganizationDirectory] = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        super().__init__(timeout_seconds)
        self.config = config
        self.directory = directory

    async def resolve_url(self, organization_id: str) -> Optional[str]:
        """Get the organization's webhook URL, or the configured default."""
        if self.directory is not None:
            try:
                url = await self.directory.get_webhook_url(organization_id)
            except StorageError as e:
                logger.warning(
                    "webhook_url_lookup_failed",
                    organization_id=organization_id,
                    error=str(e),
                )
                url = None
            if url:
                return url
        return self.config.default_url

    async def _deliver(
        self,
        organization_id: str,
        event: str,
        payload: Dict[str, Any],
        **context: Any,
    ) -> ChannelResult:
        if not self.config.enabled:
            return self._disabled(organization_id=organization_id, **context)

        url = await self.resolve_url(organization_id)
        if not url:
            return self._not_configured("webhook_url", organization_id=organization_id, **context)

        return await self._post_json(
            url,
            payload,
            headers={EVENT_HEADER: event},
            organization_id=organization_id,
            **context,
        )

    async def send(self, alert: Alert) -> ChannelResult:
        """Post one alert event."""
        return await self._deliver(
            alert.organization_id,
            ALERT_EVENT,
            {"event": ALERT_EVENT, "alert": alert_body(alert)},
            alert_id=alert.id,
        )

    async def send_summary(self, summary: AlertSummary) -> ChannelResult:
        """Post a batch summary event listing every alert in the batch."""
        payload = {
            "event": SUMMARY_EVENT,
            "organization_id": summary.organization_id,
            "summary": {
                "total": summary.total,
                "counts_by_severity": summary.counts_by_severity,
                "top_titles": summary.top_titles,
                "text": summary.render(),
            },
            "alerts": [alert_body(alert) for alert in summary.alerts],
        }
        return await self._deliver(summary.organization_id, SUMMARY_EVENT, payload)
