"""
Chat webhook channel.

Posts a Slack-compatible incoming-webhook message with one colored
attachment per alert.
"""

from typing import Any, Dict, List

from usage_alerts.config.models import ChatWebhookChannelConfig
from usage_alerts.detection.channels.base import HttpChannel
from usage_alerts.models.alerts import Alert, AlertSummary, ChannelResult
from usage_alerts.models.usage import Severity

SEVERITY_COLORS: Dict[Severity, str] = {
    Severity.CRITICAL: "#dc2626",
    Severity.HIGH: "#ea580c",
    Severity.MEDIUM: "#eab308",
    Severity.LOW: "#3b82f6",
}


class ChatWebhookChannel(HttpChannel):
    """Slack-compatible incoming webhook delivery."""

    name = "chat-webhook"

    def __init__(
        self,
        config: ChatWebhookChannelConfig,
        app_url: str = "http://localhost:3000",
        timeout_seconds: float = 10.0,
    ) -> None:
        super().__init__(timeout_seconds)
        self.config = config
        self.dashboard_url = f"{app_url.rstrip('/')}/admin/monitoring"

    def _base_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        if self.config.username:
            payload["username"] = self.config.username
        if self.config.icon_emoji:
            payload["icon_emoji"] = self.config.icon_emoji
        return payload

    def build_alert_payload(self, alert: Alert) -> Dict[str, Any]:
        """
        Build the webhook body for one alert.

        Args:
            alert: The alert to render.

        Returns:
            Dict[str, Any]: Message with a single attachment.
        """
        organization = alert.metadata.get("organization_name") or alert.organization_id
        fields: List[Dict[str, Any]] = [
            {"title": "Organization", "value": str(organization), "short": True},
            {"title": "Time", "value": alert.created_at.isoformat(), "short": True},
        ]
        if "current_value" in alert.metadata:
            fields.append(
                {
                    "title": "Current/Expected",
                    "value": (
                        f"{alert.metadata['current_value']} / "
                        f"{alert.metadata.get('expected_value')}"
                    ),
                    "short": True,
                }
            )
            fields.append(
                {
                    "title": "Deviation",
                    "value": f"{alert.metadata.get('deviation_pct')}%",
                    "short": True,
                }
            )

        payload = self._base_payload()
        payload["attachments"] = [
            {
                "color": SEVERITY_COLORS[alert.severity],
                "title": f"{alert.severity.value.upper()}: {alert.title}",
                "text": alert.description,
                "fields": fields,
                "actions": [
                    {"type": "button", "text": "View Dashboard", "url": self.dashboard_url}
                ],
            }
        ]
        return payload

    def build_summary_payload(self, summary: AlertSummary) -> Dict[str, Any]:
        """Build the webhook body for a batch summary, colored by its worst alert."""
        worst = max((a.severity for a in summary.alerts), key=lambda s: s.rank)
        payload = self._base_payload()
        payload["attachments"] = [
            {
                "color": SEVERITY_COLORS[worst],
                "title": f"Usage alerts for {summary.organization_id}",
                "text": summary.render(),
                "actions": [
                    {"type": "button", "text": "View Dashboard", "url": self.dashboard_url}
                ],
            }
        ]
        return payload

    async def send(self, alert: Alert) -> ChannelResult:
        """Post one alert to the chat webhook."""
        if not self.config.enabled:
            return self._disabled(alert_id=alert.id)
        if not self.config.webhook_url:
            return self._not_configured("webhook_url", alert_id=alert.id)

        return await self._post_json(
            self.config.webhook_url,
            self.build_alert_payload(alert),
            alert_id=alert.id,
            organization_id=alert.organization_id,
        )

    async def send_summary(self, summary: AlertSummary) -> ChannelResult:
        """Post a batch summary to the chat webhook."""
        if not self.config.enabled:
            return self._disabled(organization_id=summary.organization_id)
        if not self.config.webhook_url:
            return self._not_configured("webhook_url", organization_id=summary.organization_id)

        return await self._post_json(
            self.config.webhook_url,
            self.build_summary_payload(summary),
            organization_id=summary.organization_id,
        )
