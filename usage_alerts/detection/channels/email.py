"""
Email channel.

Sends through a Resend-compatible HTTP email API: a JSON POST with a
bearer token. Without an API key or recipients the channel is a logged
no-op.
"""

from html import escape
from typing import Any, Dict, Optional

from usage_alerts.config.models import EmailChannelConfig
from usage_alerts.detection.channels.base import HttpChannel
from usage_alerts.models.alerts import Alert, AlertSummary, ChannelResult


class EmailChannel(HttpChannel):
    """
    Email delivery over an HTTP email API.

    Example:
        >>> channel = EmailChannel(EmailChannelConfig(api_key="re_...", recipients=["ops@acme.io"]))
        >>> result = await channel.send(alert)
        >>> result.success
        True
    """

    name = "email"

    def __init__(
        self,
        config: EmailChannelConfig,
        app_url: str = "http://localhost:3000",
        timeout_seconds: float = 10.0,
    ) -> None:
        super().__init__(timeout_seconds)
        self.config = config
        self.dashboard_url = f"{app_url.rstrip('/')}/admin/monitoring"

    def _check_config(self, **context: Any) -> Optional[ChannelResult]:
        if not self.config.enabled:
            return self._disabled(**context)
        if not self.config.api_key:
            return self._not_configured("api_key", **context)
        if not self.config.recipients:
            return self._not_configured("recipients", **context)
        return None

    def _render_alert(self, alert: Alert) -> str:
        organization = alert.metadata.get("organization_name") or alert.organization_id
        parts = [
            f"<h2>{escape(alert.severity.value.upper())} Alert: {escape(alert.title)}</h2>",
            f"<p><strong>Organization:</strong> {escape(str(organization))}</p>",
            f"<p><strong>Time:</strong> {alert.created_at.isoformat()}</p>",
            f"<p><strong>Description:</strong> {escape(alert.description)}</p>",
        ]
        if "current_value" in alert.metadata:
            parts.append(
                "<h3>Details:</h3><ul>"
                f"<li>Current Value: {alert.metadata['current_value']}</li>"
                f"<li>Expected Value: {alert.metadata.get('expected_value')}</li>"
                f"<li>Deviation: {alert.metadata.get('deviation_pct')}%</li>"
                "</ul>"
            )
        parts.append(f'<p><a href="{self.dashboard_url}">View in Dashboard</a></p>')
        return "\n".join(parts)

    async def _deliver(self, subject: str, html: str, text: str, **context: Any) -> ChannelResult:
        payload: Dict[str, Any] = {
            "from": self.config.from_address,
            "to": list(self.config.recipients),
            "subject": subject,
            "html": html,
            "text": text,
        }
        return await self._post_json(
            self.config.api_url,
            payload,
            headers={"Authorization": f"Bearer {self.config.api_key}"},
            **context,
        )

    async def send(self, alert: Alert) -> ChannelResult:
        """Email one alert to the configured recipients."""
        unusable = self._check_config(alert_id=alert.id)
        if unusable is not None:
            return unusable

        return await self._deliver(
            subject=f"[{alert.severity.value.upper()}] {alert.title}",
            html=self._render_alert(alert),
            text=alert.description,
            alert_id=alert.id,
            organization_id=alert.organization_id,
        )

    async def send_summary(self, summary: AlertSummary) -> ChannelResult:
        """Email a batch summary to the configured recipients."""
        unusable = self._check_config(organization_id=summary.organization_id)
        if unusable is not None:
            return unusable

        text = summary.render()
        html = f"<pre>{escape(text)}</pre>\n" + (
            f'<p><a href="{self.dashboard_url}">View in Dashboard</a></p>'
        )
        return await self._deliver(
            subject=f"[Usage Alerts] {summary.total} new alert{'s' if summary.total != 1 else ''}",
            html=html,
            text=text,
            organization_id=summary.organization_id,
        )
