"""
Shared pieces for notification channel adapters.

Every adapter sends a single alert or a batch summary and reports the
outcome as a ChannelResult. Adapters never raise for delivery problems:
a missing setting, an HTTP error or a timeout all come back as a failed
result.
"""

import asyncio
from typing import Any, Dict, Optional, Protocol, runtime_checkable

import aiohttp
import structlog

from usage_alerts.models.alerts import Alert, AlertSummary, ChannelResult

logger = structlog.get_logger(__name__)

NOT_CONFIGURED = "not_configured"
DISABLED = "disabled"

USER_AGENT = "usage-alerts/1.0"


@runtime_checkable
class AlertChannel(Protocol):
    """
    Protocol for alert notification channels.

    Any channel implementation must support these async methods.
    """

    name: str

    async def send(self, alert: Alert) -> ChannelResult:
        """Deliver one alert."""
        ...

    async def send_summary(self, summary: AlertSummary) -> ChannelResult:
        """Deliver a batched summary for one organization."""
        ...


class HttpChannel:
    """
    Base class for channels that deliver over HTTP POST.

    Attributes:
        name: Channel name used in policies and notifications_sent.
        timeout_seconds: Request timeout.
    """

    name = "http"

    def __init__(self, timeout_seconds: float = 10.0) -> None:
        self.timeout_seconds = timeout_seconds
        self._session: Optional[aiohttp.ClientSession] = None

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Ensure aiohttp session is created."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
            self._session = aiohttp.ClientSession(
                timeout=timeout,
                headers={"User-Agent": USER_AGENT},
            )
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            logger.debug("channel_session_closed", channel=self.name)

    def _not_configured(self, setting: str, **context: Any) -> ChannelResult:
        logger.info(
            "channel_not_configured",
            channel=self.name,
            missing=setting,
            **context,
        )
        return ChannelResult(channel=self.name, success=False, error=NOT_CONFIGURED)

    def _disabled(self, **context: Any) -> ChannelResult:
        logger.debug("channel_disabled", channel=self.name, **context)
        return ChannelResult(channel=self.name, success=False, error=DISABLED)

    async def _post_json(
        self,
        url: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
        **context: Any,
    ) -> ChannelResult:
        """
        POST a JSON payload and turn the outcome into a ChannelResult.

        Args:
            url: Target URL.
            payload: JSON body.
            headers: Extra request headers.
            **context: Log context (alert_id, organization_id, ...).

        Returns:
            ChannelResult: Success for any 2xx status.
        """
        session = await self._ensure_session()

        try:
            async with session.post(url, json=payload, headers=headers) as response:
                if response.status >= 300:
                    error_text = await response.text()
                    logger.error(
                        "channel_request_failed",
                        channel=self.name,
                        status=response.status,
                        error=error_text[:500],
                        **context,
                    )
                    return ChannelResult(
                        channel=self.name,
                        success=False,
                        error=f"HTTP {response.status}",
                    )

        except aiohttp.ClientError as e:
            logger.error("channel_client_error", channel=self.name, error=str(e), **context)
            return ChannelResult(channel=self.name, success=False, error=str(e))
        except asyncio.TimeoutError:
            logger.error(
                "channel_timeout",
                channel=self.name,
                timeout=self.timeout_seconds,
                **context,
            )
            return ChannelResult(channel=self.name, success=False, error="timeout")

        logger.debug("channel_delivered", channel=self.name, **context)
        return ChannelResult(channel=self.name, success=True)
