"""
Notification router for delivering alerts to channels.

This module provides the NotificationRouter class which maps each alert's
severity to a channel set and a cadence using the NotificationPolicy table,
then either sends the alert at once or queues it for a batched summary.

Key Features:
    - Policy is data, replaceable at runtime
    - Immediate sends hit every channel concurrently with a per-channel timeout
    - One failed or slow channel never blocks the others
    - Batched alerts are summarized once per channel per organization per window
    - Alerts resolved before their batch flushes are left out of the summary

Example:
    >>> router = NotificationRouter(
    ...     manager=manager,
    ...     channels={"email": email, "chat-webhook": chat, "generic-webhook": hook},
    ...     policy=NotificationPolicy(),
    ... )
    >>> await router.route(alerts)
    >>> await router.flush_due()
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Dict, List, Optional

import structlog

from usage_alerts.config.models import NotificationPolicy, SeverityPolicy
from usage_alerts.detection.batching import BatchStore, InMemoryBatchStore
from usage_alerts.detection.channels.base import AlertChannel
from usage_alerts.detection.manager import AlertManager
from usage_alerts.models.alerts import (
    Alert,
    AlertSummary,
    Cadence,
    ChannelResult,
    NotificationState,
)
from usage_alerts.models.usage import Severity

logger = structlog.get_logger(__name__)


class NotificationRouter:
    """
    Routes alerts to notification channels according to severity.

    Attributes:
        manager: AlertManager used to load alerts and record deliveries.
        channels: Dict mapping channel name to channel instance.
        policy: Severity to channels and cadence table.
        batch_store: Pending batches for batched severities.
    """

    def __init__(
        self,
        manager: AlertManager,
        channels: Dict[str, AlertChannel],
        policy: Optional[NotificationPolicy] = None,
        batch_store: Optional[BatchStore] = None,
    ) -> None:
        """
        Initialize the notification router.

        Args:
            manager: AlertManager for alert lookups and delivery records.
            channels: Dict mapping channel name to channel instance.
            policy: Policy table. Defaults to NotificationPolicy().
            batch_store: Pending batch store. Defaults to an in-memory store.
        """
        self.manager = manager
        self.channels = channels
        self.policy = policy or NotificationPolicy()
        self.batch_store = batch_store or InMemoryBatchStore()

        logger.info(
            "notification_router_initialized",
            available_channels=list(channels.keys()),
            policy={s.value: p.channels for s, p in self.policy.severities.items()},
            batch_store=type(self.batch_store).__name__,
        )

    # =========================================================================
    # POLICY
    # =========================================================================

    def get_policy(self) -> NotificationPolicy:
        return self.policy

    def set_policy(self, policy: NotificationPolicy) -> None:
        """Replace the whole policy table."""
        self.policy = policy
        logger.info(
            "notification_policy_replaced",
            policy={s.value: p.channels for s, p in policy.severities.items()},
        )

    def update_severity_policy(self, severity: Severity, policy: SeverityPolicy) -> NotificationPolicy:
        """
        Replace the policy for one severity.

        Alerts already queued keep the window they were queued under.

        Args:
            severity: Severity to update.
            policy: New channels and cadence.

        Returns:
            NotificationPolicy: The updated table.
        """
        self.policy = self.policy.with_severity(severity, policy)
        logger.info(
            "severity_policy_updated",
            severity=severity.value,
            channels=policy.channels,
            cadence=policy.cadence.value,
            window_seconds=policy.window_seconds,
        )
        return self.policy

    # =========================================================================
    # SENDING
    # =========================================================================

    async def _send_with_timeout(
        self,
        channel_name: str,
        call: Awaitable[ChannelResult],
        **context: object,
    ) -> ChannelResult:
        """
        Await one channel send, turning timeouts and errors into results.

        Args:
            channel_name: Channel being sent on.
            call: The pending send coroutine.
            **context: Log context.

        Returns:
            ChannelResult: The channel's result or a failure.
        """
        timeout = self.policy.channel_timeout_seconds
        try:
            result = await asyncio.wait_for(call, timeout=timeout)
        except asyncio.TimeoutError:
            logger.error(
                "channel_dispatch_timeout",
                channel=channel_name,
                timeout_seconds=timeout,
                **context,
            )
            return ChannelResult(channel=channel_name, success=False, error="timeout")
        except Exception as e:
            logger.error(
                "channel_dispatch_failed",
                channel=channel_name,
                error=str(e),
                **context,
            )
            return ChannelResult(channel=channel_name, success=False, error=str(e))

        if not result.success:
            logger.warning(
                "channel_dispatch_unsuccessful",
                channel=channel_name,
                error=result.error,
                **context,
            )
        return result

    def _unknown_channel(self, channel_name: str, **context: object) -> ChannelResult:
        logger.warning("channel_not_found", channel=channel_name, **context)
        return ChannelResult(channel=channel_name, success=False, error="unknown_channel")

    async def send_immediate(
        self,
        alert: Alert,
        channels: Optional[List[str]] = None,
    ) -> Alert:
        """
        Send one alert on every channel at once.

        Successful channel names are appended to the alert's
        notifications_sent. Failed channels are logged and skipped.

        Args:
            alert: The alert to send.
            channels: Channels to use. Defaults to the alert's severity policy.

        Returns:
            Alert: The alert with its updated notifications_sent.
        """
        if channels is None:
            channels = self.policy.for_severity(alert.severity).channels

        async def _one(channel_name: str) -> ChannelResult:
            channel = self.channels.get(channel_name)
            if channel is None:
                return self._unknown_channel(channel_name, alert_id=alert.id)
            return await self._send_with_timeout(
                channel_name,
                channel.send(alert),
                alert_id=alert.id,
                organization_id=alert.organization_id,
            )

        results = await asyncio.gather(*(_one(name) for name in channels))
        delivered = [r.channel for r in results if r.success]

        updated = await self.manager.record_notifications(alert.id, delivered)

        logger.info(
            "alert_dispatch_complete",
            alert_id=alert.id,
            organization_id=alert.organization_id,
            delivered=delivered,
            failed=[r.channel for r in results if not r.success],
        )
        return updated or alert

    async def route(
        self,
        alerts: List[Alert],
        now: Optional[datetime] = None,
    ) -> List[Alert]:
        """
        Send or queue new alerts according to the policy.

        Args:
            alerts: Newly created alerts.
            now: Current time, used to open batch windows.

        Returns:
            List[Alert]: The alerts in input order, with delivery recorded
                for those sent immediately.
        """
        now = now or datetime.now(timezone.utc)
        routed: List[Optional[Alert]] = list(alerts)
        immediate: Dict[int, Alert] = {}

        for index, alert in enumerate(alerts):
            policy = self.policy.for_severity(alert.severity)

            if policy.is_silent:
                logger.debug("alert_not_notified", alert_id=alert.id, severity=alert.severity.value)
            elif policy.cadence == Cadence.IMMEDIATE:
                immediate[index] = alert
            else:
                try:
                    await self.batch_store.enqueue(
                        policy.window_seconds,
                        alert.organization_id,
                        alert.id,
                        now,
                    )
                except Exception as e:
                    # A created alert is always either queued or sent
                    logger.warning(
                        "batch_enqueue_failed_sending_now",
                        alert_id=alert.id,
                        organization_id=alert.organization_id,
                        error=str(e),
                    )
                    immediate[index] = alert
                    continue
                logger.debug(
                    "alert_queued_for_batch",
                    alert_id=alert.id,
                    organization_id=alert.organization_id,
                    window_seconds=policy.window_seconds,
                )

        if immediate:
            sent = await asyncio.gather(*(self._send_or_log(a) for a in immediate.values()))
            for index, alert in zip(immediate.keys(), sent):
                routed[index] = alert

        return [alert for alert in routed if alert is not None]

    async def _send_or_log(self, alert: Alert) -> Alert:
        try:
            return await self.send_immediate(alert)
        except Exception as e:
            logger.error(
                "alert_routing_failed",
                alert_id=alert.id,
                organization_id=alert.organization_id,
                severity=alert.severity.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            return alert

    # =========================================================================
    # BATCHING
    # =========================================================================

    async def flush(self, window_seconds: int) -> List[AlertSummary]:
        """
        Flush one batching window now.

        For each organization queued in the window, one summary is composed
        and sent once per channel. On success the channel is recorded on
        every alert in the summary.

        Args:
            window_seconds: Window to flush.

        Returns:
            List[AlertSummary]: Summaries that were composed.
        """
        drained = await self.batch_store.drain(window_seconds)
        summaries: List[AlertSummary] = []

        for organization_id, alert_ids in drained.items():
            try:
                summary = await self._flush_organization(
                    organization_id, alert_ids, window_seconds
                )
            except Exception as e:
                logger.error(
                    "batch_summary_failed",
                    organization_id=organization_id,
                    window_seconds=window_seconds,
                    alert_ids=alert_ids,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue
            if summary is not None:
                summaries.append(summary)

        logger.info(
            "batch_window_flushed",
            window_seconds=window_seconds,
            organizations=len(drained),
            summaries=len(summaries),
        )
        return summaries

    async def _flush_organization(
        self,
        organization_id: str,
        alert_ids: List[str],
        window_seconds: int,
    ) -> Optional[AlertSummary]:
        alerts: List[Alert] = []
        for alert_id in dict.fromkeys(alert_ids):
            alert = await self.manager.get_alert(alert_id)
            if alert is None or alert.resolved:
                continue
            alerts.append(alert)

        if not alerts:
            logger.debug(
                "batch_empty_after_resolution",
                organization_id=organization_id,
                window_seconds=window_seconds,
            )
            return None

        summary = AlertSummary(
            organization_id=organization_id,
            alerts=alerts,
            window_seconds=window_seconds,
            top_n=self.policy.summary_top_n,
        )
        channels = self.policy.channels_for([a.severity for a in alerts])
        await self._send_summary(summary, channels)
        return summary

    async def _send_summary(self, summary: AlertSummary, channels: List[str]) -> None:
        async def _one(channel_name: str) -> ChannelResult:
            channel = self.channels.get(channel_name)
            if channel is None:
                return self._unknown_channel(
                    channel_name, organization_id=summary.organization_id
                )
            return await self._send_with_timeout(
                channel_name,
                channel.send_summary(summary),
                organization_id=summary.organization_id,
            )

        results = await asyncio.gather(*(_one(name) for name in channels))
        delivered = [r.channel for r in results if r.success]

        if delivered:
            for alert in summary.alerts:
                await self.manager.record_notifications(alert.id, delivered)

        logger.info(
            "batch_summary_dispatched",
            organization_id=summary.organization_id,
            alerts=summary.total,
            delivered=delivered,
            failed=[r.channel for r in results if not r.success],
        )

    async def flush_due(self, now: Optional[datetime] = None) -> List[AlertSummary]:
        """
        Flush every window whose interval has elapsed since it opened.

        Args:
            now: Current time (defaults to now).

        Returns:
            List[AlertSummary]: Summaries composed across all flushed windows.
        """
        now = now or datetime.now(timezone.utc)
        summaries: List[AlertSummary] = []

        for window_seconds in await self.batch_store.windows():
            opened_at = await self.batch_store.opened_at(window_seconds)
            if opened_at is None:
                continue
            if now - opened_at >= timedelta(seconds=window_seconds):
                summaries.extend(await self.flush(window_seconds))

        return summaries

    # =========================================================================
    # STATE
    # =========================================================================

    async def notification_state(self, alert: Alert) -> NotificationState:
        """
        Derive the notification state of an alert.

        Args:
            alert: The alert.

        Returns:
            NotificationState: resolved, pending, open, sent_partial or sent_full.
        """
        if alert.resolved:
            return NotificationState.RESOLVED
        if await self.batch_store.is_pending(alert.id):
            return NotificationState.PENDING
        if not alert.notifications_sent:
            return NotificationState.OPEN

        expected = set(self.policy.for_severity(alert.severity).channels)
        if expected.issubset(alert.notifications_sent):
            return NotificationState.SENT_FULL
        return NotificationState.SENT_PARTIAL

    async def close(self) -> None:
        """Close channel sessions."""
        for channel in self.channels.values():
            close = getattr(channel, "close", None)
            if close is not None:
                await close()


async def create_router(
    manager: AlertManager,
    channels: Dict[str, AlertChannel],
    policy: Optional[NotificationPolicy] = None,
    batch_store: Optional[BatchStore] = None,
) -> NotificationRouter:
    """
    Factory function to create a NotificationRouter.

    Args:
        manager: AlertManager for lookups and delivery records.
        channels: Channel adapters keyed by name.
        policy: Policy table.
        batch_store: Pending batch store.

    Returns:
        NotificationRouter: Configured router instance.
    """
    return NotificationRouter(
        manager=manager,
        channels=channels,
        policy=policy,
        batch_store=batch_store,
    )
