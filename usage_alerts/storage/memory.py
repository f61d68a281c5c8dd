"""
In-memory storage implementations.

These back local runs and tests. They satisfy the same protocols as the
PostgreSQL client, including the open-alert uniqueness constraint.

Example:
    >>> store = InMemoryUsageStore()
    >>> store.add_session("org-1", Mode.FAST, duration_seconds=600)
    >>> store.set_quota("org-1", Mode.FAST, used=120, limit=500)
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

import structlog

from usage_alerts.models.alerts import Alert
from usage_alerts.models.usage import Mode, ModeQuota, RecentSession, UsageAggregate
from usage_alerts.storage.base import DuplicateAlertError

logger = structlog.get_logger(__name__)


class InMemoryUsageStore:
    """Usage history held in process memory."""

    def __init__(self) -> None:
        self._aggregates: Dict[str, List[UsageAggregate]] = {}
        self._quotas: Dict[str, Dict[Mode, ModeQuota]] = {}
        self._sessions: Dict[str, List[RecentSession]] = {}
        self._concurrent: Dict[str, int] = {}

    def add_usage(
        self,
        organization_id: str,
        mode: Mode,
        minutes: float,
        period_start: datetime,
    ) -> None:
        """Record an aggregate of minutes for a period."""
        self._aggregates.setdefault(organization_id, []).append(
            UsageAggregate(period_start=period_start, mode=mode, minutes=minutes)
        )

    def set_quota(self, organization_id: str, mode: Mode, used: float, limit: float) -> None:
        """Set month-to-date usage and limit for a mode."""
        self._quotas.setdefault(organization_id, {})[mode] = ModeQuota(used=used, limit=limit)

    def add_session(
        self,
        organization_id: str,
        mode: Mode,
        duration_seconds: float,
        timestamp: Optional[datetime] = None,
    ) -> None:
        """Record a completed session."""
        self._sessions.setdefault(organization_id, []).append(
            RecentSession(
                mode=mode,
                duration_seconds=duration_seconds,
                timestamp=timestamp or datetime.now(timezone.utc),
            )
        )

    def set_concurrent_sessions(self, organization_id: str, count: int) -> None:
        self._concurrent[organization_id] = count

    async def get_historical_usage(
        self,
        organization_id: str,
        since: datetime,
    ) -> List[UsageAggregate]:
        aggregates = self._aggregates.get(organization_id, [])
        return sorted(
            (a for a in aggregates if a.period_start >= since),
            key=lambda a: a.period_start,
        )

    async def get_current_month_usage(self, organization_id: str) -> Dict[Mode, ModeQuota]:
        return dict(self._quotas.get(organization_id, {}))

    async def get_recent_activity(
        self,
        organization_id: str,
        window: timedelta,
        as_of: Optional[datetime] = None,
    ) -> List[RecentSession]:
        end = as_of or datetime.now(timezone.utc)
        start = end - window
        sessions = [
            s for s in self._sessions.get(organization_id, [])
            if start <= s.timestamp <= end
        ]
        return sorted(sessions, key=lambda s: s.timestamp, reverse=True)

    async def get_concurrent_sessions(self, organization_id: str) -> int:
        return self._concurrent.get(organization_id, 0)


class InMemoryOrganizationDirectory:
    """Organization metadata held in process memory."""

    def __init__(self) -> None:
        self._organizations: Dict[str, Dict[str, Optional[str]]] = {}

    def add_organization(
        self,
        organization_id: str,
        name: Optional[str] = None,
        tier: Optional[str] = None,
        webhook_url: Optional[str] = None,
    ) -> None:
        self._organizations[organization_id] = {
            "name": name,
            "tier": tier,
            "webhook_url": webhook_url,
        }

    async def get_tier(self, organization_id: str) -> Optional[str]:
        return self._organizations.get(organization_id, {}).get("tier")

    async def get_name(self, organization_id: str) -> Optional[str]:
        return self._organizations.get(organization_id, {}).get("name")

    async def get_webhook_url(self, organization_id: str) -> Optional[str]:
        return self._organizations.get(organization_id, {}).get("webhook_url")

    async def list_organizations(self, tiers: Optional[List[str]] = None) -> List[str]:
        return [
            org_id
            for org_id, info in self._organizations.items()
            if tiers is None or info["tier"] in tiers
        ]


class InMemoryAlertRepository:
    """
    Alert repository held in process memory.

    Enforces at most one unresolved alert per (organization_id, type, title).
    Every method completes without awaiting, so each call is atomic with
    respect to other coroutines on the same event loop.
    """

    def __init__(self) -> None:
        self._alerts: Dict[str, Alert] = {}
        self._open_keys: Dict[Tuple[str, str, str], str] = {}

    def __len__(self) -> int:
        return len(self._alerts)

    def all(self) -> List[Alert]:
        """Get every stored alert, resolved or not, oldest first."""
        return sorted(self._alerts.values(), key=lambda a: a.created_at)

    async def insert(self, alert: Alert) -> Alert:
        if not alert.resolved and alert.dedup_key in self._open_keys:
            raise DuplicateAlertError(alert.organization_id, alert.type.value, alert.title)

        self._alerts[alert.id] = alert
        if not alert.resolved:
            self._open_keys[alert.dedup_key] = alert.id

        logger.debug("alert_stored", alert_id=alert.id, organization_id=alert.organization_id)
        return alert

    async def find_open(
        self,
        organization_id: str,
        alert_type: str,
        title: str,
    ) -> Optional[Alert]:
        alert_id = self._open_keys.get((organization_id, alert_type, title))
        if alert_id is None:
            return None
        return self._alerts.get(alert_id)

    async def get(self, alert_id: str) -> Optional[Alert]:
        return self._alerts.get(alert_id)

    async def list_active(self, organization_id: Optional[str] = None) -> List[Alert]:
        active = [
            alert for alert in self._alerts.values()
            if not alert.resolved
            and (organization_id is None or alert.organization_id == organization_id)
        ]
        # Later inserts win ties on created_at
        return sorted(reversed(active), key=lambda a: a.created_at, reverse=True)

    async def mark_resolved(
        self,
        alert_id: str,
        resolved_at: datetime,
        resolved_by: Optional[str] = None,
    ) -> Optional[Alert]:
        alert = self._alerts.get(alert_id)
        if alert is None or alert.resolved:
            return alert

        resolved = alert.resolve(resolved_by=resolved_by, timestamp=resolved_at)
        self._alerts[alert_id] = resolved
        self._open_keys.pop(alert.dedup_key, None)
        return resolved

    async def append_notifications(self, alert_id: str, channels: List[str]) -> Optional[Alert]:
        alert = self._alerts.get(alert_id)
        if alert is None:
            return None

        updated = alert.with_notifications(channels)
        self._alerts[alert_id] = updated
        return updated
