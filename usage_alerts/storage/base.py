"""
Storage contracts for the usage alerting engine.

Detection and alerting code depends only on the protocols defined here,
never on a concrete database. Each protocol has typed methods, one per
query shape the engine needs.

Protocols:
    UsageHistoryStore: Read-only metered usage
    OrganizationDirectory: Tenant tier, name and webhook lookups
    AlertRepository: Persisted alert lifecycle

Exceptions:
    StorageError: Base class for all storage failures
    AlertPersistenceError: An alert could not be written or read
    DuplicateAlertError: An open alert already holds the dedup key
"""

from datetime import datetime, timedelta
from typing import Dict, List, Optional, Protocol, runtime_checkable

from usage_alerts.models.alerts import Alert
from usage_alerts.models.usage import Mode, ModeQuota, RecentSession, UsageAggregate


class StorageError(Exception):
    """Base exception for storage failures."""

    pass


class AlertPersistenceError(StorageError):
    """Raised when an alert cannot be persisted or loaded."""

    pass


class DuplicateAlertError(StorageError):
    """
    Raised when inserting an alert whose dedup key is already open.

    Attributes:
        organization_id: Tenant of the conflicting alert.
        alert_type: Alert category of the conflicting alert.
        title: Title of the conflicting alert.
    """

    def __init__(self, organization_id: str, alert_type: str, title: str):
        self.organization_id = organization_id
        self.alert_type = alert_type
        self.title = title
        super().__init__(
            f"Unresolved alert already exists for ({organization_id}, {alert_type}, {title})"
        )


@runtime_checkable
class UsageHistoryStore(Protocol):
    """Read-only access to per-tenant, per-mode usage."""

    async def get_historical_usage(
        self,
        organization_id: str,
        since: datetime,
    ) -> List[UsageAggregate]:
        """Get usage aggregates recorded at or after `since`."""
        ...

    async def get_current_month_usage(self, organization_id: str) -> Dict[Mode, ModeQuota]:
        """Get month-to-date usage and limits keyed by mode."""
        ...

    async def get_recent_activity(
        self,
        organization_id: str,
        window: timedelta,
        as_of: Optional[datetime] = None,
    ) -> List[RecentSession]:
        """Get completed sessions in the window ending at `as_of`, newest first."""
        ...

    async def get_concurrent_sessions(self, organization_id: str) -> int:
        """Get the number of sessions currently in progress."""
        ...


@runtime_checkable
class OrganizationDirectory(Protocol):
    """Tenant metadata lookups."""

    async def get_tier(self, organization_id: str) -> Optional[str]:
        ...

    async def get_name(self, organization_id: str) -> Optional[str]:
        ...

    async def get_webhook_url(self, organization_id: str) -> Optional[str]:
        ...

    async def list_organizations(self, tiers: Optional[List[str]] = None) -> List[str]:
        """List organization ids, optionally restricted to some tiers."""
        ...


@runtime_checkable
class AlertRepository(Protocol):
    """
    Persistence for alerts.

    Implementations must reject a second unresolved alert with the same
    (organization_id, type, title) by raising DuplicateAlertError.
    """

    async def insert(self, alert: Alert) -> Alert:
        ...

    async def find_open(
        self,
        organization_id: str,
        alert_type: str,
        title: str,
    ) -> Optional[Alert]:
        ...

    async def get(self, alert_id: str) -> Optional[Alert]:
        ...

    async def list_active(self, organization_id: Optional[str] = None) -> List[Alert]:
        """List unresolved alerts, newest first."""
        ...

    async def mark_resolved(
        self,
        alert_id: str,
        resolved_at: datetime,
        resolved_by: Optional[str] = None,
    ) -> Optional[Alert]:
        """Resolve an alert. Already resolved alerts are returned unchanged."""
        ...

    async def append_notifications(self, alert_id: str, channels: List[str]) -> Optional[Alert]:
        """Append channel names to notifications_sent without duplicates."""
        ...
