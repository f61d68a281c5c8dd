"""
Alert data models for the alerting engine.

This module defines the persisted alert entity and the values that flow
through notification dispatch.

Models:
    AlertType: Alert categories (anomaly, limit_reached, system, security)
    NotificationState: Per-alert notification state
    Cadence: Dispatch cadence (immediate, batched)
    Alert: Persisted alert instance
    ChannelResult: Outcome of one channel send
    AlertSummary: Composed batch message for one organization
"""

from collections import Counter
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from usage_alerts.models.usage import Severity


class AlertType(str, Enum):
    """
    Alert categories.

    Attributes:
        ANOMALY: Raised from a usage anomaly.
        LIMIT_REACHED: A plan limit was hit.
        SYSTEM: Platform-level problem.
        SECURITY: Security-relevant event.
    """

    ANOMALY = "anomaly"
    LIMIT_REACHED = "limit_reached"
    SYSTEM = "system"
    SECURITY = "security"


class NotificationState(str, Enum):
    """
    Notification state of an alert.

    OPEN -> PENDING -> SENT_PARTIAL | SENT_FULL, and RESOLVED from any state.
    """

    OPEN = "open"
    PENDING = "pending"
    SENT_PARTIAL = "sent_partial"
    SENT_FULL = "sent_full"
    RESOLVED = "resolved"


class Cadence(str, Enum):
    """Dispatch cadence for a severity tier."""

    IMMEDIATE = "immediate"
    BATCHED = "batched"


class Alert(BaseModel):
    """
    Persisted alert instance.

    The deduplication key is (organization_id, type, title): at most one
    unresolved alert may exist for it.

    Attributes:
        id: Unique identifier.
        organization_id: Tenant the alert belongs to.
        type: Alert category.
        severity: Alert severity.
        title: Deterministic title, part of the dedup key.
        description: Human-readable description.
        metadata: Free-form details (anomaly numbers, resolved_by, ...).
        created_at: Creation time.
        resolved: Whether the alert is resolved.
        resolved_at: Resolution time.
        notifications_sent: Channels the alert was delivered on (append-only).

    Example:
        >>> alert = Alert(
        ...     organization_id="org-1",
        ...     severity=Severity.CRITICAL,
        ...     title="Rapid Credit Depletion - precision mode",
        ...     description="precision mode depleting rapidly",
        ... )
        >>> alert.dedup_key
        ('org-1', 'anomaly', 'Rapid Credit Depletion - precision mode')
    """

    model_config = {"extra": "forbid"}

    id: str = Field(
        default_factory=lambda: str(uuid4()),
        description="Unique identifier for this alert",
    )
    organization_id: str = Field(
        ...,
        description="Tenant the alert belongs to",
        min_length=1,
    )
    type: AlertType = Field(
        default=AlertType.ANOMALY,
        description="Alert category",
    )
    severity: Severity = Field(
        ...,
        description="Alert severity",
    )
    title: str = Field(
        ...,
        description="Deterministic title, part of the dedup key",
        min_length=1,
    )
    description: str = Field(
        default="",
        description="Human-readable description",
    )
    metadata: Dict[str, Any] = Field(
        default_factory=dict,
        description="Free-form details",
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the alert was created",
    )
    resolved: bool = Field(
        default=False,
        description="Whether the alert is resolved",
    )
    resolved_at: Optional[datetime] = Field(
        default=None,
        description="When the alert was resolved",
    )
    notifications_sent: List[str] = Field(
        default_factory=list,
        description="Channels the alert was delivered on",
    )

    @property
    def dedup_key(self) -> tuple:
        """The (organization_id, type, title) deduplication key."""
        return (self.organization_id, self.type.value, self.title)

    @property
    def is_active(self) -> bool:
        """Check if the alert is unresolved."""
        return not self.resolved

    def resolve(
        self,
        resolved_by: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> "Alert":
        """
        Return a resolved copy of the alert.

        Args:
            resolved_by: Who resolved it, stored in metadata.
            timestamp: Resolution time, defaults to now.

        Returns:
            Alert: Resolved alert. Unchanged if already resolved.
        """
        if self.resolved:
            return self

        metadata = dict(self.metadata)
        if resolved_by is not None:
            metadata["resolved_by"] = resolved_by

        return self.model_copy(
            update={
                "resolved": True,
                "resolved_at": timestamp or datetime.now(timezone.utc),
                "metadata": metadata,
            }
        )

    def with_notifications(self, channels: List[str]) -> "Alert":
        """
        Return a copy with channel names appended to notifications_sent.

        Existing names are kept in place and never duplicated.
        """
        sent = list(self.notifications_sent)
        for channel in channels:
            if channel not in sent:
                sent.append(channel)
        return self.model_copy(update={"notifications_sent": sent})


class ChannelResult(BaseModel):
    """Outcome of a single channel send."""

    model_config = {"frozen": True}

    channel: str
    success: bool
    error: Optional[str] = None


class AlertSummary(BaseModel):
    """
    One batched message for one organization and one window.

    Attributes:
        organization_id: Tenant the summary is for.
        alerts: Alerts included in the batch.
        window_seconds: Batching window the alerts were collected over.
        top_n: How many titles to list.
    """

    organization_id: str
    alerts: List[Alert]
    window_seconds: int = 0
    top_n: int = 5

    @property
    def total(self) -> int:
        """Number of alerts in the summary."""
        return len(self.alerts)

    @property
    def counts_by_severity(self) -> Dict[str, int]:
        """Alert count per severity, most severe first."""
        counts = Counter(alert.severity for alert in self.alerts)
        ordered = sorted(counts, key=lambda s: s.rank, reverse=True)
        return {severity.value: counts[severity] for severity in ordered}

    @property
    def top_titles(self) -> List[str]:
        """Titles of the most severe alerts, newest first within a severity."""
        ranked = sorted(
            self.alerts,
            key=lambda a: (a.severity.rank, a.created_at),
            reverse=True,
        )
        return [alert.title for alert in ranked[: self.top_n]]

    def render(self) -> str:
        """Render the summary as plain text."""
        lines = [f"You have {self.total} new alert{'s' if self.total != 1 else ''}:"]
        for severity, count in self.counts_by_severity.items():
            lines.append(f"- {count} {severity} severity alert{'s' if count > 1 else ''}")
        lines.append("")
        lines.append("Top alerts:")
        lines.extend(f"- {title}" for title in self.top_titles)
        return "\n".join(lines)
