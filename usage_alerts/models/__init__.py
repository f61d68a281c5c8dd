"""
Shared Pydantic data models for the usage alerting engine.

Modules:
    usage: Usage history, snapshots, baselines and anomalies
    alerts: Persisted alerts and notification values

Example:
    >>> from usage_alerts.models import Alert, Severity, UsageAnomaly
"""

from usage_alerts.models.alerts import (
    Alert,
    AlertSummary,
    AlertType,
    Cadence,
    ChannelResult,
    NotificationState,
)
from usage_alerts.models.usage import (
    AnomalyDetails,
    AnomalyType,
    Mode,
    ModeQuota,
    RecentSession,
    Severity,
    UsageAggregate,
    UsageAnomaly,
    UsagePattern,
    UsageSnapshot,
)

__all__: list[str] = [
    # Usage
    "Mode",
    "Severity",
    "AnomalyType",
    "UsageAggregate",
    "ModeQuota",
    "RecentSession",
    "UsageSnapshot",
    "UsagePattern",
    "AnomalyDetails",
    "UsageAnomaly",
    # Alerts
    "AlertType",
    "NotificationState",
    "Cadence",
    "Alert",
    "ChannelResult",
    "AlertSummary",
]
