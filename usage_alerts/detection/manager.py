"""
Alert manager for alert lifecycle management.

This module provides the AlertManager class which turns anomalies into
persisted alerts and owns their lifecycle: creation with deduplication,
delivery bookkeeping and explicit resolution.

Key Features:
    - Converts anomalies at or above a minimum severity into alerts
    - Deterministic titles so repeated firings collapse onto one open alert
    - Deduplication by (organization_id, type, title), backed by the
      repository's uniqueness constraint for concurrent cycles
    - Persistence failures are logged and never raised past the manager
    - Resolution only through resolve_alert, never automatic

Example:
    >>> manager = AlertManager(repository)
    >>> alerts = await manager.process_anomalies(anomalies, organization_name="Acme")
    >>> await manager.resolve_alert(alerts[0].id, resolved_by="ops@acme.io")
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog

from usage_alerts.models.alerts import Alert, AlertType
from usage_alerts.models.usage import AnomalyType, Severity, UsageAnomaly
from usage_alerts.storage.base import AlertRepository, DuplicateAlertError, StorageError

logger = structlog.get_logger(__name__)


ANOMALY_TITLES: Dict[AnomalyType, str] = {
    AnomalyType.SPIKE: "Usage Spike Detected - {mode} mode",
    AnomalyType.RAPID_DEPLETION: "Rapid Credit Depletion - {mode} mode",
    AnomalyType.MODE_ABUSE: "Potential Mode Abuse - {mode} mode",
    AnomalyType.CONCURRENT_EXCESS: "Excessive Concurrent Transcriptions",
}


def anomaly_title(anomaly: UsageAnomaly) -> str:
    """
    Build the deterministic alert title for an anomaly.

    Args:
        anomaly: The anomaly.

    Returns:
        str: Title derived from the anomaly type and mode.

    Example:
        >>> anomaly_title(spike_on_fast)
        'Usage Spike Detected - fast mode'
    """
    template = ANOMALY_TITLES.get(anomaly.type, "Usage Anomaly Detected")
    return template.format(mode=anomaly.mode.value)


def anomaly_metadata(
    anomaly: UsageAnomaly,
    organization_name: Optional[str] = None,
) -> Dict[str, Any]:
    """Flatten anomaly details into alert metadata."""
    metadata: Dict[str, Any] = {
        "anomaly_type": anomaly.type.value,
        "mode": anomaly.mode.value,
        "current_value": anomaly.details.current_value,
        "expected_value": anomaly.details.expected_value,
        "deviation_pct": anomaly.details.deviation_pct,
        "time_window": anomaly.details.time_window,
    }
    if organization_name:
        metadata["organization_name"] = organization_name
    return metadata


class AlertManager:
    """
    Orchestrates the alert lifecycle.

    Responsibilities:
    - Create alerts from anomalies, skipping those below min_severity
    - Suppress duplicates of an already open alert
    - Record which channels an alert was delivered on
    - Resolve alerts on request

    Attributes:
        repository: AlertRepository for persistence.
        min_severity: Lowest anomaly severity that becomes an alert.
    """

    def __init__(
        self,
        repository: AlertRepository,
        min_severity: Severity = Severity.MEDIUM,
    ) -> None:
        """
        Initialize the AlertManager.

        Args:
            repository: AlertRepository for persisting alerts.
            min_severity: Lowest anomaly severity that becomes an alert.
        """
        self.repository = repository
        self.min_severity = min_severity

        logger.info(
            "alert_manager_initialized",
            repository=type(repository).__name__,
            min_severity=min_severity.value,
        )

    async def create_alert(
        self,
        organization_id: str,
        type: AlertType,
        severity: Severity,
        title: str,
        description: str = "",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[Alert]:
        """
        Create and persist a new alert unless an open duplicate exists.

        Args:
            organization_id: Tenant the alert belongs to.
            type: Alert category.
            severity: Alert severity.
            title: Deterministic title, part of the dedup key.
            description: Human-readable description.
            metadata: Free-form details.

        Returns:
            Optional[Alert]: The new alert, or None if it duplicates an open
                alert or could not be persisted.
        """
        try:
            existing = await self.repository.find_open(organization_id, type.value, title)
            if existing is not None:
                logger.debug(
                    "alert_deduplicated",
                    organization_id=organization_id,
                    title=title,
                    existing_alert_id=existing.id,
                )
                return None

            alert = Alert(
                organization_id=organization_id,
                type=type,
                severity=severity,
                title=title,
                description=description,
                metadata=metadata or {},
            )
            stored = await self.repository.insert(alert)

        except DuplicateAlertError:
            # Another cycle created the same alert between the check and the insert
            logger.info(
                "alert_duplicate_rejected",
                organization_id=organization_id,
                title=title,
            )
            return None
        except StorageError as e:
            logger.error(
                "alert_create_failed",
                organization_id=organization_id,
                title=title,
                error=str(e),
            )
            return None

        logger.info(
            "alert_created",
            alert_id=stored.id,
            organization_id=organization_id,
            type=type.value,
            severity=severity.value,
            title=title,
        )
        return stored

    async def process_anomalies(
        self,
        anomalies: List[UsageAnomaly],
        organization_name: Optional[str] = None,
    ) -> List[Alert]:
        """
        Convert qualifying anomalies into alerts.

        Anomalies below min_severity are skipped. Duplicates and failed
        writes yield no alert. Order follows the input.

        Args:
            anomalies: Anomalies from one detection pass.
            organization_name: Tenant display name stored in metadata.

        Returns:
            List[Alert]: Newly created alerts.
        """
        created: List[Alert] = []

        for anomaly in anomalies:
            if not anomaly.severity.at_least(self.min_severity):
                continue

            alert = await self.create_alert(
                organization_id=anomaly.organization_id,
                type=AlertType.ANOMALY,
                severity=anomaly.severity,
                title=anomaly_title(anomaly),
                description=anomaly.details.description,
                metadata=anomaly_metadata(anomaly, organization_name),
            )
            if alert is not None:
                created.append(alert)

        return created

    async def resolve_alert(
        self,
        alert_id: str,
        resolved_by: Optional[str] = None,
    ) -> Optional[Alert]:
        """
        Resolve an alert.

        Calling this on an already resolved alert is a no-op.

        Args:
            alert_id: Alert identifier.
            resolved_by: Who resolved the alert.

        Returns:
            Optional[Alert]: The resolved alert, or None if the id is unknown.
        """
        existing = await self.repository.get(alert_id)
        if existing is None:
            logger.warning("alert_not_found", alert_id=alert_id)
            return None
        if existing.resolved:
            return existing

        resolved = await self.repository.mark_resolved(
            alert_id,
            resolved_at=datetime.now(timezone.utc),
            resolved_by=resolved_by,
        )

        logger.info(
            "alert_resolved",
            alert_id=alert_id,
            organization_id=existing.organization_id,
            resolved_by=resolved_by,
        )
        return resolved

    async def get_active_alerts(self, organization_id: Optional[str] = None) -> List[Alert]:
        """
        Get unresolved alerts, newest first.

        Args:
            organization_id: Optional tenant filter.
        """
        return await self.repository.list_active(organization_id)

    async def get_alert(self, alert_id: str) -> Optional[Alert]:
        return await self.repository.get(alert_id)

    async def record_notifications(
        self,
        alert_id: str,
        channels: List[str],
    ) -> Optional[Alert]:
        """
        Append delivered channel names to an alert.

        Args:
            alert_id: Alert identifier.
            channels: Channels the alert was delivered on.

        Returns:
            Optional[Alert]: Updated alert, or None if the id is unknown.
        """
        if not channels:
            return await self.repository.get(alert_id)

        updated = await self.repository.append_notifications(alert_id, channels)
        if updated is not None:
            logger.debug(
                "alert_notifications_recorded",
                alert_id=alert_id,
                channels=channels,
                notifications_sent=updated.notifications_sent,
            )
        return updated


async def create_alert_manager(
    repository: AlertRepository,
    min_severity: Severity = Severity.MEDIUM,
) -> AlertManager:
    """
    Factory function to create an AlertManager.

    Args:
        repository: AlertRepository for persistence.
        min_severity: Lowest anomaly severity that becomes an alert.

    Returns:
        AlertManager: A new manager instance.
    """
    return AlertManager(repository=repository, min_severity=min_severity)
