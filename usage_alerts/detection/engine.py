"""
Detection engine tying detection, alerting and notification together.

One detection cycle runs every tenant through detect, alert creation and
notification routing. Tenants run concurrently up to a worker limit and a
failure in one tenant never aborts the others.

Example:
    >>> engine = DetectionEngine(detector, manager, router, directory, config)
    >>> alerts = await engine.run_detection_cycle()
    >>> await engine.flush_due_batches()
"""

import asyncio
from datetime import datetime
from typing import List, Optional

import structlog

from usage_alerts.config.models import DetectionConfig, NotificationPolicy, SeverityPolicy
from usage_alerts.detection.baseline import as_utc
from usage_alerts.detection.detector import AnomalyDetector
from usage_alerts.detection.dispatcher import NotificationRouter
from usage_alerts.detection.manager import AlertManager
from usage_alerts.models.alerts import Alert, AlertSummary
from usage_alerts.models.usage import Severity
from usage_alerts.storage.base import OrganizationDirectory

logger = structlog.get_logger(__name__)


class DetectionEngine:
    """
    Runs detection cycles across tenants.

    Attributes:
        detector: Per-tenant anomaly detector.
        manager: Alert lifecycle manager.
        router: Notification router.
        directory: Organization metadata source.
        config: Detection settings (worker limit, monitored tiers).
    """

    def __init__(
        self,
        detector: AnomalyDetector,
        manager: AlertManager,
        router: NotificationRouter,
        directory: OrganizationDirectory,
        config: Optional[DetectionConfig] = None,
    ) -> None:
        self.detector = detector
        self.manager = manager
        self.router = router
        self.directory = directory
        self.config = config or DetectionConfig()

    async def _run_tenant(
        self,
        organization_id: str,
        semaphore: asyncio.Semaphore,
        as_of: Optional[datetime],
    ) -> List[Alert]:
        async with semaphore:
            try:
                anomalies = await self.detector.detect(organization_id, as_of)
                if not anomalies:
                    return []

                organization_name = await self.directory.get_name(organization_id)
                alerts = await self.manager.process_anomalies(
                    anomalies,
                    organization_name=organization_name,
                )
            except Exception as e:
                logger.error(
                    "tenant_detection_failed",
                    organization_id=organization_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                return []

            if not alerts:
                return []

            # Alerts are stored at this point and must be returned either way
            try:
                return await self.router.route(alerts, now=as_of)
            except Exception as e:
                logger.error(
                    "alert_routing_failed",
                    organization_id=organization_id,
                    alert_ids=[alert.id for alert in alerts],
                    error=str(e),
                    error_type=type(e).__name__,
                )
                return alerts

    async def run_detection_cycle(
        self,
        organization_ids: Optional[List[str]] = None,
        as_of: Optional[datetime] = None,
    ) -> List[Alert]:
        """
        Run one detection cycle.

        Args:
            organization_ids: Tenants to check. Defaults to every organization
                on a monitored tier.
            as_of: Evaluation time (defaults to now).

        Returns:
            List[Alert]: Alerts created in this cycle, in tenant order.
        """
        if as_of is not None:
            as_of = as_utc(as_of)
        if organization_ids is None:
            organization_ids = await self.directory.list_organizations(
                tiers=self.config.monitored_tiers
            )

        logger.info(
            "detection_cycle_started",
            organizations=len(organization_ids),
            max_workers=self.config.max_workers,
        )

        semaphore = asyncio.Semaphore(self.config.max_workers)
        per_tenant = await asyncio.gather(
            *(self._run_tenant(org, semaphore, as_of) for org in organization_ids)
        )
        alerts = [alert for tenant_alerts in per_tenant for alert in tenant_alerts]

        logger.info(
            "detection_cycle_complete",
            organizations=len(organization_ids),
            alerts_created=len(alerts),
        )
        return alerts

    # =========================================================================
    # DELEGATES
    # =========================================================================

    async def get_active_alerts(self, organization_id: Optional[str] = None) -> List[Alert]:
        return await self.manager.get_active_alerts(organization_id)

    async def resolve_alert(
        self,
        alert_id: str,
        resolved_by: Optional[str] = None,
    ) -> Optional[Alert]:
        return await self.manager.resolve_alert(alert_id, resolved_by)

    def get_policy(self) -> NotificationPolicy:
        return self.router.get_policy()

    def update_severity_policy(
        self,
        severity: Severity,
        policy: SeverityPolicy,
    ) -> NotificationPolicy:
        return self.router.update_severity_policy(severity, policy)

    async def flush_due_batches(self, now: Optional[datetime] = None) -> List[AlertSummary]:
        """Flush every batch window that has elapsed."""
        return await self.router.flush_due(now)

    async def close(self) -> None:
        await self.router.close()
