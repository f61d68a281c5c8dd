"""
Anomaly detector.

Gathers everything the heuristics need about one tenant, builds a
UsageSnapshot and runs the heuristics against the tenant's baseline.

Example:
    >>> detector = AnomalyDetector(store, directory, DetectionConfig())
    >>> anomalies = await detector.detect("org-1")
    >>> [a.type.value for a in anomalies]
    ['spike', 'concurrent_excess']
"""

import asyncio
import math
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import structlog

from usage_alerts.config.models import DetectionConfig
from usage_alerts.detection.baseline import PatternBaseliner, as_utc
from usage_alerts.detection.heuristics import calculate_risk_score, evaluate
from usage_alerts.models.usage import Mode, RecentSession, UsageAnomaly, UsageSnapshot
from usage_alerts.storage.base import OrganizationDirectory, UsageHistoryStore

logger = structlog.get_logger(__name__)


def last_hour_minutes(
    sessions: List[RecentSession],
    as_of: datetime,
) -> Dict[Mode, float]:
    """
    Sum minutes per mode for sessions in the hour before as_of.

    Each session counts as its duration rounded up to whole minutes.
    """
    cutoff = as_of - timedelta(hours=1)
    totals: Dict[Mode, float] = {mode: 0.0 for mode in Mode.ordered()}
    for session in sessions:
        if cutoff <= session.timestamp <= as_of:
            totals[session.mode] += math.ceil(session.duration_seconds / 60)
    return totals


class AnomalyDetector:
    """
    Runs the anomaly heuristics for one tenant at a time.

    Attributes:
        store: Usage history source.
        directory: Organization metadata source.
        config: Detection thresholds.
        baseliner: Computes the tenant baseline.
    """

    def __init__(
        self,
        store: UsageHistoryStore,
        directory: OrganizationDirectory,
        config: Optional[DetectionConfig] = None,
        baseliner: Optional[PatternBaseliner] = None,
    ) -> None:
        self.store = store
        self.directory = directory
        self.config = config or DetectionConfig()
        self.baseliner = baseliner or PatternBaseliner(store, self.config.lookback_days)

    async def snapshot(self, organization_id: str, as_of: datetime) -> UsageSnapshot:
        """
        Collect the current usage state of a tenant.

        Args:
            organization_id: Tenant identifier.
            as_of: Evaluation time.

        Returns:
            UsageSnapshot: Current usage, recent sessions, concurrency and tier.
        """
        month_usage, recent, concurrent, tier = await asyncio.gather(
            self.store.get_current_month_usage(organization_id),
            self.store.get_recent_activity(
                organization_id,
                timedelta(hours=self.config.recent_window_hours),
                as_of,
            ),
            self.store.get_concurrent_sessions(organization_id),
            self.directory.get_tier(organization_id),
        )

        return UsageSnapshot(
            organization_id=organization_id,
            as_of=as_of,
            tier=tier,
            last_hour_minutes=last_hour_minutes(recent, as_of),
            month_usage=month_usage,
            recent_sessions=recent,
            concurrent_sessions=concurrent,
        )

    async def detect(
        self,
        organization_id: str,
        as_of: Optional[datetime] = None,
    ) -> List[UsageAnomaly]:
        """
        Detect anomalies for a tenant.

        Args:
            organization_id: Tenant identifier.
            as_of: Evaluation time (defaults to now).

        Returns:
            List[UsageAnomaly]: Anomalies ordered by heuristic, then mode.
        """
        as_of = as_utc(as_of or datetime.now(timezone.utc))

        pattern = await self.baseliner.compute(organization_id, as_of)
        snapshot = await self.snapshot(organization_id, as_of)
        anomalies = evaluate(snapshot, pattern, self.config)

        if anomalies:
            logger.info(
                "anomalies_detected",
                organization_id=organization_id,
                count=len(anomalies),
                types=[a.type.value for a in anomalies],
                risk_score=calculate_risk_score(anomalies),
            )
        else:
            logger.debug("no_anomalies_detected", organization_id=organization_id)

        return anomalies
