"""
Rolling usage baselines.

The baseline is the "expected" side of every comparison the heuristics
make. It is recomputed from raw history each cycle and never persisted.
"""

import math
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import structlog

from usage_alerts.models.usage import Mode, UsageAggregate, UsagePattern
from usage_alerts.storage.base import UsageHistoryStore

logger = structlog.get_logger(__name__)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class PatternBaseliner:
    """
    Derives a UsagePattern from a tenant's usage history.

    The weekly average divides the total minutes in the lookback window by
    the number of weeks the window spans, rounded up. With no history every
    figure is zero, which downstream checks read as insufficient data.

    Example:
        >>> baseliner = PatternBaseliner(store, lookback_days=90)
        >>> pattern = await baseliner.compute("org-1")
        >>> pattern.weekly_average
        70.0
    """

    def __init__(self, store: UsageHistoryStore, lookback_days: int = 90) -> None:
        if lookback_days < 1:
            raise ValueError("lookback_days must be at least 1")

        self.store = store
        self.lookback_days = lookback_days

    @property
    def weeks_in_window(self) -> int:
        return math.ceil(self.lookback_days / 7)

    async def compute(
        self,
        organization_id: str,
        as_of: Optional[datetime] = None,
        mode: Optional[Mode] = None,
    ) -> UsagePattern:
        """
        Compute the baseline for a tenant.

        Args:
            organization_id: Tenant identifier.
            as_of: End of the lookback window (defaults to now).
            mode: Restrict to one mode, or None for all modes.

        Returns:
            UsagePattern: Baseline over the lookback window.
        """
        as_of = as_utc(as_of or datetime.now(timezone.utc))
        since = as_of - timedelta(days=self.lookback_days)

        history = await self.store.get_historical_usage(organization_id, since)
        aggregates = [
            a for a in history
            if (mode is None or a.mode == mode) and since <= as_utc(a.period_start) <= as_of
        ]

        pattern = self.build_pattern(organization_id, aggregates, since, as_of, mode)

        logger.debug(
            "baseline_computed",
            organization_id=organization_id,
            mode=mode.value if mode else None,
            samples=len(aggregates),
            weekly_average=round(pattern.weekly_average, 2),
            monthly_total=round(pattern.monthly_total, 2),
        )
        return pattern

    def build_pattern(
        self,
        organization_id: str,
        aggregates: List[UsageAggregate],
        since: datetime,
        as_of: datetime,
        mode: Optional[Mode] = None,
    ) -> UsagePattern:
        """Fold aggregates that already fall inside the window into a pattern."""
        first_day = since.date()
        day_count = (as_of.date() - first_day).days + 1

        hourly = [0.0] * 24
        daily = [0.0] * day_count
        total = 0.0
        monthly = 0.0

        for aggregate in aggregates:
            start = as_utc(aggregate.period_start)
            minutes = aggregate.minutes

            total += minutes
            hourly[start.hour] += minutes
            daily[(start.date() - first_day).days] += minutes
            if start.year == as_of.year and start.month == as_of.month:
                monthly += minutes

        return UsagePattern(
            organization_id=organization_id,
            mode=mode,
            hourly_usage=hourly,
            daily_usage=daily,
            weekly_average=total / self.weeks_in_window,
            monthly_total=monthly,
        )
