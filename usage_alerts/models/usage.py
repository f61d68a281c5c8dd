"""
Usage data models for the anomaly detection engine.

This module defines the metered-usage structures read from the usage
history store and the ephemeral values produced by each detection cycle.

Models:
    Mode: Transcription modes (fast, balanced, precision)
    Severity: Ordinal severity levels (low < medium < high < critical)
    AnomalyType: Anomaly taxonomy (spike, rapid_depletion, ...)
    UsageAggregate: Historical minutes for one mode and period
    ModeQuota: Month-to-date usage and limit for one mode
    RecentSession: A recent transcription session
    UsageSnapshot: Everything the heuristics need about "now"
    UsagePattern: Rolling statistical baseline
    AnomalyDetails: Numbers behind a detected anomaly
    UsageAnomaly: A single detected anomaly
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class Mode(str, Enum):
    """
    Transcription modes, each with its own usage limit.

    Declaration order is the stable order used when merging results.
    """

    FAST = "fast"
    BALANCED = "balanced"
    PRECISION = "precision"

    @classmethod
    def ordered(cls) -> List["Mode"]:
        """Return all modes in merge order."""
        return [cls.FAST, cls.BALANCED, cls.PRECISION]


class Severity(str, Enum):
    """
    Ordinal severity levels.

    Attributes:
        LOW: Query-only visibility, never notified.
        MEDIUM: Batched hourly.
        HIGH: Batched every five minutes.
        CRITICAL: Sent immediately on every channel.
    """

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Numeric rank, higher is more severe."""
        return _SEVERITY_RANK[self]

    def at_least(self, other: "Severity") -> bool:
        """Check if this severity is the same as or above another."""
        return self.rank >= other.rank


_SEVERITY_RANK: Dict[Severity, int] = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


class AnomalyType(str, Enum):
    """Anomaly taxonomy. Declaration order is the detector order."""

    SPIKE = "spike"
    RAPID_DEPLETION = "rapid_depletion"
    MODE_ABUSE = "mode_abuse"
    CONCURRENT_EXCESS = "concurrent_excess"


class UsageAggregate(BaseModel):
    """
    Aggregated minutes for one mode over one period.

    Attributes:
        period_start: Start of the aggregation period (day or hour).
        mode: Transcription mode.
        minutes: Minutes consumed in the period.
    """

    model_config = {"frozen": True}

    period_start: datetime
    mode: Mode
    minutes: float = Field(..., ge=0)


class ModeQuota(BaseModel):
    """Month-to-date usage against the plan limit for one mode."""

    model_config = {"frozen": True}

    used: float = Field(default=0, ge=0)
    limit: float = Field(default=0, ge=0)


class RecentSession(BaseModel):
    """A completed transcription session from the recent activity window."""

    model_config = {"frozen": True}

    mode: Mode
    duration_seconds: float = Field(..., ge=0)
    timestamp: datetime


class UsageSnapshot(BaseModel):
    """
    Current usage state of a tenant at evaluation time.

    Attributes:
        organization_id: Tenant identifier.
        as_of: Evaluation timestamp.
        tier: Subscription tier name (None if unknown).
        last_hour_minutes: Minutes per mode over the last hour.
        month_usage: Month-to-date usage and limits per mode.
        recent_sessions: Sessions from the last 24 hours, newest first.
        concurrent_sessions: Currently active transcription sessions.
    """

    organization_id: str
    as_of: datetime
    tier: Optional[str] = None
    last_hour_minutes: Dict[Mode, float] = Field(default_factory=dict)
    month_usage: Dict[Mode, ModeQuota] = Field(default_factory=dict)
    recent_sessions: List[RecentSession] = Field(default_factory=list)
    concurrent_sessions: int = Field(default=0, ge=0)


class UsagePattern(BaseModel):
    """
    Rolling baseline for a tenant, recomputed every cycle.

    A zero weekly_average means insufficient history, not "no usage".

    Attributes:
        organization_id: Tenant identifier.
        mode: Mode the pattern covers (None means all modes).
        hourly_usage: Minutes by hour of day (24 buckets) over the window.
        daily_usage: Minutes per day over the window, oldest first.
        weekly_average: Average minutes per week over the window.
        monthly_total: Minutes recorded in the current calendar month.
    """

    organization_id: str
    mode: Optional[Mode] = None
    hourly_usage: List[float] = Field(default_factory=lambda: [0.0] * 24)
    daily_usage: List[float] = Field(default_factory=list)
    weekly_average: float = 0.0
    monthly_total: float = 0.0

    @property
    def has_baseline(self) -> bool:
        """Check if there is enough history to compare against."""
        return self.weekly_average > 0


class AnomalyDetails(BaseModel):
    """
    Numbers behind an anomaly, ready for rendering.

    Attributes:
        current_value: Observed value.
        expected_value: Baseline or expected value.
        deviation_pct: Signed percentage deviation from expected.
        time_window: Human-readable window the value covers.
        description: One-line explanation.
    """

    model_config = {"frozen": True}

    current_value: float
    expected_value: float
    deviation_pct: float
    time_window: str
    description: str


class UsageAnomaly(BaseModel):
    """
    A single anomaly produced by a detection heuristic.

    Example:
        >>> anomaly = UsageAnomaly(
        ...     organization_id="org-1",
        ...     type=AnomalyType.SPIKE,
        ...     severity=Severity.HIGH,
        ...     mode=Mode.FAST,
        ...     details=AnomalyDetails(
        ...         current_value=60,
        ...         expected_value=0.42,
        ...         deviation_pct=14300.0,
        ...         time_window="1 hour",
        ...         description="fast mode usage spike detected",
        ...     ),
        ... )
    """

    model_config = {"frozen": True}

    organization_id: str
    type: AnomalyType
    severity: Severity
    mode: Mode
    details: AnomalyDetails
    detected_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )
