"""
Anomaly heuristics.

Each heuristic is a pure function of (snapshot, pattern, config) that
returns zero or more UsageAnomaly values. Identical inputs always give
identical output: the detection timestamp is taken from the snapshot, not
the clock.

Heuristics (in merge order):
    detect_spikes: Last-hour minutes far above the hourly baseline
    detect_rapid_depletion: Monthly allowance used faster than the month elapses
    detect_mode_abuse: Precision mode used for short recordings or out of proportion
    detect_concurrent_excess: More concurrent sessions than the tier expects
"""

import calendar
from datetime import datetime
from typing import Callable, Dict, List

from usage_alerts.config.models import DetectionConfig
from usage_alerts.models.usage import (
    AnomalyDetails,
    AnomalyType,
    Mode,
    Severity,
    UsageAnomaly,
    UsagePattern,
    UsageSnapshot,
)

HOURS_PER_WEEK = 7 * 24

SEVERITY_WEIGHTS: Dict[Severity, int] = {
    Severity.LOW: 1,
    Severity.MEDIUM: 3,
    Severity.HIGH: 7,
    Severity.CRITICAL: 10,
}

Heuristic = Callable[[UsageSnapshot, UsagePattern, DetectionConfig], List[UsageAnomaly]]


def deviation_pct(current: float, expected: float) -> float:
    """
    Signed percentage deviation of current from expected.

    Args:
        current: Observed value.
        expected: Baseline value.

    Returns:
        float: Deviation rounded to one decimal. When expected is zero the
            result is 100.0 for a positive current value, else 0.0.

    Example:
        >>> deviation_pct(11, 5)
        120.0
        >>> deviation_pct(3, 0)
        100.0
    """
    if expected == 0:
        return 100.0 if current > 0 else 0.0
    return round((current / expected - 1) * 100, 1)


def month_progress(as_of: datetime) -> float:
    """Fraction of the calendar month elapsed, counting the current day."""
    days_in_month = calendar.monthrange(as_of.year, as_of.month)[1]
    return as_of.day / days_in_month


def _anomaly(
    snapshot: UsageSnapshot,
    anomaly_type: AnomalyType,
    severity: Severity,
    mode: Mode,
    details: AnomalyDetails,
) -> UsageAnomaly:
    return UsageAnomaly(
        organization_id=snapshot.organization_id,
        type=anomaly_type,
        severity=severity,
        mode=mode,
        details=details,
        detected_at=snapshot.as_of,
    )


def detect_spikes(
    snapshot: UsageSnapshot,
    pattern: UsagePattern,
    config: DetectionConfig,
) -> List[UsageAnomaly]:
    """
    Flag modes whose last-hour minutes exceed the hourly baseline.

    A zero baseline means there is not enough history, so nothing fires.
    """
    if not pattern.has_baseline:
        return []

    thresholds = config.spike
    avg_hourly = pattern.weekly_average / HOURS_PER_WEEK
    anomalies: List[UsageAnomaly] = []

    for mode in Mode.ordered():
        last_hour = snapshot.last_hour_minutes.get(mode, 0.0)
        if last_hour <= avg_hourly * thresholds.multiplier or last_hour <= thresholds.min_minutes:
            continue

        severity = (
            Severity.HIGH if last_hour > avg_hourly * thresholds.high_multiplier else Severity.MEDIUM
        )
        ratio = last_hour / avg_hourly
        anomalies.append(
            _anomaly(
                snapshot,
                AnomalyType.SPIKE,
                severity,
                mode,
                AnomalyDetails(
                    current_value=last_hour,
                    expected_value=round(avg_hourly, 2),
                    deviation_pct=deviation_pct(last_hour, avg_hourly),
                    time_window="1 hour",
                    description=(
                        f"{mode.value} mode usage spike detected: {last_hour:g} minutes "
                        f"in last hour ({ratio:.0f}x normal)"
                    ),
                ),
            )
        )

    return anomalies


def detect_rapid_depletion(
    snapshot: UsageSnapshot,
    pattern: UsagePattern,
    config: DetectionConfig,
) -> List[UsageAnomaly]:
    """Flag modes whose allowance is being used up well ahead of the calendar."""
    thresholds = config.depletion
    progress = month_progress(snapshot.as_of)
    anomalies: List[UsageAnomaly] = []

    for mode in Mode.ordered():
        quota = snapshot.month_usage.get(mode)
        if quota is None or quota.limit <= 0:
            continue

        usage_rate = quota.used / quota.limit
        if usage_rate <= progress * thresholds.progress_multiplier:
            continue
        if usage_rate <= thresholds.min_usage_rate:
            continue

        severity = (
            Severity.CRITICAL if usage_rate > thresholds.critical_usage_rate else Severity.HIGH
        )
        anomalies.append(
            _anomaly(
                snapshot,
                AnomalyType.RAPID_DEPLETION,
                severity,
                mode,
                AnomalyDetails(
                    current_value=round(usage_rate * 100, 1),
                    expected_value=round(progress * 100, 1),
                    deviation_pct=deviation_pct(usage_rate, progress),
                    time_window=f"{snapshot.as_of.day} days",
                    description=(
                        f"{mode.value} mode depleting rapidly: {usage_rate * 100:.0f}% used, "
                        f"only {progress * 100:.0f}% of month elapsed"
                    ),
                ),
            )
        )

    return anomalies


def detect_mode_abuse(
    snapshot: UsageSnapshot,
    pattern: UsagePattern,
    config: DetectionConfig,
) -> List[UsageAnomaly]:
    """
    Flag precision mode misuse.

    Two independent checks, either or both may fire:
        - short recordings: recent precision sessions average under the limit
        - ratio: month-to-date precision minutes out of proportion to balanced
    """
    thresholds = config.mode_abuse
    anomalies: List[UsageAnomaly] = []

    precision_sessions = [
        s for s in sorted(snapshot.recent_sessions, key=lambda s: s.timestamp, reverse=True)
        if s.mode == Mode.PRECISION
    ][: thresholds.short_session_sample_size]

    if len(precision_sessions) >= thresholds.short_session_min_count:
        avg_seconds = sum(s.duration_seconds for s in precision_sessions) / len(precision_sessions)
        if avg_seconds < thresholds.short_session_max_avg_seconds:
            avg_minutes = avg_seconds / 60
            anomalies.append(
                _anomaly(
                    snapshot,
                    AnomalyType.MODE_ABUSE,
                    Severity.MEDIUM,
                    Mode.PRECISION,
                    AnomalyDetails(
                        current_value=round(avg_minutes, 1),
                        expected_value=thresholds.short_session_expected_minutes,
                        deviation_pct=deviation_pct(
                            avg_minutes, thresholds.short_session_expected_minutes
                        ),
                        time_window=f"{config.recent_window_hours} hours",
                        description=(
                            "Precision mode potentially misused for short recordings: "
                            f"avg {avg_minutes:.1f} minutes"
                        ),
                    ),
                )
            )

    balanced = snapshot.month_usage.get(Mode.BALANCED)
    precision = snapshot.month_usage.get(Mode.PRECISION)
    balanced_minutes = balanced.used if balanced else 0.0
    precision_minutes = precision.used if precision else 0.0

    if (
        precision_minutes > balanced_minutes * thresholds.precision_ratio
        and precision_minutes > thresholds.precision_min_minutes
    ):
        expected = round(balanced_minutes * thresholds.precision_expected_ratio, 1)
        anomalies.append(
            _anomaly(
                snapshot,
                AnomalyType.MODE_ABUSE,
                Severity.LOW,
                Mode.PRECISION,
                AnomalyDetails(
                    current_value=precision_minutes,
                    expected_value=expected,
                    deviation_pct=deviation_pct(precision_minutes, expected),
                    time_window="current month",
                    description=(
                        f"High precision mode usage ratio: {precision_minutes:g} precision "
                        f"vs {balanced_minutes:g} balanced minutes"
                    ),
                ),
            )
        )

    return anomalies


def detect_concurrent_excess(
    snapshot: UsageSnapshot,
    pattern: UsagePattern,
    config: DetectionConfig,
) -> List[UsageAnomaly]:
    """Flag more concurrent sessions than the tier is expected to run."""
    thresholds = config.concurrency
    expected = thresholds.expected_for(snapshot.tier)
    concurrent = snapshot.concurrent_sessions

    if concurrent <= expected * thresholds.multiplier:
        return []

    severity = (
        Severity.CRITICAL if concurrent > expected * thresholds.critical_multiplier else Severity.HIGH
    )
    # Concurrency is not tied to a mode, reported as fast
    return [
        _anomaly(
            snapshot,
            AnomalyType.CONCURRENT_EXCESS,
            severity,
            Mode.FAST,
            AnomalyDetails(
                current_value=concurrent,
                expected_value=expected,
                deviation_pct=deviation_pct(concurrent, expected),
                time_window="current",
                description=(
                    f"Excessive concurrent transcriptions: {concurrent} active "
                    f"(expected max {expected})"
                ),
            ),
        )
    ]


HEURISTICS: List[Heuristic] = [
    detect_spikes,
    detect_rapid_depletion,
    detect_mode_abuse,
    detect_concurrent_excess,
]


def evaluate(
    snapshot: UsageSnapshot,
    pattern: UsagePattern,
    config: DetectionConfig,
) -> List[UsageAnomaly]:
    """
    Run every heuristic and merge the results.

    Results are ordered by heuristic, then by mode. Heuristics never
    suppress each other.
    """
    anomalies: List[UsageAnomaly] = []
    for heuristic in HEURISTICS:
        anomalies.extend(heuristic(snapshot, pattern, config))
    return anomalies


def calculate_risk_score(anomalies: List[UsageAnomaly]) -> int:
    """
    Sum of severity weights across anomalies.

    Example:
        >>> calculate_risk_score([])
        0
    """
    return sum(SEVERITY_WEIGHTS[anomaly.severity] for anomaly in anomalies)
