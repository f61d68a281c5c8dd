"""Tests for the per-tenant anomaly detector."""

from datetime import timedelta

from usage_alerts.detection.detector import last_hour_minutes
from usage_alerts.models.usage import AnomalyType, Mode, RecentSession, Severity


def test_last_hour_minutes_rounds_each_session_up(as_of):
    sessions = [
        RecentSession(mode=Mode.FAST, duration_seconds=90, timestamp=as_of - timedelta(minutes=5)),
        RecentSession(mode=Mode.FAST, duration_seconds=60, timestamp=as_of - timedelta(minutes=30)),
        RecentSession(mode=Mode.PRECISION, duration_seconds=1, timestamp=as_of - timedelta(minutes=59)),
        RecentSession(mode=Mode.FAST, duration_seconds=600, timestamp=as_of - timedelta(hours=2)),
    ]

    totals = last_hour_minutes(sessions, as_of)

    assert totals == {Mode.FAST: 3, Mode.BALANCED: 0, Mode.PRECISION: 1}


async def test_detect_spike_from_history(detector, usage_store, as_of):
    # 13 weeks at 70 minutes a week
    for week in range(13):
        usage_store.add_usage("org-acme", Mode.FAST, 70, as_of - timedelta(days=week * 7, hours=3))
    usage_store.add_session("org-acme", Mode.FAST, 1800, as_of - timedelta(minutes=10))
    usage_store.add_session("org-acme", Mode.FAST, 1800, as_of - timedelta(minutes=40))

    anomalies = await detector.detect("org-acme", as_of)

    assert len(anomalies) == 1
    assert anomalies[0].type == AnomalyType.SPIKE
    assert anomalies[0].severity == Severity.HIGH
    assert anomalies[0].details.current_value == 60


async def test_detect_treats_naive_time_as_utc(detector, usage_store, as_of):
    usage_store.add_session("org-acme", Mode.FAST, 1800, as_of - timedelta(minutes=10))
    usage_store.set_concurrent_sessions("org-acme", 11)

    naive = await detector.detect("org-acme", as_of.replace(tzinfo=None))
    aware = await detector.detect("org-acme", as_of)

    assert [a.type for a in naive] == [a.type for a in aware] == [AnomalyType.CONCURRENT_EXCESS]
    assert naive[0].detected_at == aware[0].detected_at


async def test_detect_uses_directory_tier(detector, usage_store, as_of):
    usage_store.set_concurrent_sessions("org-globex", 21)

    anomalies = await detector.detect("org-globex", as_of)

    # business tier expects 10, so 21 is over twice that
    assert [a.type for a in anomalies] == [AnomalyType.CONCURRENT_EXCESS]
    assert anomalies[0].details.expected_value == 10


async def test_detect_quiet_tenant(detector, as_of):
    assert await detector.detect("org-acme", as_of) == []


async def test_snapshot_collects_current_state(detector, usage_store, as_of):
    usage_store.set_quota("org-acme", Mode.BALANCED, used=10, limit=100)
    usage_store.add_session("org-acme", Mode.BALANCED, 300, as_of - timedelta(hours=3))
    usage_store.add_session("org-acme", Mode.BALANCED, 300, as_of - timedelta(days=2))
    usage_store.set_concurrent_sessions("org-acme", 2)

    snapshot = await detector.snapshot("org-acme", as_of)

    assert snapshot.tier == "pro"
    assert snapshot.month_usage[Mode.BALANCED].used == 10
    assert len(snapshot.recent_sessions) == 1
    assert snapshot.concurrent_sessions == 2
    assert snapshot.last_hour_minutes[Mode.BALANCED] == 0
