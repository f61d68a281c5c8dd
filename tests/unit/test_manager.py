"""Tests for the alert manager."""

import asyncio

from usage_alerts.detection.manager import AlertManager, anomaly_title
from usage_alerts.models.alerts import AlertType
from usage_alerts.models.usage import (
    AnomalyDetails,
    AnomalyType,
    Mode,
    Severity,
    UsageAnomaly,
)
from usage_alerts.storage.base import DuplicateAlertError, StorageError


def make_anomaly(
    anomaly_type: AnomalyType = AnomalyType.RAPID_DEPLETION,
    severity: Severity = Severity.CRITICAL,
    mode: Mode = Mode.PRECISION,
    organization_id: str = "org-acme",
) -> UsageAnomaly:
    return UsageAnomaly(
        organization_id=organization_id,
        type=anomaly_type,
        severity=severity,
        mode=mode,
        details=AnomalyDetails(
            current_value=90.0,
            expected_value=20.0,
            deviation_pct=350.0,
            time_window="6 days",
            description="precision mode depleting rapidly",
        ),
    )


class TestAnomalyTitle:
    def test_title_includes_mode(self):
        anomaly = make_anomaly(AnomalyType.SPIKE, mode=Mode.FAST)
        assert anomaly_title(anomaly) == "Usage Spike Detected - fast mode"

    def test_concurrent_title_has_no_mode(self):
        anomaly = make_anomaly(AnomalyType.CONCURRENT_EXCESS, mode=Mode.FAST)
        assert anomaly_title(anomaly) == "Excessive Concurrent Transcriptions"


class TestCreateAlert:
    """Tests for alert creation and deduplication."""

    async def test_open_duplicate_returns_none(self, manager, repository):
        first = await manager.create_alert("org-acme", AlertType.ANOMALY, Severity.HIGH, "Spike")
        second = await manager.create_alert("org-acme", AlertType.ANOMALY, Severity.HIGH, "Spike")

        assert first is not None
        assert second is None
        assert len(repository) == 1

    async def test_other_organization_is_not_a_duplicate(self, manager):
        first = await manager.create_alert("org-acme", AlertType.ANOMALY, Severity.HIGH, "Spike")
        second = await manager.create_alert("org-globex", AlertType.ANOMALY, Severity.HIGH, "Spike")

        assert first is not None
        assert second is not None

    async def test_resolved_alert_allows_new_one(self, manager):
        first = await manager.create_alert("org-acme", AlertType.ANOMALY, Severity.HIGH, "Spike")
        await manager.resolve_alert(first.id)

        second = await manager.create_alert("org-acme", AlertType.ANOMALY, Severity.HIGH, "Spike")

        assert second is not None
        assert second.id != first.id

    async def test_uniqueness_violation_returns_none(self, repository):
        async def reject(alert):
            raise DuplicateAlertError(alert.organization_id, alert.type.value, alert.title)

        repository.insert = reject
        manager = AlertManager(repository)

        assert await manager.create_alert("org-acme", AlertType.ANOMALY, Severity.HIGH, "Spike") is None

    async def test_storage_failure_returns_none(self, repository):
        async def fail(*args, **kwargs):
            raise StorageError("database unavailable")

        repository.find_open = fail
        manager = AlertManager(repository)

        assert await manager.create_alert("org-acme", AlertType.ANOMALY, Severity.HIGH, "Spike") is None

    async def test_concurrent_creates_yield_one_alert(self, manager, repository):
        results = await asyncio.gather(
            *(
                manager.create_alert("org-acme", AlertType.ANOMALY, Severity.HIGH, "Spike")
                for _ in range(5)
            )
        )

        assert sum(1 for r in results if r is not None) == 1
        assert len(repository) == 1


class TestProcessAnomalies:
    """Tests for converting anomalies into alerts."""

    async def test_creates_alert_with_metadata(self, manager):
        alerts = await manager.process_anomalies([make_anomaly()], organization_name="Acme")

        assert len(alerts) == 1
        alert = alerts[0]
        assert alert.type == AlertType.ANOMALY
        assert alert.severity == Severity.CRITICAL
        assert alert.title == "Rapid Credit Depletion - precision mode"
        assert alert.description == "precision mode depleting rapidly"
        assert alert.metadata["anomaly_type"] == "rapid_depletion"
        assert alert.metadata["organization_name"] == "Acme"
        assert alert.metadata["current_value"] == 90.0

    async def test_low_severity_never_becomes_alert(self, manager, repository):
        alerts = await manager.process_anomalies([make_anomaly(severity=Severity.LOW)])

        assert alerts == []
        assert len(repository) == 0

    async def test_repeated_anomaly_is_deduplicated(self, manager):
        first = await manager.process_anomalies([make_anomaly()])
        second = await manager.process_anomalies([make_anomaly()])

        assert len(first) == 1
        assert second == []


class TestResolveAlert:
    """Tests for alert resolution."""

    async def test_resolve_sets_fields(self, manager):
        alert = await manager.create_alert("org-acme", AlertType.ANOMALY, Severity.HIGH, "Spike")

        resolved = await manager.resolve_alert(alert.id, resolved_by="ops@acme.io")

        assert resolved.resolved is True
        assert resolved.resolved_at is not None
        assert resolved.metadata["resolved_by"] == "ops@acme.io"
        assert await manager.get_active_alerts() == []

    async def test_resolve_twice_is_noop(self, manager):
        alert = await manager.create_alert("org-acme", AlertType.ANOMALY, Severity.HIGH, "Spike")
        first = await manager.resolve_alert(alert.id, resolved_by="a")

        second = await manager.resolve_alert(alert.id, resolved_by="b")

        assert second.resolved_at == first.resolved_at
        assert second.metadata["resolved_by"] == "a"

    async def test_unknown_alert(self, manager):
        assert await manager.resolve_alert("missing") is None


class TestQueries:
    async def test_active_alerts_newest_first(self, manager):
        older = await manager.create_alert("org-acme", AlertType.ANOMALY, Severity.HIGH, "A")
        newer = await manager.create_alert("org-acme", AlertType.ANOMALY, Severity.HIGH, "B")
        await manager.create_alert("org-globex", AlertType.ANOMALY, Severity.HIGH, "C")

        active = await manager.get_active_alerts("org-acme")

        assert [a.id for a in active] == [newer.id, older.id]
        assert len(await manager.get_active_alerts()) == 3

    async def test_record_notifications_appends_without_duplicates(self, manager):
        alert = await manager.create_alert("org-acme", AlertType.ANOMALY, Severity.HIGH, "A")

        await manager.record_notifications(alert.id, ["email"])
        updated = await manager.record_notifications(alert.id, ["email", "chat-webhook"])

        assert updated.notifications_sent == ["email", "chat-webhook"]
