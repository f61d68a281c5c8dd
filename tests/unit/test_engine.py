"""Tests for detection cycles and the scheduler."""

import asyncio
from datetime import timedelta

from usage_alerts.detection.scheduler import CycleScheduler
from usage_alerts.models.alerts import NotificationState
from usage_alerts.models.usage import Mode, Severity
from usage_alerts.storage.base import StorageError


def deplete(usage_store, organization_id, used=90):
    usage_store.set_quota(organization_id, Mode.PRECISION, used=used, limit=100)


class TestDetectionCycle:
    """Tests for DetectionEngine.run_detection_cycle."""

    async def test_critical_depletion_notified_immediately(self, engine, usage_store, channels, as_of):
        deplete(usage_store, "org-acme")

        alerts = await engine.run_detection_cycle(["org-acme"], as_of=as_of)

        assert len(alerts) == 1
        alert = alerts[0]
        assert alert.severity == Severity.CRITICAL
        assert alert.title == "Rapid Credit Depletion - precision mode"
        assert alert.metadata["organization_name"] == "Acme"
        assert alert.notifications_sent == ["email", "chat-webhook", "generic-webhook"]
        assert channels["email"].send.await_count == 1

    async def test_second_cycle_is_idempotent(self, engine, usage_store, repository, channels, as_of):
        deplete(usage_store, "org-acme")

        first = await engine.run_detection_cycle(["org-acme"], as_of=as_of)
        second = await engine.run_detection_cycle(["org-acme"], as_of=as_of + timedelta(minutes=15))

        assert len(first) == 1
        assert second == []
        assert len(repository) == 1
        assert channels["email"].send.await_count == 1

    async def test_resolution_allows_the_alert_to_fire_again(self, engine, usage_store, as_of):
        deplete(usage_store, "org-acme")
        first = await engine.run_detection_cycle(["org-acme"], as_of=as_of)

        await engine.resolve_alert(first[0].id, resolved_by="ops")
        second = await engine.run_detection_cycle(["org-acme"], as_of=as_of)

        assert len(second) == 1
        assert second[0].id != first[0].id

    async def test_tenant_failure_does_not_abort_cycle(self, engine, usage_store, monkeypatch, as_of):
        deplete(usage_store, "org-acme")
        deplete(usage_store, "org-globex")
        detect = engine.detector.detect

        async def flaky_detect(organization_id, as_of=None):
            if organization_id == "org-acme":
                raise RuntimeError("usage store timeout")
            return await detect(organization_id, as_of)

        monkeypatch.setattr(engine.detector, "detect", flaky_detect)

        alerts = await engine.run_detection_cycle(["org-acme", "org-globex"], as_of=as_of)

        assert [a.organization_id for a in alerts] == ["org-globex"]

    async def test_batch_queue_failure_still_returns_and_notifies(
        self, engine, usage_store, batch_store, channels, monkeypatch, as_of
    ):
        # 60% used at 20% of the month is high severity, so it is batched
        usage_store.set_quota("org-acme", Mode.FAST, used=60, limit=100)

        async def broken_enqueue(*args, **kwargs):
            raise StorageError("batch queue unavailable")

        monkeypatch.setattr(batch_store, "enqueue", broken_enqueue)

        alerts = await engine.run_detection_cycle(["org-acme"], as_of=as_of)

        assert [a.title for a in alerts] == ["Rapid Credit Depletion - fast mode"]
        assert alerts[0].notifications_sent == ["email", "chat-webhook"]
        assert await engine.router.notification_state(alerts[0]) == NotificationState.SENT_FULL
        channels["email"].send.assert_awaited_once()

    async def test_routing_failure_still_returns_created_alerts(
        self, engine, usage_store, repository, monkeypatch, as_of
    ):
        deplete(usage_store, "org-acme")

        async def broken_route(alerts, now=None):
            raise RuntimeError("router unavailable")

        monkeypatch.setattr(engine.router, "route", broken_route)

        alerts = await engine.run_detection_cycle(["org-acme"], as_of=as_of)

        assert [a.title for a in alerts] == ["Rapid Credit Depletion - precision mode"]
        assert [a.id for a in repository.all()] == [alerts[0].id]

    async def test_results_follow_tenant_order(self, engine, usage_store, as_of):
        deplete(usage_store, "org-acme")
        deplete(usage_store, "org-globex")

        alerts = await engine.run_detection_cycle(["org-globex", "org-acme"], as_of=as_of)

        assert [a.organization_id for a in alerts] == ["org-globex", "org-acme"]

    async def test_default_cycle_covers_monitored_tiers_only(
        self, engine, usage_store, directory, as_of
    ):
        directory.add_organization("org-trial", name="Trial Co", tier="trial")
        deplete(usage_store, "org-acme")
        deplete(usage_store, "org-trial")

        alerts = await engine.run_detection_cycle(as_of=as_of)

        assert [a.organization_id for a in alerts] == ["org-acme"]

    async def test_anomalies_below_alert_threshold_are_dropped(self, engine, usage_store, repository, as_of):
        usage_store.set_quota("org-acme", Mode.BALANCED, used=0, limit=1000)
        usage_store.set_quota("org-acme", Mode.PRECISION, used=150, limit=1000)

        alerts = await engine.run_detection_cycle(["org-acme"], as_of=as_of)

        assert alerts == []
        assert len(repository) == 0


class TestDelegates:
    async def test_active_alerts_and_flush(self, engine, usage_store, channels, as_of):
        # pro tier expects 5 concurrent sessions, 11 is high severity
        usage_store.set_concurrent_sessions("org-acme", 11)
        alerts = await engine.run_detection_cycle(["org-acme"], as_of=as_of)

        active = await engine.get_active_alerts("org-acme")
        assert [a.id for a in active] == [alerts[0].id]
        assert await engine.router.notification_state(active[0]) == NotificationState.PENDING

        summaries = await engine.flush_due_batches(as_of + timedelta(minutes=5))

        assert len(summaries) == 1
        channels["chat-webhook"].send_summary.assert_awaited_once()

    def test_policy_accessors(self, engine):
        assert engine.get_policy().for_severity(Severity.LOW).is_silent


class TestCycleScheduler:
    """Tests for CycleScheduler."""

    async def test_run_once_runs_cycle_and_flush_check(self, engine, usage_store, as_of):
        usage_store.set_concurrent_sessions("org-acme", 11)
        scheduler = CycleScheduler(engine, detection_interval_seconds=900, flush_interval_seconds=30)

        alerts, summaries = await scheduler.run_once(as_of)
        assert len(alerts) == 1
        assert summaries == []

        alerts, summaries = await scheduler.run_once(as_of + timedelta(minutes=5))
        assert alerts == []
        assert len(summaries) == 1

    async def test_run_stops_on_shutdown(self, engine):
        scheduler = CycleScheduler(engine, detection_interval_seconds=0.01, flush_interval_seconds=0.01)
        shutdown = asyncio.Event()

        task = asyncio.create_task(scheduler.run(shutdown))
        await asyncio.sleep(0.05)
        shutdown.set()

        await asyncio.wait_for(task, timeout=1)
        assert task.done()
