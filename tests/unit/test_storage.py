"""Tests for storage implementations."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import WatchError

from usage_alerts.config.models import PostgresConnectionConfig, RedisConnectionConfig
from usage_alerts.detection.batching import InMemoryBatchStore
from usage_alerts.models.alerts import Alert
from usage_alerts.models.usage import Mode, Severity
from usage_alerts.storage.base import (
    AlertRepository,
    DuplicateAlertError,
    OrganizationDirectory,
    UsageHistoryStore,
)
from usage_alerts.storage.memory import (
    InMemoryAlertRepository,
    InMemoryOrganizationDirectory,
    InMemoryUsageStore,
)
from usage_alerts.storage.postgres_client import PostgresClient, PostgresConnectionException
from usage_alerts.storage.redis_client import (
    RedisBatchStore,
    RedisConnectionException,
    RedisOperationError,
)


def test_in_memory_stores_satisfy_protocols():
    assert isinstance(InMemoryUsageStore(), UsageHistoryStore)
    assert isinstance(InMemoryOrganizationDirectory(), OrganizationDirectory)
    assert isinstance(InMemoryAlertRepository(), AlertRepository)


class TestInMemoryAlertRepository:
    async def test_open_duplicate_rejected(self, repository):
        await repository.insert(Alert(organization_id="org-acme", severity=Severity.HIGH, title="Spike"))

        with pytest.raises(DuplicateAlertError):
            await repository.insert(Alert(organization_id="org-acme", severity=Severity.HIGH, title="Spike"))

    async def test_mark_resolved_frees_key(self, repository):
        alert = await repository.insert(
            Alert(organization_id="org-acme", severity=Severity.HIGH, title="Spike")
        )

        resolved = await repository.mark_resolved(alert.id, datetime.now(timezone.utc), "ops")

        assert resolved.resolved
        assert await repository.find_open("org-acme", "anomaly", "Spike") is None

    async def test_unknown_ids(self, repository):
        assert await repository.mark_resolved("missing", datetime.now(timezone.utc)) is None
        assert await repository.append_notifications("missing", ["email"]) is None


class TestInMemoryUsageStore:
    async def test_recent_activity_window_newest_first(self, usage_store, as_of):
        usage_store.add_session("org-acme", Mode.FAST, 60, as_of - timedelta(hours=2))
        usage_store.add_session("org-acme", Mode.FAST, 60, as_of - timedelta(minutes=5))
        usage_store.add_session("org-acme", Mode.FAST, 60, as_of - timedelta(hours=30))

        sessions = await usage_store.get_recent_activity("org-acme", timedelta(hours=24), as_of)

        assert [s.timestamp for s in sessions] == [
            as_of - timedelta(minutes=5),
            as_of - timedelta(hours=2),
        ]

    async def test_list_organizations_by_tier(self, directory):
        directory.add_organization("org-trial", tier="trial")

        assert await directory.list_organizations(tiers=["pro", "business"]) == [
            "org-acme",
            "org-globex",
        ]
        assert len(await directory.list_organizations()) == 3


class TestInMemoryBatchStore:
    async def test_enqueue_and_drain(self, as_of):
        store = InMemoryBatchStore()
        await store.enqueue(300, "org-globex", "a-1", as_of)
        await store.enqueue(300, "org-acme", "a-2", as_of + timedelta(seconds=10))

        assert await store.opened_at(300) == as_of
        assert await store.is_pending("a-2")

        drained = await store.drain(300)

        assert drained == {"org-acme": ["a-2"], "org-globex": ["a-1"]}
        assert await store.windows() == []
        assert not await store.is_pending("a-2")


class TestRedisBatchStore:
    def test_key_layout(self):
        store = RedisBatchStore(RedisConnectionConfig())

        assert store._opened_key(300) == "batch:300:opened_at"
        assert store._queue_key(300, "org-acme") == "batch:300:org:org-acme"

    @staticmethod
    def connected_store(pipe: MagicMock) -> RedisBatchStore:
        store = RedisBatchStore(RedisConnectionConfig())
        client = MagicMock()
        client.pipeline.return_value.__aenter__.return_value = pipe
        store._client = client
        store._connected = True
        return store

    @staticmethod
    def watched_pipeline(queues: list) -> MagicMock:
        pipe = MagicMock()
        pipe.watch = AsyncMock()
        pipe.smembers = AsyncMock(return_value={"org-acme"})
        pipe.lrange = AsyncMock(side_effect=queues)
        return pipe

    async def test_drain_restarts_when_enqueue_races_it(self):
        # The second read sees the alert queued while the first drain was in flight
        pipe = self.watched_pipeline([["a-1"], ["a-1", "a-2"]])
        pipe.execute = AsyncMock(side_effect=[WatchError("batch:300:org:org-acme"), [1, 1, 1, 2]])
        store = self.connected_store(pipe)

        drained = await store.drain(300)

        assert drained == {"org-acme": ["a-1", "a-2"]}
        assert pipe.execute.await_count == 2
        pipe.watch.assert_any_await("batch:300:opened_at", "batch:300:orgs")
        pipe.watch.assert_any_await("batch:300:org:org-acme")
        pipe.srem.assert_called_with("batch:pending", "a-1", "a-2")

    async def test_drain_gives_up_after_repeated_conflicts(self):
        attempts = RedisBatchStore.MAX_DRAIN_ATTEMPTS
        pipe = self.watched_pipeline([["a-1"]] * attempts)
        pipe.execute = AsyncMock(side_effect=WatchError("batch:300:orgs"))
        store = self.connected_store(pipe)

        with pytest.raises(RedisOperationError):
            await store.drain(300)
        assert pipe.execute.await_count == attempts

    async def test_requires_connection(self, as_of):
        store = RedisBatchStore(RedisConnectionConfig())

        with pytest.raises(RedisConnectionException):
            await store.enqueue(300, "org-acme", "a-1", as_of)
        assert await store.ping() is False


class TestPostgresClient:
    def test_password_hidden_in_logs(self):
        client = PostgresClient(PostgresConnectionConfig(url="postgresql://u:secret@db:5432/alerts"))

        assert "secret" not in client._sanitize_url(client.config.url)

    async def test_requires_connection(self):
        client = PostgresClient(PostgresConnectionConfig())

        with pytest.raises(PostgresConnectionException):
            await client.get_tier("org-acme")
