"""
Pytest configuration and shared fixtures.

Provides in-memory stores, stub notification channels and a fully wired
engine for unit tests.
"""

from datetime import datetime, timezone
from typing import Dict, Optional
from unittest.mock import AsyncMock

import pytest

from usage_alerts.config.models import DetectionConfig, NotificationPolicy
from usage_alerts.detection.batching import InMemoryBatchStore
from usage_alerts.detection.detector import AnomalyDetector
from usage_alerts.detection.dispatcher import NotificationRouter
from usage_alerts.detection.engine import DetectionEngine
from usage_alerts.detection.manager import AlertManager
from usage_alerts.models.alerts import ChannelResult
from usage_alerts.storage.memory import (
    InMemoryAlertRepository,
    InMemoryOrganizationDirectory,
    InMemoryUsageStore,
)

CHANNEL_NAMES = ("email", "chat-webhook", "generic-webhook")


def make_channel(name: str, success: bool = True, error: Optional[str] = None) -> AsyncMock:
    """
    Build a stub channel whose send and send_summary return a fixed result.

    Args:
        name: Channel name.
        success: Whether sends succeed.
        error: Error reported on failure.
    """
    channel = AsyncMock()
    channel.name = name
    result = ChannelResult(channel=name, success=success, error=error)
    channel.send.return_value = result
    channel.send_summary.return_value = result
    return channel


@pytest.fixture
def as_of() -> datetime:
    """June has 30 days, so the 6th is exactly 20% through the month."""
    return datetime(2026, 6, 6, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def usage_store() -> InMemoryUsageStore:
    return InMemoryUsageStore()


@pytest.fixture
def directory() -> InMemoryOrganizationDirectory:
    directory = InMemoryOrganizationDirectory()
    directory.add_organization("org-acme", name="Acme", tier="pro")
    directory.add_organization("org-globex", name="Globex", tier="business")
    return directory


@pytest.fixture
def repository() -> InMemoryAlertRepository:
    return InMemoryAlertRepository()


@pytest.fixture
def batch_store() -> InMemoryBatchStore:
    return InMemoryBatchStore()


@pytest.fixture
def channel_factory():
    return make_channel


@pytest.fixture
def channels() -> Dict[str, AsyncMock]:
    return {name: make_channel(name) for name in CHANNEL_NAMES}


@pytest.fixture
def manager(repository: InMemoryAlertRepository) -> AlertManager:
    return AlertManager(repository)


@pytest.fixture
def router(
    manager: AlertManager,
    channels: Dict[str, AsyncMock],
    batch_store: InMemoryBatchStore,
) -> NotificationRouter:
    return NotificationRouter(
        manager=manager,
        channels=channels,
        policy=NotificationPolicy(),
        batch_store=batch_store,
    )


@pytest.fixture
def detection_config() -> DetectionConfig:
    return DetectionConfig()


@pytest.fixture
def detector(
    usage_store: InMemoryUsageStore,
    directory: InMemoryOrganizationDirectory,
    detection_config: DetectionConfig,
) -> AnomalyDetector:
    return AnomalyDetector(usage_store, directory, detection_config)


@pytest.fixture
def engine(
    detector: AnomalyDetector,
    manager: AlertManager,
    router: NotificationRouter,
    directory: InMemoryOrganizationDirectory,
    detection_config: DetectionConfig,
) -> DetectionEngine:
    return DetectionEngine(detector, manager, router, directory, detection_config)
