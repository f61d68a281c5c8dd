"""
Storage layer for the usage alerting engine.

This module provides the storage protocols the engine depends on, plus
PostgreSQL (usage, organizations, alerts), Redis (pending notification
batches) and in-memory implementations.

Components:
    base: Protocols and storage exceptions
    memory: In-memory stores for tests and local runs
    postgres_client: Async PostgreSQL client implementing all three protocols
    redis_client: Async Redis store for pending notification batches
"""

from usage_alerts.storage.base import (
    AlertPersistenceError,
    AlertRepository,
    DuplicateAlertError,
    OrganizationDirectory,
    StorageError,
    UsageHistoryStore,
)
from usage_alerts.storage.memory import (
    InMemoryAlertRepository,
    InMemoryOrganizationDirectory,
    InMemoryUsageStore,
)

__all__: list[str] = [
    # Protocols
    "UsageHistoryStore",
    "OrganizationDirectory",
    "AlertRepository",
    # Exceptions
    "StorageError",
    "AlertPersistenceError",
    "DuplicateAlertError",
    # In-memory
    "InMemoryUsageStore",
    "InMemoryOrganizationDirectory",
    "InMemoryAlertRepository",
]
