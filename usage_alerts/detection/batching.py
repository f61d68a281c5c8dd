"""
Pending batch storage for batched notifications.

Alerts with a batched cadence wait in a window until it flushes. A window
is keyed by its length in seconds and opens when its first alert arrives;
within it alerts are grouped by organization.

Implementations:
    InMemoryBatchStore: Process-local, for tests and single-process runs
    RedisBatchStore: Survives restarts (usage_alerts.storage.redis_client)
"""

from datetime import datetime
from typing import Dict, List, Optional, Protocol, Set, runtime_checkable


@runtime_checkable
class BatchStore(Protocol):
    """Protocol for pending batch stores."""

    async def enqueue(
        self,
        window_seconds: int,
        organization_id: str,
        alert_id: str,
        now: datetime,
    ) -> None:
        ...

    async def opened_at(self, window_seconds: int) -> Optional[datetime]:
        ...

    async def windows(self) -> List[int]:
        ...

    async def drain(self, window_seconds: int) -> Dict[str, List[str]]:
        ...

    async def is_pending(self, alert_id: str) -> bool:
        ...


class InMemoryBatchStore:
    """
    Process-local pending batch store.

    Example:
        >>> store = InMemoryBatchStore()
        >>> await store.enqueue(300, "org-1", "alert-1", now)
        >>> await store.drain(300)
        {'org-1': ['alert-1']}
    """

    def __init__(self) -> None:
        self._opened: Dict[int, datetime] = {}
        self._queues: Dict[int, Dict[str, List[str]]] = {}
        self._pending: Set[str] = set()

    async def enqueue(
        self,
        window_seconds: int,
        organization_id: str,
        alert_id: str,
        now: datetime,
    ) -> None:
        self._opened.setdefault(window_seconds, now)
        queue = self._queues.setdefault(window_seconds, {}).setdefault(organization_id, [])
        queue.append(alert_id)
        self._pending.add(alert_id)

    async def opened_at(self, window_seconds: int) -> Optional[datetime]:
        return self._opened.get(window_seconds)

    async def windows(self) -> List[int]:
        return sorted(self._opened)

    async def drain(self, window_seconds: int) -> Dict[str, List[str]]:
        self._opened.pop(window_seconds, None)
        drained = self._queues.pop(window_seconds, {})
        for alert_ids in drained.values():
            self._pending.difference_update(alert_ids)
        return {org: list(ids) for org, ids in sorted(drained.items())}

    async def is_pending(self, alert_id: str) -> bool:
        return alert_id in self._pending
