"""
Async Redis store for pending batched notifications.

Batched alerts wait here until their window flushes, so a restart of the
detector does not lose queued notifications.

Key Patterns:
    - Window open time: `batch:{window_seconds}:opened_at` (ISO timestamp)
    - Organizations in a window: `batch:{window_seconds}:orgs` (set)
    - Queued alert ids: `batch:{window_seconds}:org:{organization_id}` (list)
    - All queued alert ids: `batch:pending` (set)

Example:
    >>> from usage_alerts.config.models import RedisConnectionConfig
    >>> from usage_alerts.storage.redis_client import RedisBatchStore
    >>>
    >>> store = RedisBatchStore(RedisConnectionConfig(url="redis://localhost:6379"))
    >>> await store.connect()
    >>> await store.enqueue(300, "org-1", "alert-1", now)
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

import structlog
from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError, TimeoutError as RedisTimeoutError, WatchError

from usage_alerts.config.models import RedisConnectionConfig
from usage_alerts.storage.base import StorageError

logger = structlog.get_logger(__name__)


class RedisClientError(StorageError):
    """Base exception for Redis client errors."""

    pass


class RedisConnectionException(RedisClientError):
    """Raised when Redis connection fails."""

    pass


class RedisOperationError(RedisClientError):
    """Raised when a Redis operation fails."""

    pass


class RedisBatchStore:
    """
    Redis-backed pending batch store.

    Attributes:
        config: Redis connection configuration.
        _pool: Connection pool for efficient connection reuse.
        _client: Redis client instance.
        _connected: Whether the client is connected.
    """

    # Key prefixes
    KEY_BATCH = "batch"
    KEY_PENDING = "batch:pending"

    SOCKET_TIMEOUT = 5

    # Drain restarts allowed when an enqueue races it
    MAX_DRAIN_ATTEMPTS = 5

    def __init__(self, config: RedisConnectionConfig) -> None:
        self.config = config
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[Redis] = None  # type: ignore[type-arg]
        self._connected: bool = False

        logger.info(
            "redis_client_initialized",
            url=config.url,
            db=config.db,
            max_connections=config.max_connections,
        )

    @property
    def is_connected(self) -> bool:
        """Check if the client is connected to Redis."""
        return self._connected and self._client is not None

    async def connect(self) -> None:
        """
        Establish connection to Redis.

        Raises:
            RedisConnectionException: If connection fails.
        """
        if self._connected:
            logger.warning("redis_already_connected")
            return

        try:
            self._pool = ConnectionPool.from_url(
                self.config.url,
                db=self.config.db,
                max_connections=self.config.max_connections,
                socket_timeout=self.SOCKET_TIMEOUT,
                socket_connect_timeout=self.SOCKET_TIMEOUT,
                decode_responses=True,
            )
            self._client = Redis(connection_pool=self._pool)

            await self._client.ping()
            self._connected = True

            logger.info(
                "redis_connected",
                url=self.config.url,
                db=self.config.db,
            )

        except (RedisConnectionError, RedisTimeoutError, OSError) as e:
            self._connected = False
            logger.error(
                "redis_connection_failed",
                url=self.config.url,
                error=str(e),
            )
            raise RedisConnectionException(
                f"Failed to connect to Redis at {self.config.url}: {e}"
            ) from e

    async def disconnect(self) -> None:
        """
        Close Redis connection and release resources.

        Safe to call multiple times.
        """
        if self._client is not None:
            try:
                await self._client.aclose()
            except RedisError as e:
                logger.warning("redis_close_error", error=str(e))
            finally:
                self._client = None

        if self._pool is not None:
            try:
                await self._pool.aclose()
            except Exception as e:
                logger.warning("redis_pool_close_error", error=str(e))
            finally:
                self._pool = None

        self._connected = False
        logger.info("redis_disconnected")

    async def ping(self) -> bool:
        """Check Redis connection health."""
        if not self._client:
            return False

        try:
            await self._client.ping()
            return True
        except RedisError as e:
            logger.warning("redis_ping_failed", error=str(e))
            return False

    def _require_connection(self) -> Redis:  # type: ignore[type-arg]
        """
        Ensure client is connected and return the Redis instance.

        Raises:
            RedisConnectionException: If not connected.
        """
        if not self._connected or self._client is None:
            raise RedisConnectionException("Redis client is not connected")
        return self._client

    # =========================================================================
    # KEYS
    # =========================================================================

    def _opened_key(self, window_seconds: int) -> str:
        return f"{self.KEY_BATCH}:{window_seconds}:opened_at"

    def _orgs_key(self, window_seconds: int) -> str:
        return f"{self.KEY_BATCH}:{window_seconds}:orgs"

    def _queue_key(self, window_seconds: int, organization_id: str) -> str:
        return f"{self.KEY_BATCH}:{window_seconds}:org:{organization_id}"

    # =========================================================================
    # BATCH STORE
    # =========================================================================

    async def enqueue(
        self,
        window_seconds: int,
        organization_id: str,
        alert_id: str,
        now: datetime,
    ) -> None:
        """
        Queue an alert id in a window, opening the window if needed.

        Raises:
            RedisOperationError: If the operation fails.
        """
        client = self._require_connection()

        try:
            async with client.pipeline(transaction=True) as pipe:
                pipe.set(self._opened_key(window_seconds), now.isoformat(), nx=True)
                pipe.sadd(self._orgs_key(window_seconds), organization_id)
                pipe.rpush(self._queue_key(window_seconds, organization_id), alert_id)
                pipe.sadd(self.KEY_PENDING, alert_id)
                await pipe.execute()

            logger.debug(
                "batch_alert_queued",
                window_seconds=window_seconds,
                organization_id=organization_id,
                alert_id=alert_id,
            )

        except RedisError as e:
            logger.error(
                "batch_enqueue_failed",
                alert_id=alert_id,
                error=str(e),
            )
            raise RedisOperationError(f"Failed to queue alert {alert_id}: {e}") from e

    async def opened_at(self, window_seconds: int) -> Optional[datetime]:
        """Get when a window was opened, or None if it holds nothing."""
        client = self._require_connection()

        try:
            raw = await client.get(self._opened_key(window_seconds))
        except RedisError as e:
            raise RedisOperationError(f"Failed to read window {window_seconds}: {e}") from e

        return datetime.fromisoformat(raw) if raw else None

    async def windows(self) -> List[int]:
        """Get the windows that currently hold queued alerts."""
        client = self._require_connection()

        try:
            keys = [key async for key in client.scan_iter(match=f"{self.KEY_BATCH}:*:opened_at")]
        except RedisError as e:
            raise RedisOperationError(f"Failed to list batch windows: {e}") from e

        return sorted(int(key.split(":")[1]) for key in keys)

    async def drain(self, window_seconds: int) -> Dict[str, List[str]]:
        """
        Remove and return everything queued in a window.

        The window's keys are watched while they are read, so an enqueue
        that lands between the read and the delete aborts the transaction
        and the drain starts over.

        Returns:
            Dict[str, List[str]]: Alert ids in queue order, keyed by organization.

        Raises:
            RedisOperationError: If the operation fails or keeps conflicting.
        """
        client = self._require_connection()
        opened_key = self._opened_key(window_seconds)
        orgs_key = self._orgs_key(window_seconds)

        try:
            async with client.pipeline(transaction=True) as pipe:
                for attempt in range(self.MAX_DRAIN_ATTEMPTS):
                    try:
                        await pipe.watch(opened_key, orgs_key)
                        organizations = sorted(await pipe.smembers(orgs_key))
                        queue_keys = {
                            org: self._queue_key(window_seconds, org) for org in organizations
                        }
                        if queue_keys:
                            await pipe.watch(*queue_keys.values())

                        drained: Dict[str, List[str]] = {}
                        for organization_id, key in queue_keys.items():
                            drained[organization_id] = await pipe.lrange(key, 0, -1)

                        pipe.multi()
                        pipe.delete(opened_key)
                        pipe.delete(orgs_key)
                        for organization_id, alert_ids in drained.items():
                            pipe.delete(queue_keys[organization_id])
                            if alert_ids:
                                pipe.srem(self.KEY_PENDING, *alert_ids)
                        await pipe.execute()
                        return drained

                    except WatchError:
                        logger.debug(
                            "batch_drain_conflict",
                            window_seconds=window_seconds,
                            attempt=attempt + 1,
                        )

        except RedisError as e:
            logger.error(
                "batch_drain_failed",
                window_seconds=window_seconds,
                error=str(e),
            )
            raise RedisOperationError(f"Failed to drain window {window_seconds}: {e}") from e

        logger.error(
            "batch_drain_failed",
            window_seconds=window_seconds,
            error="concurrent modification",
        )
        raise RedisOperationError(
            f"Failed to drain window {window_seconds}: still changing after "
            f"{self.MAX_DRAIN_ATTEMPTS} attempts"
        )

    async def is_pending(self, alert_id: str) -> bool:
        """Check if an alert is waiting in any window."""
        client = self._require_connection()

        try:
            return bool(await client.sismember(self.KEY_PENDING, alert_id))
        except RedisError as e:
            raise RedisOperationError(f"Failed to check alert {alert_id}: {e}") from e
