"""
Async PostgreSQL client for usage history, organizations and alerts.

This module provides a PostgreSQL client that implements all three storage
protocols used by the engine: UsageHistoryStore, OrganizationDirectory and
AlertRepository.

Key Tables:
    - organizations: Tenant name, subscription tier and webhook URL
    - transcription_sessions: Sessions with mode, duration and status
    - mode_usage: Month-to-date minutes and limits per mode
    - alerts: Alert history with a partial unique index on open alerts

Example:
    >>> from usage_alerts.config.models import PostgresConnectionConfig
    >>> from usage_alerts.storage.postgres_client import PostgresClient
    >>>
    >>> client = PostgresClient(PostgresConnectionConfig(url="postgresql://..."))
    >>> await client.connect()
    >>> await client.initialize_schema()
    >>> alerts = await client.list_active("org-1")
"""

from __future__ import annotations

import asyncio
import json
import time
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Dict, List, Optional

import structlog

try:
    import asyncpg
    from asyncpg import Connection, Pool, Record
    from asyncpg.exceptions import (
        ConnectionDoesNotExistError,
        InterfaceError,
        PostgresError,
        TooManyConnectionsError,
        UniqueViolationError,
    )
except ImportError as e:
    raise ImportError(
        "asyncpg is required for PostgresClient. Install with: pip install asyncpg"
    ) from e

from usage_alerts.config.models import PostgresConnectionConfig
from usage_alerts.models.alerts import Alert, AlertType
from usage_alerts.models.usage import Mode, ModeQuota, RecentSession, Severity, UsageAggregate
from usage_alerts.storage.base import DuplicateAlertError, StorageError

logger = structlog.get_logger(__name__)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS organizations (
    id TEXT PRIMARY KEY,
    name TEXT,
    subscription_tier TEXT,
    webhook_url TEXT
);

CREATE TABLE IF NOT EXISTS transcription_sessions (
    id TEXT PRIMARY KEY,
    organization_id TEXT NOT NULL REFERENCES organizations (id),
    mode TEXT NOT NULL,
    duration_seconds DOUBLE PRECISION NOT NULL DEFAULT 0,
    status TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_sessions_org_created
    ON transcription_sessions (organization_id, created_at DESC);

CREATE TABLE IF NOT EXISTS mode_usage (
    organization_id TEXT NOT NULL REFERENCES organizations (id),
    month DATE NOT NULL,
    mode TEXT NOT NULL,
    used_minutes DOUBLE PRECISION NOT NULL DEFAULT 0,
    limit_minutes DOUBLE PRECISION NOT NULL DEFAULT 0,
    PRIMARY KEY (organization_id, month, mode)
);

CREATE TABLE IF NOT EXISTS alerts (
    id TEXT PRIMARY KEY,
    organization_id TEXT NOT NULL,
    type TEXT NOT NULL,
    severity TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    resolved BOOLEAN NOT NULL DEFAULT FALSE,
    resolved_at TIMESTAMPTZ,
    notifications_sent TEXT[] NOT NULL DEFAULT '{}'
);

CREATE UNIQUE INDEX IF NOT EXISTS uq_alerts_open_dedup
    ON alerts (organization_id, type, title)
    WHERE NOT resolved;

CREATE INDEX IF NOT EXISTS idx_alerts_active_created
    ON alerts (created_at DESC)
    WHERE NOT resolved;
"""

ACTIVE_SESSION_STATUSES = ("processing", "uploading")


class PostgresClientError(StorageError):
    """Base exception for PostgreSQL client errors."""

    pass


class PostgresConnectionException(PostgresClientError):
    """Raised when PostgreSQL connection fails."""

    pass


class PostgresOperationError(PostgresClientError):
    """Raised when a PostgreSQL operation fails."""

    pass


def _row_to_alert(row: Record) -> Alert:
    """
    Convert an alerts row to an Alert.

    Args:
        row: asyncpg record from the alerts table.

    Returns:
        Alert: Parsed alert.
    """
    metadata = row["metadata"]
    if isinstance(metadata, str):
        metadata = json.loads(metadata)

    return Alert(
        id=row["id"],
        organization_id=row["organization_id"],
        type=AlertType(row["type"]),
        severity=Severity(row["severity"]),
        title=row["title"],
        description=row["description"],
        metadata=metadata or {},
        created_at=row["created_at"],
        resolved=row["resolved"],
        resolved_at=row["resolved_at"],
        notifications_sent=list(row["notifications_sent"] or []),
    )


class PostgresClient:
    """
    Async PostgreSQL client for the usage alerting engine.

    Provides usage history reads, organization lookups and the alert
    repository on top of one connection pool.

    Attributes:
        config: PostgreSQL connection configuration.
        _pool: Connection pool for efficient connection reuse.
        _connected: Whether the client is connected.

    Example:
        >>> client = PostgresClient(PostgresConnectionConfig(url="postgresql://..."))
        >>> await client.connect()
        >>> try:
        ...     tier = await client.get_tier("org-1")
        ... finally:
        ...     await client.disconnect()
    """

    # Maximum retries for transient errors
    MAX_RETRIES = 3

    # Retry delay in seconds
    RETRY_DELAY = 0.5

    # Seconds before a query is abandoned
    COMMAND_TIMEOUT = 30

    def __init__(self, config: PostgresConnectionConfig) -> None:
        """
        Initialize the PostgreSQL client.

        Args:
            config: PostgreSQL connection configuration containing URL and pool size.
        """
        self.config = config
        self._pool: Optional[Pool] = None
        self._connected: bool = False

        logger.info(
            "postgres_client_initialized",
            url=self._sanitize_url(config.url),
            pool_size=config.pool_size,
        )

    def _sanitize_url(self, url: str) -> str:
        """Sanitize URL for logging (remove password)."""
        if "@" in url:
            parts = url.split("@")
            if ":" in parts[0]:
                user_part = parts[0].rsplit(":", 1)[0]
                return f"{user_part}:***@{parts[1]}"
        return url

    @property
    def is_connected(self) -> bool:
        """Check if the client is connected to PostgreSQL."""
        return self._connected and self._pool is not None

    async def connect(self) -> None:
        """
        Establish connection pool to PostgreSQL.

        Raises:
            PostgresConnectionException: If connection fails.
        """
        if self._connected:
            logger.warning("postgres_already_connected")
            return

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.config.url,
                min_size=1,
                max_size=self.config.pool_size,
                command_timeout=self.COMMAND_TIMEOUT,
                init=self._init_connection,
            )

            async with self._pool.acquire() as conn:
                await conn.fetchval("SELECT 1")

            self._connected = True

            logger.info(
                "postgres_connected",
                url=self._sanitize_url(self.config.url),
            )

        except (PostgresError, OSError, asyncio.TimeoutError) as e:
            self._connected = False
            logger.error(
                "postgres_connection_failed",
                url=self._sanitize_url(self.config.url),
                error=str(e),
            )
            raise PostgresConnectionException(
                f"Failed to connect to PostgreSQL: {e}"
            ) from e

    async def _init_connection(self, conn: Connection) -> None:
        # Timestamps are always compared in UTC
        await conn.execute("SET timezone = 'UTC'")

    async def disconnect(self) -> None:
        """
        Close PostgreSQL connection pool and release resources.

        Safe to call multiple times.
        """
        if self._pool is not None:
            try:
                await self._pool.close()
            except Exception as e:
                logger.warning("postgres_close_error", error=str(e))
            finally:
                self._pool = None

        self._connected = False
        logger.info("postgres_disconnected")

    async def ping(self) -> bool:
        """
        Check PostgreSQL connection health.

        Returns:
            bool: True if PostgreSQL responds, False otherwise.
        """
        if not self._pool:
            return False

        try:
            async with self._pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            return True
        except Exception as e:
            logger.warning("postgres_ping_failed", error=str(e))
            return False

    async def initialize_schema(self) -> None:
        """
        Create tables and indexes if they do not exist.

        Raises:
            PostgresOperationError: If the DDL fails.
        """
        async def _create() -> None:
            async with self._acquire_connection() as conn:
                await conn.execute(SCHEMA_SQL)

        await self._execute_with_retry("initialize_schema", _create)
        logger.info("postgres_schema_initialized")

    @asynccontextmanager
    async def _acquire_connection(self) -> AsyncIterator[Connection]:
        """
        Acquire a connection from the pool with error handling.

        Yields:
            Connection: asyncpg connection from the pool.

        Raises:
            PostgresConnectionException: If not connected or pool exhausted.
        """
        if not self._connected or self._pool is None:
            raise PostgresConnectionException("PostgreSQL client is not connected")

        try:
            async with self._pool.acquire() as conn:
                yield conn
        except TooManyConnectionsError as e:
            logger.error("postgres_pool_exhausted", error=str(e))
            raise PostgresConnectionException(
                f"Connection pool exhausted: {e}"
            ) from e
        except (ConnectionDoesNotExistError, InterfaceError) as e:
            logger.error("postgres_connection_lost", error=str(e))
            self._connected = False
            raise PostgresConnectionException(
                f"Connection lost: {e}"
            ) from e

    async def _execute_with_retry(
        self,
        operation: str,
        func: Any,
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """
        Execute a database operation with retry logic for transient errors.

        Args:
            operation: Name of the operation for logging.
            func: Async function to execute.
            *args: Positional arguments for the function.
            **kwargs: Keyword arguments for the function.

        Returns:
            Any: Result of the function call.

        Raises:
            PostgresOperationError: If all retries fail.
        """
        last_error: Optional[Exception] = None

        for attempt in range(self.MAX_RETRIES):
            try:
                return await func(*args, **kwargs)
            except (PostgresError, ConnectionDoesNotExistError, InterfaceError) as e:
                last_error = e
                if attempt < self.MAX_RETRIES - 1:
                    logger.warning(
                        "postgres_operation_retry",
                        operation=operation,
                        attempt=attempt + 1,
                        max_retries=self.MAX_RETRIES,
                        error=str(e),
                    )
                    await asyncio.sleep(self.RETRY_DELAY * (attempt + 1))
                else:
                    logger.error(
                        "postgres_operation_failed",
                        operation=operation,
                        error=str(e),
                    )

        raise PostgresOperationError(
            f"Operation '{operation}' failed after {self.MAX_RETRIES} attempts: {last_error}"
        )

    # =========================================================================
    # USAGE HISTORY
    # =========================================================================

    async def get_historical_usage(
        self,
        organization_id: str,
        since: datetime,
    ) -> List[UsageAggregate]:
        """
        Get hourly usage aggregates per mode since a point in time.

        Minutes are summed from completed sessions and bucketed by hour.

        Args:
            organization_id: Tenant identifier.
            since: Inclusive lower bound (UTC).

        Returns:
            List[UsageAggregate]: Aggregates ordered by period start.
        """
        async def _query() -> List[Record]:
            async with self._acquire_connection() as conn:
                return await conn.fetch(
                    """
                    SELECT
                        date_trunc('hour', created_at) AS period_start,
                        mode,
                        SUM(duration_seconds) / 60.0 AS minutes
                    FROM transcription_sessions
                    WHERE organization_id = $1
                      AND status = 'completed'
                      AND created_at >= $2
                    GROUP BY 1, 2
                    ORDER BY 1
                    """,
                    organization_id,
                    since,
                )

        rows = await self._execute_with_retry("get_historical_usage", _query)
        return [
            UsageAggregate(
                period_start=row["period_start"],
                mode=Mode(row["mode"]),
                minutes=float(row["minutes"]),
            )
            for row in rows
        ]

    async def get_current_month_usage(self, organization_id: str) -> Dict[Mode, ModeQuota]:
        """
        Get month-to-date usage and limits per mode.

        Args:
            organization_id: Tenant identifier.

        Returns:
            Dict[Mode, ModeQuota]: Usage keyed by mode. Modes without a row are absent.
        """
        async def _query() -> List[Record]:
            async with self._acquire_connection() as conn:
                return await conn.fetch(
                    """
                    SELECT mode, used_minutes, limit_minutes
                    FROM mode_usage
                    WHERE organization_id = $1
                      AND month = date_trunc('month', NOW())::date
                    """,
                    organization_id,
                )

        rows = await self._execute_with_retry("get_current_month_usage", _query)
        return {
            Mode(row["mode"]): ModeQuota(
                used=float(row["used_minutes"]),
                limit=float(row["limit_minutes"]),
            )
            for row in rows
        }

    async def get_recent_activity(
        self,
        organization_id: str,
        window: timedelta,
        as_of: Optional[datetime] = None,
    ) -> List[RecentSession]:
        """
        Get completed sessions in a window, newest first.

        Args:
            organization_id: Tenant identifier.
            window: Window length.
            as_of: Window end (defaults to now).

        Returns:
            List[RecentSession]: Sessions newest first.
        """
        end = as_of or datetime.now(timezone.utc)

        async def _query() -> List[Record]:
            async with self._acquire_connection() as conn:
                return await conn.fetch(
                    """
                    SELECT mode, duration_seconds, created_at
                    FROM transcription_sessions
                    WHERE organization_id = $1
                      AND status = 'completed'
                      AND created_at >= $2
                      AND created_at <= $3
                    ORDER BY created_at DESC
                    """,
                    organization_id,
                    end - window,
                    end,
                )

        rows = await self._execute_with_retry("get_recent_activity", _query)
        return [
            RecentSession(
                mode=Mode(row["mode"]),
                duration_seconds=float(row["duration_seconds"]),
                timestamp=row["created_at"],
            )
            for row in rows
        ]

    async def get_concurrent_sessions(self, organization_id: str) -> int:
        """Count sessions that are still processing or uploading."""
        async def _query() -> int:
            async with self._acquire_connection() as conn:
                return await conn.fetchval(
                    """
                    SELECT COUNT(*)
                    FROM transcription_sessions
                    WHERE organization_id = $1
                      AND status = ANY($2::text[])
                    """,
                    organization_id,
                    list(ACTIVE_SESSION_STATUSES),
                )

        count = await self._execute_with_retry("get_concurrent_sessions", _query)
        return int(count or 0)

    # =========================================================================
    # ORGANIZATIONS
    # =========================================================================

    async def _get_organization_field(self, organization_id: str, column: str) -> Optional[str]:
        async def _query() -> Optional[str]:
            async with self._acquire_connection() as conn:
                return await conn.fetchval(
                    f"SELECT {column} FROM organizations WHERE id = $1",
                    organization_id,
                )

        return await self._execute_with_retry(f"get_organization_{column}", _query)

    async def get_tier(self, organization_id: str) -> Optional[str]:
        return await self._get_organization_field(organization_id, "subscription_tier")

    async def get_name(self, organization_id: str) -> Optional[str]:
        return await self._get_organization_field(organization_id, "name")

    async def get_webhook_url(self, organization_id: str) -> Optional[str]:
        return await self._get_organization_field(organization_id, "webhook_url")

    async def list_organizations(self, tiers: Optional[List[str]] = None) -> List[str]:
        """
        List organization ids, optionally restricted to some tiers.

        Args:
            tiers: Tier names to include, or None for all organizations.

        Returns:
            List[str]: Organization ids ordered by id.
        """
        async def _query() -> List[Record]:
            async with self._acquire_connection() as conn:
                if tiers is None:
                    return await conn.fetch("SELECT id FROM organizations ORDER BY id")
                return await conn.fetch(
                    """
                    SELECT id FROM organizations
                    WHERE subscription_tier = ANY($1::text[])
                    ORDER BY id
                    """,
                    list(tiers),
                )

        rows = await self._execute_with_retry("list_organizations", _query)
        return [row["id"] for row in rows]

    # =========================================================================
    # ALERTS
    # =========================================================================

    async def insert(self, alert: Alert) -> Alert:
        """
        Insert a new alert.

        Args:
            alert: The Alert to insert.

        Returns:
            Alert: The stored alert.

        Raises:
            DuplicateAlertError: If an unresolved alert holds the same dedup key.
            PostgresOperationError: If the operation fails.
        """
        start_time = time.monotonic()

        async def _insert() -> None:
            async with self._acquire_connection() as conn:
                try:
                    await conn.execute(
                        """
                        INSERT INTO alerts (
                            id, organization_id, type, severity, title, description,
                            metadata, created_at, resolved, resolved_at, notifications_sent
                        ) VALUES (
                            $1, $2, $3, $4, $5, $6, $7::jsonb, $8, $9, $10, $11
                        )
                        """,
                        alert.id,
                        alert.organization_id,
                        alert.type.value,
                        alert.severity.value,
                        alert.title,
                        alert.description,
                        json.dumps(alert.metadata, default=str),
                        alert.created_at,
                        alert.resolved,
                        alert.resolved_at,
                        list(alert.notifications_sent),
                    )
                except UniqueViolationError as e:
                    raise DuplicateAlertError(
                        alert.organization_id, alert.type.value, alert.title
                    ) from e

        await self._execute_with_retry("insert_alert", _insert)

        elapsed_ms = (time.monotonic() - start_time) * 1000
        logger.info(
            "alert_inserted",
            alert_id=alert.id,
            organization_id=alert.organization_id,
            severity=alert.severity.value,
            elapsed_ms=round(elapsed_ms, 2),
        )
        return alert

    async def find_open(
        self,
        organization_id: str,
        alert_type: str,
        title: str,
    ) -> Optional[Alert]:
        """Get the unresolved alert holding a dedup key, if any."""
        async def _query() -> Optional[Record]:
            async with self._acquire_connection() as conn:
                return await conn.fetchrow(
                    """
                    SELECT * FROM alerts
                    WHERE organization_id = $1 AND type = $2 AND title = $3
                      AND NOT resolved
                    """,
                    organization_id,
                    alert_type,
                    title,
                )

        row = await self._execute_with_retry("find_open_alert", _query)
        return _row_to_alert(row) if row else None

    async def get(self, alert_id: str) -> Optional[Alert]:
        async def _query() -> Optional[Record]:
            async with self._acquire_connection() as conn:
                return await conn.fetchrow("SELECT * FROM alerts WHERE id = $1", alert_id)

        row = await self._execute_with_retry("get_alert", _query)
        return _row_to_alert(row) if row else None

    async def list_active(self, organization_id: Optional[str] = None) -> List[Alert]:
        """
        List unresolved alerts, newest first.

        Args:
            organization_id: Optional tenant filter.

        Returns:
            List[Alert]: Active alerts.
        """
        start_query_time = time.monotonic()

        async def _query() -> List[Record]:
            async with self._acquire_connection() as conn:
                conditions = ["NOT resolved"]
                params: List[Any] = []

                if organization_id is not None:
                    params.append(organization_id)
                    conditions.append(f"organization_id = ${len(params)}")

                query = f"""
                    SELECT * FROM alerts
                    WHERE {' AND '.join(conditions)}
                    ORDER BY created_at DESC
                """
                return await conn.fetch(query, *params)

        rows = await self._execute_with_retry("list_active_alerts", _query)
        alerts = [_row_to_alert(row) for row in rows]

        elapsed_ms = (time.monotonic() - start_query_time) * 1000
        logger.debug(
            "alerts_queried",
            count=len(alerts),
            elapsed_ms=round(elapsed_ms, 2),
        )
        return alerts

    async def mark_resolved(
        self,
        alert_id: str,
        resolved_at: datetime,
        resolved_by: Optional[str] = None,
    ) -> Optional[Alert]:
        """
        Resolve an alert and record who resolved it.

        Already resolved alerts are returned unchanged.

        Returns:
            Optional[Alert]: The alert, or None if the id is unknown.
        """
        async def _update() -> Optional[Record]:
            async with self._acquire_connection() as conn:
                return await conn.fetchrow(
                    """
                    UPDATE alerts
                    SET resolved = TRUE,
                        resolved_at = $2,
                        metadata = CASE
                            WHEN $3::text IS NULL THEN metadata
                            ELSE metadata || jsonb_build_object('resolved_by', $3::text)
                        END
                    WHERE id = $1 AND NOT resolved
                    RETURNING *
                    """,
                    alert_id,
                    resolved_at,
                    resolved_by,
                )

        row = await self._execute_with_retry("resolve_alert", _update)
        if row is None:
            return await self.get(alert_id)

        logger.info("alert_status_updated", alert_id=alert_id, status="resolved")
        return _row_to_alert(row)

    async def append_notifications(self, alert_id: str, channels: List[str]) -> Optional[Alert]:
        """
        Append channel names to notifications_sent, skipping names already present.

        Returns:
            Optional[Alert]: The updated alert, or None if the id is unknown.
        """
        unique_channels = list(dict.fromkeys(channels))

        async def _update() -> Optional[Record]:
            async with self._acquire_connection() as conn:
                return await conn.fetchrow(
                    """
                    UPDATE alerts AS a
                    SET notifications_sent = a.notifications_sent || ARRAY(
                        SELECT c
                        FROM unnest($2::text[]) WITH ORDINALITY AS t(c, i)
                        WHERE NOT (c = ANY(a.notifications_sent))
                        ORDER BY i
                    )
                    WHERE a.id = $1
                    RETURNING *
                    """,
                    alert_id,
                    unique_channels,
                )

        row = await self._execute_with_retry("append_notifications", _update)
        return _row_to_alert(row) if row else None
