"""
Service runners for the alerting engine.

Services:
    detector: Scheduled detection cycles, batch flushes and the HTTP API

This package also holds the pieces every service shares: structlog setup
and the ServiceRunner lifecycle (load config, connect storage, run until
a shutdown signal, clean up).
"""

import asyncio
import logging
import signal
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

import structlog

from usage_alerts.config import AppConfig, LogFormat, LogLevel, load_config
from usage_alerts.config.models import BatchBackend, StorageBackend
from usage_alerts.storage.postgres_client import PostgresClient
from usage_alerts.storage.redis_client import RedisBatchStore


def setup_logging(
    level: Union[LogLevel, str] = LogLevel.INFO,
    format: Union[LogFormat, str] = LogFormat.JSON,
) -> None:
    """
    Configure structured logging.

    Args:
        level: Log level name.
        format: "json" for one JSON object per line, "text" for console output.
    """
    level_name = level.value if isinstance(level, LogLevel) else str(level).upper()
    format_name = format.value if isinstance(format, LogFormat) else str(format).lower()

    renderer = (
        structlog.dev.ConsoleRenderer()
        if format_name == LogFormat.TEXT.value
        else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level_name, logging.INFO),
    )

    # Reduce noise from uvicorn access logs
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


class ServiceRunner(ABC):
    """
    Base lifecycle for long-running services.

    Subclasses implement _initialize, _run and optionally _cleanup.

    Attributes:
        config_path: Configuration directory.
        config: Loaded configuration.
        postgres_client: PostgreSQL client when the postgres backend is used.
        batch_store: Redis batch store when the redis batch backend is used.
        shutdown_event: Set when the service should stop.
    """

    def __init__(self, config_path: Union[str, Path] = "config") -> None:
        self.config_path = config_path
        self.config: Optional[AppConfig] = None
        self.postgres_client: Optional[PostgresClient] = None
        self.batch_store: Optional[RedisBatchStore] = None
        self.shutdown_event = asyncio.Event()
        self.logger = structlog.get_logger(self.service_name)

    @property
    @abstractmethod
    def service_name(self) -> str:
        """Return service name."""

    @abstractmethod
    async def _initialize(self) -> None:
        """Build service components once storage is connected."""

    @abstractmethod
    async def _run(self) -> None:
        """Main service loop. Must return once shutdown_event is set."""

    async def _cleanup(self) -> None:
        """Service-specific cleanup."""

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_shutdown)
            except NotImplementedError:
                # Signal handlers are unavailable on some platforms
                self.logger.debug("signal_handler_unavailable", signal=sig.name)

    def request_shutdown(self) -> None:
        """Ask the service to stop."""
        if not self.shutdown_event.is_set():
            self.logger.info("shutdown_requested")
            self.shutdown_event.set()

    async def _connect_storage(self) -> None:
        if self.config is None:
            raise RuntimeError("Configuration not loaded")

        if self.config.storage.backend == StorageBackend.POSTGRES:
            self.postgres_client = PostgresClient(self.config.postgres)
            await self.postgres_client.connect()
            await self.postgres_client.initialize_schema()

        if self.config.storage.batch_backend == BatchBackend.REDIS:
            self.batch_store = RedisBatchStore(self.config.redis)
            await self.batch_store.connect()

    async def _disconnect_storage(self) -> None:
        if self.batch_store is not None:
            await self.batch_store.disconnect()
        if self.postgres_client is not None:
            await self.postgres_client.disconnect()

    async def run(self) -> None:
        """
        Run the service until shutdown.

        Raises:
            ConfigLoadError: If configuration cannot be loaded.
            StorageError: If storage cannot be reached.
        """
        self.config = load_config(self.config_path)
        setup_logging(self.config.log_level, self.config.log_format)

        self.logger.info(
            "service_starting",
            service=self.service_name,
            storage_backend=self.config.storage.backend.value,
            batch_backend=self.config.storage.batch_backend.value,
        )

        self._install_signal_handlers()

        try:
            await self._connect_storage()
            await self._initialize()
            await self._run()
        finally:
            await self._cleanup()
            await self._disconnect_storage()
            self.logger.info("service_stopped", service=self.service_name)


__all__ = ["ServiceRunner", "setup_logging"]
