"""
Anomaly Detector Service entry point.

This service is responsible for:
- Running a detection cycle across monitored tenants every interval
- Creating deduplicated alerts from detected anomalies
- Sending immediate notifications and flushing batched summaries
- Serving the alerts and policy HTTP API

Usage:
    python -m usage_alerts.services.detector
    usage-alerts-detector

Environment Variables:
    CONFIG_PATH: Path to config directory (default: config)
    DATABASE_URL: PostgreSQL connection URL
    REDIS_URL: Redis connection URL (default: redis://localhost:6379)
    LOG_LEVEL: Logging level (default: INFO)
    LOG_FORMAT: json or text (default: json)
    EMAIL_API_KEY: Email API key (optional)
    CHAT_WEBHOOK_URL: Chat webhook URL (optional)
    ALERT_WEBHOOK_URL: Default generic webhook URL (optional)
    APP_URL: Dashboard base URL used in notification links
"""

import asyncio
import os
import sys
from typing import Optional

import structlog
import uvicorn

from usage_alerts import __version__
from usage_alerts.api import create_app
from usage_alerts.config import AppConfig
from usage_alerts.detection.batching import BatchStore
from usage_alerts.detection.channels import create_channels
from usage_alerts.detection.detector import AnomalyDetector
from usage_alerts.detection.dispatcher import NotificationRouter
from usage_alerts.detection.engine import DetectionEngine
from usage_alerts.detection.manager import AlertManager
from usage_alerts.detection.scheduler import CycleScheduler
from usage_alerts.services import ServiceRunner, setup_logging
from usage_alerts.storage.base import AlertRepository, OrganizationDirectory, UsageHistoryStore
from usage_alerts.storage.memory import (
    InMemoryAlertRepository,
    InMemoryOrganizationDirectory,
    InMemoryUsageStore,
)

logger = structlog.get_logger(__name__)


def build_engine(
    config: AppConfig,
    store: UsageHistoryStore,
    directory: OrganizationDirectory,
    repository: AlertRepository,
    batch_store: Optional[BatchStore] = None,
) -> DetectionEngine:
    """
    Wire a DetectionEngine from configuration and storage.

    Args:
        config: Application configuration.
        store: Usage history source.
        directory: Organization metadata source.
        repository: Alert persistence.
        batch_store: Pending batch store (in-memory when omitted).

    Returns:
        DetectionEngine: Ready to run cycles.
    """
    detector = AnomalyDetector(store, directory, config.detection)
    manager = AlertManager(repository, min_severity=config.detection.min_alert_severity)
    router = NotificationRouter(
        manager=manager,
        channels=create_channels(config.notifications.channels, directory),
        policy=config.notifications.policy,
        batch_store=batch_store,
    )
    return DetectionEngine(detector, manager, router, directory, config.detection)


class AnomalyDetectorService(ServiceRunner):
    """
    Detection service running the scheduler and the HTTP API.

    Attributes:
        engine: The detection engine.
        scheduler: Periodic cycle and flush trigger.
    """

    def __init__(self, config_path: str = "config") -> None:
        """Initialize the anomaly detector service."""
        super().__init__(config_path)
        self.engine: Optional[DetectionEngine] = None
        self.scheduler: Optional[CycleScheduler] = None
        self._server: Optional[uvicorn.Server] = None

    @property
    def service_name(self) -> str:
        """Return service name."""
        return "anomaly-detector"

    async def _initialize(self) -> None:
        """Initialize detection components."""
        if self.config is None:
            raise RuntimeError("Service not properly initialized")

        if self.postgres_client is not None:
            store = directory = repository = self.postgres_client
        else:
            store = InMemoryUsageStore()
            directory = InMemoryOrganizationDirectory()
            repository = InMemoryAlertRepository()

        self.engine = build_engine(
            self.config,
            store=store,
            directory=directory,
            repository=repository,
            batch_store=self.batch_store,
        )
        self.scheduler = CycleScheduler(
            self.engine,
            detection_interval_seconds=self.config.scheduler.detection_interval_seconds,
            flush_interval_seconds=self.config.scheduler.flush_interval_seconds,
        )

        server_config = uvicorn.Config(
            create_app(self.engine),
            host=self.config.api.host,
            port=self.config.api.port,
            log_level=self.config.log_level.value.lower(),
            access_log=False,
        )
        self._server = uvicorn.Server(server_config)

        self.logger.info(
            "detection_components_initialized",
            monitored_tiers=self.config.detection.monitored_tiers,
            channels=list(self.engine.router.channels.keys()),
            api_port=self.config.api.port,
        )

    async def _run(self) -> None:
        """Run the scheduler and the API server until shutdown."""
        if self.scheduler is None or self._server is None:
            raise RuntimeError("Service not properly initialized")

        server_task = asyncio.create_task(self._server.serve())

        try:
            await self.scheduler.run(self.shutdown_event)
        finally:
            self._server.should_exit = True
            await server_task

    async def _cleanup(self) -> None:
        """Flush whatever is due and close channel sessions."""
        if self.engine is None:
            return

        summaries = await self.engine.flush_due_batches()
        self.logger.info("cleanup_state", summaries_flushed=len(summaries))
        await self.engine.close()


async def main() -> None:
    """Main entry point."""
    setup_logging(os.getenv("LOG_LEVEL", "INFO"), os.getenv("LOG_FORMAT", "json"))

    config_path = os.getenv("CONFIG_PATH", "config")

    logger.info(
        "anomaly_detector_service_starting",
        version=__version__,
        config_path=config_path,
    )

    service = AnomalyDetectorService(config_path=config_path)

    try:
        await service.run()
    except Exception as e:
        logger.error("service_failed", error=str(e))
        sys.exit(1)


def cli() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    cli()
