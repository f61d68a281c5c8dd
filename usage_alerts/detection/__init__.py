"""
Usage anomaly detection and alerting.

This module contains the detection heuristics, alert lifecycle management
and notification routing.

Components:
    baseline: PatternBaseliner for per-tenant usage baselines
    heuristics: Spike, depletion, mode abuse and concurrency checks
    detector: AnomalyDetector running the heuristics for one tenant
    manager: AlertManager for alert creation, dedup and resolution
    batching: Pending batched notifications
    dispatcher: NotificationRouter for severity based delivery
    engine: DetectionEngine running cycles across tenants
    scheduler: CycleScheduler for periodic cycles and flushes
    channels/: Alert notification channels (email, chat webhook, webhook)

Example:
    >>> from usage_alerts.detection import (
    ...     AnomalyDetector,
    ...     AlertManager,
    ...     NotificationRouter,
    ...     DetectionEngine,
    ... )
    >>>
    >>> detector = AnomalyDetector(store, directory, config.detection)
    >>> manager = AlertManager(repository)
    >>> router = NotificationRouter(manager, channels, config.notifications.policy)
    >>> engine = DetectionEngine(detector, manager, router, directory, config.detection)
    >>> alerts = await engine.run_detection_cycle()
"""

from usage_alerts.detection.baseline import PatternBaseliner
from usage_alerts.detection.batching import BatchStore, InMemoryBatchStore
from usage_alerts.detection.detector import AnomalyDetector, last_hour_minutes
from usage_alerts.detection.dispatcher import NotificationRouter, create_router
from usage_alerts.detection.engine import DetectionEngine
from usage_alerts.detection.heuristics import (
    HEURISTICS,
    SEVERITY_WEIGHTS,
    calculate_risk_score,
    detect_concurrent_excess,
    detect_mode_abuse,
    detect_rapid_depletion,
    detect_spikes,
    deviation_pct,
    evaluate,
    month_progress,
)
from usage_alerts.detection.manager import (
    ANOMALY_TITLES,
    AlertManager,
    anomaly_metadata,
    anomaly_title,
    create_alert_manager,
)
from usage_alerts.detection.scheduler import CycleScheduler

__all__ = [
    # Baseline
    "PatternBaseliner",
    # Heuristics
    "HEURISTICS",
    "SEVERITY_WEIGHTS",
    "calculate_risk_score",
    "detect_concurrent_excess",
    "detect_mode_abuse",
    "detect_rapid_depletion",
    "detect_spikes",
    "deviation_pct",
    "evaluate",
    "month_progress",
    # Detector
    "AnomalyDetector",
    "last_hour_minutes",
    # Manager
    "AlertManager",
    "create_alert_manager",
    "anomaly_title",
    "anomaly_metadata",
    "ANOMALY_TITLES",
    # Batching
    "BatchStore",
    "InMemoryBatchStore",
    # Router
    "NotificationRouter",
    "create_router",
    # Engine
    "DetectionEngine",
    "CycleScheduler",
]
