"""
Configuration management for the usage alerting engine.

This module handles loading and validating configuration from YAML files.
All configuration values are validated using Pydantic models to ensure
type safety and catch configuration errors early.

Configuration is loaded from YAML files in the config/ directory:
    - detection.yaml: Detection thresholds, tiers, scheduling, storage
    - notifications.yaml: Severity policy table and channel settings

Environment variables can override connection settings and secrets:
    - DATABASE_URL, REDIS_URL, LOG_LEVEL
    - EMAIL_API_KEY, CHAT_WEBHOOK_URL, ALERT_WEBHOOK_URL, APP_URL

Example:
    >>> from usage_alerts.config import load_config
    >>> config = load_config()
    >>> config.notifications.policy.batch_windows()
    [300, 3600]

Modules:
    loader: Configuration file loading utilities
    models: Pydantic models for configuration validation
"""

from usage_alerts.config.loader import ConfigLoadError, ConfigLoader, load_config
from usage_alerts.config.models import (
    # Enums
    BatchBackend,
    LogFormat,
    LogLevel,
    StorageBackend,
    # Detection
    ConcurrencyThresholds,
    DepletionThresholds,
    DetectionConfig,
    ModeAbuseThresholds,
    SchedulerConfig,
    SpikeThresholds,
    # Notifications
    ChannelsConfig,
    ChatWebhookChannelConfig,
    EmailChannelConfig,
    GenericWebhookChannelConfig,
    NotificationPolicy,
    NotificationsConfig,
    SeverityPolicy,
    # Connections
    ApiConfig,
    PostgresConnectionConfig,
    RedisConnectionConfig,
    StorageConfig,
    # Root
    AppConfig,
)

__all__: list[str] = [
    # Loader
    "ConfigLoadError",
    "ConfigLoader",
    "load_config",
    # Enums
    "BatchBackend",
    "LogFormat",
    "LogLevel",
    "StorageBackend",
    # Detection
    "ConcurrencyThresholds",
    "DepletionThresholds",
    "DetectionConfig",
    "ModeAbuseThresholds",
    "SchedulerConfig",
    "SpikeThresholds",
    # Notifications
    "ChannelsConfig",
    "ChatWebhookChannelConfig",
    "EmailChannelConfig",
    "GenericWebhookChannelConfig",
    "NotificationPolicy",
    "NotificationsConfig",
    "SeverityPolicy",
    # Connections
    "ApiConfig",
    "PostgresConnectionConfig",
    "RedisConnectionConfig",
    "StorageConfig",
    # Root
    "AppConfig",
]
