"""Tests for configuration loading."""

from pathlib import Path

import pytest

from usage_alerts.config import ConfigLoadError, ConfigLoader, load_config
from usage_alerts.config.models import (
    BatchBackend,
    Cadence,
    ConcurrencyThresholds,
    NotificationPolicy,
    NotificationsConfig,
    SeverityPolicy,
    StorageBackend,
)
from usage_alerts.models.usage import Severity

REPO_CONFIG = Path(__file__).resolve().parents[2] / "config"

DETECTION_YAML = """
detection:
  max_workers: 4
  monitored_tiers: [pro]
  spike:
    multiplier: 3
scheduler:
  detection_interval_seconds: 60
storage:
  backend: memory
  batch_backend: memory
"""

NOTIFICATIONS_YAML = """
policy:
  severities:
    critical:
      channels: [email]
    high:
      channels: [chat-webhook]
      cadence: batched
      window_seconds: 120
channels:
  email:
    recipients: [ops@example.com]
"""


@pytest.fixture
def config_dir(tmp_path: Path) -> Path:
    (tmp_path / "detection.yaml").write_text(DETECTION_YAML)
    (tmp_path / "notifications.yaml").write_text(NOTIFICATIONS_YAML)
    return tmp_path


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "EMAIL_API_KEY",
        "CHAT_WEBHOOK_URL",
        "ALERT_WEBHOOK_URL",
        "APP_URL",
        "DATABASE_URL",
        "REDIS_URL",
        "LOG_LEVEL",
        "LOG_FORMAT",
    ):
        monkeypatch.delenv(name, raising=False)


class TestConfigLoader:
    """Tests for ConfigLoader."""

    def test_loads_yaml_sections(self, config_dir):
        config = load_config(config_dir)

        assert config.detection.max_workers == 4
        assert config.detection.monitored_tiers == ["pro"]
        assert config.detection.spike.multiplier == 3
        assert config.detection.spike.min_minutes == 10
        assert config.scheduler.detection_interval_seconds == 60
        assert config.storage.backend == StorageBackend.MEMORY
        assert config.storage.batch_backend == BatchBackend.MEMORY

    def test_policy_table_from_yaml(self, config_dir):
        policy = load_config(config_dir).notifications.policy

        assert policy.for_severity(Severity.CRITICAL).channels == ["email"]
        assert policy.for_severity(Severity.HIGH).window_seconds == 120
        assert policy.for_severity(Severity.MEDIUM).is_silent
        assert policy.batch_windows() == [120]

    def test_environment_overrides(self, config_dir, monkeypatch):
        monkeypatch.setenv("EMAIL_API_KEY", "re_test")
        monkeypatch.setenv("CHAT_WEBHOOK_URL", "https://chat.example.com/hook")
        monkeypatch.setenv("ALERT_WEBHOOK_URL", "https://hooks.example.com/alerts")
        monkeypatch.setenv("APP_URL", "https://app.example.com")
        monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@db:5432/alerts")
        monkeypatch.setenv("LOG_LEVEL", "debug")

        config = load_config(config_dir)
        channels = config.notifications.channels

        assert channels.email.api_key == "re_test"
        assert channels.email.recipients == ["ops@example.com"]
        assert channels.chat_webhook.webhook_url == "https://chat.example.com/hook"
        assert channels.generic_webhook.default_url == "https://hooks.example.com/alerts"
        assert channels.app_url == "https://app.example.com"
        assert config.postgres.url == "postgresql://u:p@db:5432/alerts"
        assert config.log_level.value == "DEBUG"

    def test_missing_directory(self, tmp_path):
        with pytest.raises(ConfigLoadError):
            ConfigLoader(tmp_path / "nope")

    def test_missing_file(self, config_dir):
        (config_dir / "notifications.yaml").unlink()

        with pytest.raises(ConfigLoadError, match="not found"):
            load_config(config_dir)

    def test_invalid_yaml(self, config_dir):
        (config_dir / "detection.yaml").write_text("detection: [unclosed")

        with pytest.raises(ConfigLoadError, match="Invalid YAML"):
            load_config(config_dir)

    def test_empty_file(self, config_dir):
        (config_dir / "detection.yaml").write_text("")

        with pytest.raises(ConfigLoadError, match="empty"):
            load_config(config_dir)

    def test_unknown_channel_rejected(self, config_dir):
        (config_dir / "notifications.yaml").write_text(
            "policy:\n  severities:\n    critical:\n      channels: [pager]\n"
        )

        with pytest.raises(ConfigLoadError):
            load_config(config_dir)

    def test_invalid_threshold_rejected(self, config_dir):
        (config_dir / "detection.yaml").write_text("detection:\n  max_workers: 0\n")

        with pytest.raises(ConfigLoadError):
            load_config(config_dir)

    def test_shipped_config_loads(self):
        config = load_config(REPO_CONFIG)

        assert config.notifications.policy == NotificationPolicy()
        assert config.detection.concurrency == ConcurrencyThresholds()


class TestPolicyModels:
    def test_default_policy_table(self):
        policy = NotificationPolicy()

        assert policy.for_severity(Severity.CRITICAL).channels == [
            "email",
            "chat-webhook",
            "generic-webhook",
        ]
        assert policy.for_severity(Severity.CRITICAL).cadence == Cadence.IMMEDIATE
        assert policy.for_severity(Severity.HIGH).window_seconds == 300
        assert policy.for_severity(Severity.MEDIUM).window_seconds == 3600
        assert policy.for_severity(Severity.LOW).is_silent

    def test_channels_for_is_union_most_severe_first(self):
        policy = NotificationPolicy()

        assert policy.channels_for([Severity.MEDIUM, Severity.HIGH]) == ["email", "chat-webhook"]
        assert policy.channels_for([Severity.LOW]) == []

    def test_with_severity_returns_copy(self):
        policy = NotificationPolicy()

        updated = policy.with_severity(Severity.LOW, SeverityPolicy(channels=["email"]))

        assert policy.for_severity(Severity.LOW).is_silent
        assert updated.for_severity(Severity.LOW).channels == ["email"]

    def test_notifications_config_default_is_valid(self):
        assert NotificationsConfig().policy == NotificationPolicy()

    def test_concurrency_expectations(self):
        thresholds = ConcurrencyThresholds()

        assert thresholds.expected_for("enterprise") == 20
        assert thresholds.expected_for(None) == 1
        assert thresholds.expected_for("custom") == 5
