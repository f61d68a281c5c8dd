"""Tests for alert and usage models."""

from datetime import datetime, timedelta, timezone

from usage_alerts.models.alerts import Alert, AlertSummary, AlertType
from usage_alerts.models.usage import Mode, Severity, UsagePattern


def make_alert(severity: Severity, title: str, minutes_ago: int = 0) -> Alert:
    return Alert(
        organization_id="org-acme",
        severity=severity,
        title=title,
        created_at=datetime(2026, 6, 6, 12, 0, tzinfo=timezone.utc) - timedelta(minutes=minutes_ago),
    )


class TestSeverity:
    def test_ordering(self):
        assert Severity.CRITICAL.at_least(Severity.HIGH)
        assert Severity.MEDIUM.at_least(Severity.MEDIUM)
        assert not Severity.LOW.at_least(Severity.MEDIUM)

    def test_mode_order(self):
        assert Mode.ordered() == [Mode.FAST, Mode.BALANCED, Mode.PRECISION]


class TestAlert:
    def test_defaults(self):
        alert = make_alert(Severity.HIGH, "Usage Spike Detected - fast mode")

        assert alert.type == AlertType.ANOMALY
        assert alert.is_active
        assert alert.notifications_sent == []
        assert alert.dedup_key == ("org-acme", "anomaly", "Usage Spike Detected - fast mode")

    def test_resolve_is_idempotent(self):
        alert = make_alert(Severity.HIGH, "Spike")
        resolved = alert.resolve(resolved_by="ops")

        assert resolved.resolved and not alert.resolved
        assert resolved.resolve(resolved_by="other") is resolved

    def test_with_notifications_keeps_order(self):
        alert = make_alert(Severity.HIGH, "Spike").with_notifications(["email"])

        assert alert.with_notifications(["chat-webhook", "email"]).notifications_sent == [
            "email",
            "chat-webhook",
        ]


class TestAlertSummary:
    """Tests for AlertSummary rendering."""

    def test_render(self):
        summary = AlertSummary(
            organization_id="org-acme",
            alerts=[
                make_alert(Severity.HIGH, "Usage Spike Detected - fast mode", minutes_ago=3),
                make_alert(Severity.MEDIUM, "Potential Mode Abuse - precision mode", minutes_ago=1),
                make_alert(Severity.HIGH, "Usage Spike Detected - balanced mode", minutes_ago=1),
            ],
        )

        assert summary.render() == (
            "You have 3 new alerts:\n"
            "- 2 high severity alerts\n"
            "- 1 medium severity alert\n"
            "\n"
            "Top alerts:\n"
            "- Usage Spike Detected - balanced mode\n"
            "- Usage Spike Detected - fast mode\n"
            "- Potential Mode Abuse - precision mode"
        )

    def test_top_titles_limited(self):
        alerts = [make_alert(Severity.MEDIUM, f"Alert {i}", minutes_ago=i) for i in range(8)]

        summary = AlertSummary(organization_id="org-acme", alerts=alerts, top_n=5)

        assert summary.top_titles == [f"Alert {i}" for i in range(5)]

    def test_single_alert_wording(self):
        summary = AlertSummary(organization_id="org-acme", alerts=[make_alert(Severity.HIGH, "Spike")])

        assert summary.render().startswith("You have 1 new alert:\n- 1 high severity alert\n")


def test_pattern_without_history_has_no_baseline():
    assert UsagePattern(organization_id="org-acme").has_baseline is False
