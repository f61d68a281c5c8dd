"""Tests for the HTTP API."""

import pytest
from fastapi.testclient import TestClient

from usage_alerts.api import create_app
from usage_alerts.models.usage import Severity


@pytest.fixture
def client(engine, usage_store):
    # pro tier expects 5 concurrent sessions, 30 is critical
    usage_store.set_concurrent_sessions("org-acme", 30)
    with TestClient(create_app(engine)) as client:
        yield client


def test_health(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_run_detection_and_list_alerts(client):
    run = client.post("/api/detection/run", json={"organization_ids": ["org-acme"]})

    assert run.status_code == 200
    body = run.json()
    assert body["alerts_created"] == 1
    assert body["alerts"][0]["title"] == "Excessive Concurrent Transcriptions"
    assert body["alerts"][0]["notification_state"] == "sent_full"

    listed = client.get("/api/alerts").json()
    assert listed["counts"]["critical"] == 1
    assert listed["counts"]["total"] == 1
    assert listed["alerts"][0]["organization_id"] == "org-acme"

    filtered = client.get("/api/alerts", params={"organization_id": "org-globex"}).json()
    assert filtered["alerts"] == []


def test_run_detection_without_body_uses_monitored_tiers(client):
    response = client.post("/api/detection/run")

    assert response.status_code == 200
    assert response.json()["alerts_created"] == 1


def test_resolve_alert(client):
    alert_id = client.post("/api/detection/run", json={}).json()["alerts"][0]["id"]

    response = client.post(f"/api/alerts/{alert_id}/resolve", json={"resolved_by": "ops@acme.io"})

    assert response.status_code == 200
    body = response.json()
    assert body["resolved"] is True
    assert body["metadata"]["resolved_by"] == "ops@acme.io"
    assert body["notification_state"] == "resolved"
    assert client.get("/api/alerts").json()["alerts"] == []


def test_resolve_unknown_alert(client):
    response = client.post("/api/alerts/missing/resolve")

    assert response.status_code == 404


def test_get_policy(client):
    body = client.get("/api/policy").json()

    assert list(body["severities"]) == ["critical", "high", "medium", "low"]
    assert body["severities"]["high"] == {
        "channels": ["email", "chat-webhook"],
        "cadence": "batched",
        "window_seconds": 300,
    }


def test_update_policy(client, engine):
    response = client.put(
        "/api/policy/medium",
        json={"channels": ["chat-webhook"], "cadence": "immediate"},
    )

    assert response.status_code == 200
    assert response.json()["severities"]["medium"]["cadence"] == "immediate"
    assert engine.get_policy().for_severity(Severity.MEDIUM).channels == ["chat-webhook"]


def test_update_policy_rejects_batched_without_window(client):
    response = client.put("/api/policy/high", json={"channels": ["email"], "cadence": "batched"})

    assert response.status_code == 422


def test_update_policy_rejects_unknown_severity(client):
    response = client.put("/api/policy/urgent", json={"channels": []})

    assert response.status_code == 422
