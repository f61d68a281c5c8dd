"""
Alerts API endpoints.

Provides:
    GET /api/alerts - Active alerts with optional organization filter
    POST /api/alerts/{alert_id}/resolve - Resolve an alert
    POST /api/detection/run - Run one detection cycle on demand
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from usage_alerts.detection.engine import DetectionEngine
from usage_alerts.models.alerts import Alert

logger = structlog.get_logger(__name__)

router = APIRouter()


def get_engine(request: Request) -> DetectionEngine:
    """Get the engine attached to the application."""
    return request.app.state.engine


class AlertItem(BaseModel):
    """Model for a single alert."""

    id: str
    organization_id: str
    type: str
    severity: str
    title: str
    description: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    resolved: bool = False
    resolved_at: Optional[datetime] = None
    notifications_sent: List[str] = Field(default_factory=list)
    notification_state: Optional[str] = None

    model_config = {
        "json_schema_extra": {
            "example": {
                "id": "0b6f7c1e-4f3e-4a55-9d8e-2f1c9e1b7a10",
                "organization_id": "org_123",
                "type": "anomaly",
                "severity": "critical",
                "title": "Rapid Credit Depletion - precision mode",
                "description": "precision mode usage is depleting faster than expected",
                "metadata": {"anomaly_type": "rapid_depletion", "mode": "precision"},
                "created_at": "2026-06-06T12:00:00Z",
                "resolved": False,
                "notifications_sent": ["email", "generic-webhook"],
                "notification_state": "sent_partial",
            }
        }
    }


class AlertCountsModel(BaseModel):
    """Model for alert counts by severity."""

    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    total: int = 0


class AlertsResponse(BaseModel):
    """Response model for alerts endpoint."""

    alerts: List[AlertItem]
    counts: AlertCountsModel


class ResolveRequest(BaseModel):
    """Request body for resolving an alert."""

    resolved_by: Optional[str] = Field(default=None, description="Who resolved the alert")


class DetectionRunRequest(BaseModel):
    """Request body for an on-demand detection cycle."""

    organization_ids: Optional[List[str]] = Field(
        default=None,
        description="Tenants to check. Defaults to every monitored tenant.",
    )


class DetectionRunResponse(BaseModel):
    """Response model for an on-demand detection cycle."""

    alerts_created: int
    alerts: List[AlertItem]


async def to_item(engine: DetectionEngine, alert: Alert) -> AlertItem:
    """Convert an alert into its API representation."""
    state = await engine.router.notification_state(alert)
    return AlertItem(
        id=alert.id,
        organization_id=alert.organization_id,
        type=alert.type.value,
        severity=alert.severity.value,
        title=alert.title,
        description=alert.description,
        metadata=alert.metadata,
        created_at=alert.created_at,
        resolved=alert.resolved,
        resolved_at=alert.resolved_at,
        notifications_sent=alert.notifications_sent,
        notification_state=state.value,
    )


@router.get(
    "/alerts",
    response_model=AlertsResponse,
    summary="Get active alerts",
    description="Retrieves unresolved alerts, newest first, optionally for one organization.",
)
async def get_alerts(
    organization_id: Optional[str] = Query(
        None,
        description="Organization filter",
    ),
    engine: DetectionEngine = Depends(get_engine),
) -> AlertsResponse:
    """
    Get active alerts.

    Args:
        organization_id: Optional organization filter.

    Returns:
        AlertsResponse: List of alerts with counts.
    """
    alerts = await engine.get_active_alerts(organization_id)
    items = [await to_item(engine, alert) for alert in alerts]

    counts = AlertCountsModel(total=len(items))
    for item in items:
        setattr(counts, item.severity, getattr(counts, item.severity) + 1)

    return AlertsResponse(alerts=items, counts=counts)


@router.post(
    "/alerts/{alert_id}/resolve",
    response_model=AlertItem,
    summary="Resolve an alert",
)
async def resolve_alert(
    alert_id: str,
    body: Optional[ResolveRequest] = None,
    engine: DetectionEngine = Depends(get_engine),
) -> AlertItem:
    """Resolve an alert. Resolving an already resolved alert is a no-op."""
    resolved_by = body.resolved_by if body else None
    alert = await engine.resolve_alert(alert_id, resolved_by)
    if alert is None:
        raise HTTPException(status_code=404, detail=f"Alert {alert_id} not found")

    logger.info("alert_resolved_via_api", alert_id=alert_id, resolved_by=resolved_by)
    return await to_item(engine, alert)


@router.post(
    "/detection/run",
    response_model=DetectionRunResponse,
    summary="Run a detection cycle",
)
async def run_detection(
    body: Optional[DetectionRunRequest] = None,
    engine: DetectionEngine = Depends(get_engine),
) -> DetectionRunResponse:
    """Run one detection cycle now and return the alerts it created."""
    organization_ids = body.organization_ids if body else None
    alerts = await engine.run_detection_cycle(organization_ids)
    items = [await to_item(engine, alert) for alert in alerts]
    return DetectionRunResponse(alerts_created=len(items), alerts=items)
