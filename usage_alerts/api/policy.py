"""
Notification policy API endpoints.

Provides:
    GET /api/policy - Current severity to channels and cadence table
    PUT /api/policy/{severity} - Replace one severity's policy
"""

from typing import Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel

from usage_alerts.api.alerts import get_engine
from usage_alerts.config.models import NotificationPolicy, SeverityPolicy
from usage_alerts.detection.engine import DetectionEngine
from usage_alerts.models.usage import Severity

logger = structlog.get_logger(__name__)

router = APIRouter()


class SeverityPolicyModel(BaseModel):
    """Model for one severity's policy."""

    channels: List[str]
    cadence: str
    window_seconds: Optional[int] = None


class PolicyResponse(BaseModel):
    """Response model for the policy endpoints."""

    severities: Dict[str, SeverityPolicyModel]
    channel_timeout_seconds: float
    summary_top_n: int


def to_response(policy: NotificationPolicy) -> PolicyResponse:
    return PolicyResponse(
        severities={
            severity.value: SeverityPolicyModel(
                channels=entry.channels,
                cadence=entry.cadence.value,
                window_seconds=entry.window_seconds,
            )
            for severity, entry in sorted(
                policy.severities.items(), key=lambda item: item[0].rank, reverse=True
            )
        },
        channel_timeout_seconds=policy.channel_timeout_seconds,
        summary_top_n=policy.summary_top_n,
    )


@router.get("/policy", response_model=PolicyResponse, summary="Get notification policy")
async def get_policy(engine: DetectionEngine = Depends(get_engine)) -> PolicyResponse:
    return to_response(engine.get_policy())


@router.put(
    "/policy/{severity}",
    response_model=PolicyResponse,
    summary="Update one severity's policy",
)
async def update_policy(
    severity: Severity,
    body: SeverityPolicy,
    engine: DetectionEngine = Depends(get_engine),
) -> PolicyResponse:
    """
    Replace the channels and cadence for one severity.

    Args:
        severity: Severity to update.
        body: New policy.

    Returns:
        PolicyResponse: The full updated table.
    """
    policy = engine.update_severity_policy(severity, body)
    logger.info("policy_updated_via_api", severity=severity.value)
    return to_response(policy)
