"""
Health API endpoint.

Provides:
    GET /api/health - Service status and uptime
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Request
from pydantic import BaseModel

router = APIRouter()


class HealthResponse(BaseModel):
    """Response model for health endpoint."""

    status: str = "healthy"
    uptime_seconds: int = 0
    timestamp: str

    model_config = {
        "json_schema_extra": {
            "example": {
                "status": "healthy",
                "uptime_seconds": 15780,
                "timestamp": "2026-06-06T12:34:57+00:00",
            }
        }
    }


@router.get("/health", response_model=HealthResponse, summary="Get service health")
async def get_health(request: Request) -> HealthResponse:
    now = datetime.now(timezone.utc)
    started_at: datetime = request.app.state.start_time
    return HealthResponse(
        status="healthy",
        uptime_seconds=int((now - started_at).total_seconds()),
        timestamp=now.isoformat(),
    )
