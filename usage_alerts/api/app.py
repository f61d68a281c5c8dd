"""
FastAPI application for the usage alerting engine.

This module creates and configures the FastAPI application with:
- CORS configuration for cross-origin requests
- Router registration for API endpoints
- Lifespan events that close channel sessions on shutdown

Routes:
    /api/alerts, /api/alerts/{id}/resolve, /api/detection/run,
    /api/policy, /api/policy/{severity}, /api/health
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from usage_alerts.detection.engine import DetectionEngine

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Manage application lifespan events.

    Args:
        app: FastAPI application instance.

    Yields:
        None: Control flow returns to the application.
    """
    app.state.start_time = datetime.now(timezone.utc)
    logger.info("api_ready")

    yield

    logger.info("api_shutting_down")
    await app.state.engine.close()


def create_app(engine: DetectionEngine) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        engine: The detection engine the routes operate on.

    Returns:
        FastAPI: Configured FastAPI application instance.

    Example:
        >>> app = create_app(engine)
        >>> import uvicorn
        >>> uvicorn.run(app, host="0.0.0.0", port=8000)
    """
    app = FastAPI(
        title="Usage Alerts",
        description="Usage anomaly detection and alerting API",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.engine = engine
    app.state.start_time = datetime.now(timezone.utc)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    from usage_alerts.api.alerts import router as alerts_router
    from usage_alerts.api.health import router as health_router
    from usage_alerts.api.policy import router as policy_router

    app.include_router(alerts_router, prefix="/api", tags=["Alerts"])
    app.include_router(policy_router, prefix="/api", tags=["Policy"])
    app.include_router(health_router, prefix="/api", tags=["Health"])

    logger.info("fastapi_app_created")

    return app
