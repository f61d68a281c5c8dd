"""
REST API for the alerting engine.

This package provides FastAPI routers for:
- Alerts: Active alerts, resolution and on-demand detection
- Policy: Notification policy table
- Health: Service status
"""

from usage_alerts.api.app import create_app

__all__ = ["create_app"]
