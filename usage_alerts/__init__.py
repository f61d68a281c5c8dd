"""
Usage Alerts.

Usage anomaly detection and alerting for a multi-tenant transcription
platform.

This package provides:
- Per-tenant usage baselines and anomaly heuristics
- Deduplicated alert lifecycle management
- Severity based notification routing with batched summaries
- Storage clients for PostgreSQL and Redis
- A FastAPI surface for alerts and notification policy
"""

__version__ = "0.1.0"
__author__ = "Om Mengshetti"
