"""
API Module
==========

FastAPI routes for the Screen Pilot Agent.

This package contains:
    - routes/: REST API endpoints (health, tasks, device console)
"""

from app.api.routes import device_router, health_router, tasks_router

__all__ = [
    "device_router",
    "health_router",
    "tasks_router",
]
