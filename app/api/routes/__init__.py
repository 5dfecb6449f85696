"""
API Routes Package
==================

REST API route definitions.
"""

from app.api.routes.device import router as device_router
from app.api.routes.health import router as health_router
from app.api.routes.tasks import router as tasks_router

__all__ = [
    "device_router",
    "health_router",
    "tasks_router",
]
