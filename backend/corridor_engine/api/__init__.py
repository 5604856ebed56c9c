"""
API Routers

FastAPI routers for the corridor engine's operational surface.
"""

from .corridor_routes import router as corridor_router
from .telemetry_routes import router as telemetry_router
from .system_routes import router as system_router

__all__ = [
    "corridor_router",
    "telemetry_router",
    "system_router",
]
