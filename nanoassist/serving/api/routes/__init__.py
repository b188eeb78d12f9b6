"""
API Routes Module
"""
from .analytics import router as analytics_router
from .auth import router as auth_router
from .health import router as health_router
from .recordings import router as recordings_router

__all__ = [
    "analytics_router",
    "auth_router",
    "health_router",
    "recordings_router",
]
