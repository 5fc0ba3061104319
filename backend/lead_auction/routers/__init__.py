"""Lead Auction Engine - API Routers"""
from .applications import router as applications_router
from .offers import router as offers_router
from .scheduler import router as scheduler_router
from .analytics import router as analytics_router

__all__ = [
    "applications_router",
    "offers_router",
    "scheduler_router",
    "analytics_router",
]
