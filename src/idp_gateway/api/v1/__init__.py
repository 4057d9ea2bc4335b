"""API v1 router aggregation.

This module combines all v1 API routers into a single router
that can be mounted on the main FastAPI application.
"""

from fastapi import APIRouter

from .health import router as health_router
from .oauth2 import router as oauth2_router

# Create main v1 router
router = APIRouter(prefix="/api/v1")

router.include_router(health_router, tags=["health"])
router.include_router(oauth2_router, tags=["oauth2"])

__all__ = ["router"]
