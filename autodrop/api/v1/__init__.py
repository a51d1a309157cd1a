"""API v1 module - consolidated router for all endpoints."""

from fastapi import APIRouter
from autodrop.api.v1.routes import (
    health_router,
    agents_router,
    ai_router,
    workflows_router,
    conversations_router,
    handoffs_router,
)

# Create main v1 router
router = APIRouter()

# Include all route modules
router.include_router(health_router)
router.include_router(agents_router)
router.include_router(ai_router)
router.include_router(workflows_router)
router.include_router(conversations_router)
router.include_router(handoffs_router)

__all__ = ['router']
