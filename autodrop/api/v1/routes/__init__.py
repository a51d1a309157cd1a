"""API v1 route modules."""

from autodrop.api.v1.routes.health import router as health_router
from autodrop.api.v1.routes.agents import router as agents_router
from autodrop.api.v1.routes.ai import router as ai_router
from autodrop.api.v1.routes.workflows import router as workflows_router
from autodrop.api.v1.routes.conversations import router as conversations_router
from autodrop.api.v1.routes.handoffs import router as handoffs_router

__all__ = [
    'health_router',
    'agents_router',
    'ai_router',
    'workflows_router',
    'conversations_router',
    'handoffs_router',
]
