"""Health check, metrics and activity endpoints."""

from typing import Optional
from fastapi import APIRouter, Depends, Query

from autodrop.api.v1.dependencies import get_activity_feed, get_event_bus, get_system
from autodrop.models.schemas import EventType, HealthResponse, utcnow

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(system = Depends(get_system)):
    """Health check endpoint"""
    status = await system.agent_manager.health_check()
    return HealthResponse(
        status=status["status"],
        agents=status["agents"],
        uptime_seconds=status["uptime_seconds"],
    )


@router.get("/metrics")
async def metrics(
    system = Depends(get_system),
    event_bus = Depends(get_event_bus),
):
    """
    System metrics endpoint for observability.
    Returns workflow and conversation counts plus event bus metrics.
    """
    stats = await system.get_stats()
    return {
        "timestamp": utcnow().isoformat(),
        **stats,
        "event_bus": event_bus.get_stats(),
    }


@router.get("/api/activity")
async def recent_activity(
    limit: int = Query(50, ge=1, le=500),
    event_type: Optional[EventType] = None,
    activity_feed = Depends(get_activity_feed),
):
    """Recent orchestration events, newest first"""
    events = activity_feed.recent(limit=limit, event_type=event_type)
    return {"events": events, "total": len(events)}
