"""Application startup and shutdown lifecycle management."""

from contextlib import asynccontextmanager
import structlog
from fastapi import FastAPI

from autodrop.config.settings import settings
from autodrop.core.event_bus import EventBus
from autodrop.core.events import ActivityFeed, register_event_handlers
from autodrop.agent_layer.orchestrator import MultiAgentSystem

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Modern FastAPI lifespan management for startup/shutdown.
    Manages the event bus and the multi-agent system.
    """
    logger.info("application_starting", environment=settings.environment)

    settings.validate_critical_config()

    event_bus = EventBus()
    await event_bus.start()

    activity_feed = ActivityFeed()
    register_event_handlers(event_bus, activity_feed)

    system = MultiAgentSystem.create(event_bus=event_bus)
    agent_count = await system.initialize()
    logger.info("multi_agent_system_ready", agents=agent_count)

    # Store in app state for access in routes
    app.state.event_bus = event_bus
    app.state.activity_feed = activity_feed
    app.state.system = system

    logger.info("application_ready")

    yield

    # Shutdown
    logger.info("application_shutting_down")

    system = app.state.system

    await system.chat_log.flush()
    await event_bus.stop()
    await system.client.aclose()

    logger.info("application_stopped")
