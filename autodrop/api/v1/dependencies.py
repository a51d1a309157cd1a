"""Shared dependencies for API routes."""

from fastapi import Request

from autodrop.agent_layer.conversation_handler import ConversationManager
from autodrop.agent_layer.orchestrator import MultiAgentSystem
from autodrop.core.event_bus import EventBus
from autodrop.core.events import ActivityFeed
from autodrop.core.workflow_engine import WorkflowEngine


def get_event_bus(request: Request) -> EventBus:
    """Get event bus from app state."""
    return request.app.state.event_bus


def get_activity_feed(request: Request) -> ActivityFeed:
    """Get activity feed from app state."""
    return request.app.state.activity_feed


def get_system(request: Request) -> MultiAgentSystem:
    """Get the multi-agent system from app state."""
    return request.app.state.system


def get_workflow_engine(request: Request) -> WorkflowEngine:
    """Get the workflow engine of the running system."""
    return request.app.state.system.workflows


def get_conversation_manager(request: Request) -> ConversationManager:
    """Get the conversation manager of the running system."""
    return request.app.state.system.conversations
