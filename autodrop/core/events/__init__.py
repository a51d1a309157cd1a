"""Event handling system for the orchestration layer."""

from autodrop.core.events.handlers import ActivityFeed, register_event_handlers

__all__ = ['ActivityFeed', 'register_event_handlers']
