"""Event handlers for the orchestration layer."""

from collections import deque
from typing import List, Optional

import structlog

from autodrop.config.settings import settings
from autodrop.core.event_bus import EventBus
from autodrop.models.schemas import EventType, utcnow

logger = structlog.get_logger()


class ActivityFeed:
    """Bounded, newest-first record of recent orchestration events"""

    def __init__(self, max_entries: int = None):
        self._entries = deque(maxlen=max_entries or settings.activity_feed_size)

    def record(self, event_type: EventType, data: dict):
        self._entries.append({"type": event_type.value, "data": data, "recorded_at": utcnow().isoformat()})

    def recent(self, limit: int = 50, event_type: Optional[EventType] = None) -> List[dict]:
        entries = reversed(self._entries)
        if event_type:
            entries = (e for e in entries if e["type"] == event_type.value)
        result = []
        for entry in entries:
            if len(result) >= limit:
                break
            result.append(entry)
        return result

    def __len__(self) -> int:
        return len(self._entries)


def register_event_handlers(event_bus: EventBus, activity_feed: ActivityFeed):
    """
    Register handlers for orchestration events.

    Args:
        event_bus: The event bus instance
        activity_feed: Feed backing the activity endpoint
    """

    def make_recorder(event_type: EventType):
        async def record_activity(data: dict):
            activity_feed.record(event_type, data)

        record_activity.__name__ = f"record_{event_type.name.lower()}"
        return record_activity

    async def handle_workflow_failed(data: dict):
        """Surface failed workflows prominently in the logs"""
        logger.warning(
            "workflow_failure_recorded",
            workflow_id=data.get("workflow_id"),
            step_id=data.get("step_id"),
            error=data.get("error"),
        )

    async def handle_handoff_detected(data: dict):
        """Secondary handoffs are reported, never executed"""
        logger.info(
            "secondary_handoff_not_executed",
            from_agent=data.get("from_agent"),
            to_agent=data.get("to_agent"),
        )

    for event_type in EventType:
        event_bus.subscribe(event_type, make_recorder(event_type))

    event_bus.subscribe(EventType.WORKFLOW_FAILED, handle_workflow_failed)
    event_bus.subscribe(EventType.HANDOFF_DETECTED, handle_handoff_detected)

    logger.info("event_handlers_registered", event_types=len(EventType))
