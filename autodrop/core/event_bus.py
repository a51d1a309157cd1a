"""
Event bus implementation using AsyncIO queues.
Provides pub/sub pattern for asynchronous event processing.
"""

import asyncio
from typing import Callable, Awaitable, Dict, List, Optional
from collections import defaultdict, deque
import structlog

from autodrop.models.schemas import EventType, utcnow
from autodrop.config.settings import settings

logger = structlog.get_logger()


class EventBus:
    """
    Lightweight event bus using asyncio queues.
    Supports multiple subscribers per event type; events whose handlers keep
    failing are parked in an in-memory dead letter list.
    """

    def __init__(self, max_queue_size: int = None, max_retries: int = None, dead_letter_size: int = 100):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue_size or settings.event_bus_max_queue_size)
        self._handlers: Dict[EventType, List[Callable[[dict], Awaitable[None]]]] = defaultdict(list)
        self._running = False
        self._processor_task: Optional[asyncio.Task] = None
        self._max_retries = max_retries or settings.event_bus_max_retries
        self._retry_counts: Dict[str, int] = {}  # Track failures per event and handler
        self._dead_letters: deque = deque(maxlen=dead_letter_size)
        self._published = 0
        self._processed = 0

    def subscribe(self, event_type: EventType, handler: Callable[[dict], Awaitable[None]]):
        """
        Subscribe a handler to an event type.

        Args:
            event_type: The event type to listen for
            handler: Async function that receives event data
        """
        self._handlers[event_type].append(handler)
        logger.info(
            "event_handler_subscribed",
            event_type=event_type.value,
            handler=handler.__name__,
            total_handlers=len(self._handlers[event_type]),
        )

    async def publish(self, event_type: EventType, data: dict):
        """
        Publish an event to the bus.

        Args:
            event_type: The type of event
            data: Event payload
        """
        event = {"type": event_type, "data": data, "published_at": utcnow()}
        await self._queue.put(event)
        self._published += 1
        logger.debug("event_published", event_type=event_type.value, queue_size=self._queue.qsize())

    async def start(self):
        """Start the event processor"""
        if self._running:
            logger.warning("event_bus_already_running")
            return

        self._running = True
        self._processor_task = asyncio.create_task(self._process_events())
        logger.info("event_bus_started")

    async def stop(self):
        """Stop the event processor"""
        if not self._running:
            return

        self._running = False

        if self._processor_task:
            self._processor_task.cancel()
            try:
                await self._processor_task
            except asyncio.CancelledError:
                pass

        logger.info("event_bus_stopped", pending_events=self._queue.qsize())

    async def wait_until_idle(self, timeout: float = 5.0):
        """Block until every queued event has been handled"""
        await asyncio.wait_for(self._queue.join(), timeout=timeout)

    async def _process_events(self):
        """
        Background task that processes events from the queue.
        Runs handlers for each event type.
        """
        logger.info("event_processor_started")

        while self._running:
            try:
                # Wait for event with timeout to allow clean shutdown
                event = await asyncio.wait_for(self._queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                logger.info("event_processor_cancelled")
                break

            try:
                await self._dispatch(event)
            except asyncio.CancelledError:
                logger.info("event_processor_cancelled")
                self._queue.task_done()
                break
            except Exception as e:
                logger.error("event_processor_error", error=str(e), exc_info=True)

            self._processed += 1
            self._queue.task_done()

        logger.info("event_processor_stopped")

    async def _dispatch(self, event: dict):
        event_type = event["type"]
        event_data = event["data"]

        handlers = self._handlers.get(event_type, [])
        if not handlers:
            logger.debug("no_handlers_for_event", event_type=event_type.value)
            return

        logger.debug("processing_event", event_type=event_type.value, handlers=len(handlers))

        event_id = f"{event_type.value}:{id(event)}"

        # Run all handlers concurrently
        await asyncio.gather(
            *[self._run_handler(handler, event_data, event_type, event_id) for handler in handlers],
            return_exceptions=True,
        )

    async def _run_handler(self, handler: Callable, data: dict, event_type: EventType, event_id: str):
        """
        Run a single handler, retrying it until it succeeds or the retry
        budget is spent.
        """
        key = f"{event_id}:{handler.__name__}"

        while True:
            try:
                await handler(data)
                self._retry_counts.pop(key, None)
                return
            except Exception as e:
                retry_count = self._retry_counts.get(key, 0) + 1
                self._retry_counts[key] = retry_count

                logger.error(
                    "event_handler_error",
                    handler=handler.__name__,
                    event_type=event_type.value,
                    error=str(e),
                    retry_count=retry_count,
                    exc_info=True,
                )

                if retry_count >= self._max_retries:
                    self._move_to_dead_letters(event_type, data, handler.__name__, str(e), retry_count)
                    self._retry_counts.pop(key, None)
                    return

                logger.info(
                    "event_will_retry",
                    event_type=event_type.value,
                    retry_count=retry_count,
                    max_retries=self._max_retries,
                )

    def _move_to_dead_letters(self, event_type: EventType, data: dict, handler: str, error: str, retry_count: int):
        self._dead_letters.append(
            {
                "event_type": event_type.value,
                "data": data,
                "handler": handler,
                "error": error,
                "retry_count": retry_count,
                "failed_at": utcnow().isoformat(),
            }
        )
        logger.warning(
            "event_moved_to_dead_letters",
            event_type=event_type.value,
            handler=handler,
            error=error,
            retry_count=retry_count,
        )

    @property
    def dead_letters(self) -> List[dict]:
        return list(self._dead_letters)

    def get_stats(self) -> dict:
        """Get event bus statistics"""
        return {
            "running": self._running,
            "queue_size": self._queue.qsize(),
            "max_queue_size": self._queue.maxsize,
            "published": self._published,
            "processed": self._processed,
            "dead_letters": len(self._dead_letters),
            "event_types": [event_type.value for event_type in self._handlers.keys()],
            "total_handlers": sum(len(handlers) for handlers in self._handlers.values()),
        }
