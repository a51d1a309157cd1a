#!/usr/bin/env python3
"""
Test: Event Bus
Purpose: Test event publishing and subscription

Tests:
- Event publishing and receiving
- Multiple subscribers
- Event handler failures don't block others
- Failing handlers are retried, then dead-lettered
- Event bus lifecycle
- Activity feed recording
"""

import asyncio
import sys

from fixtures import (
    print_test_header, print_pass, print_fail, print_summary,
    EventCollector, assert_equal, assert_true
)

from autodrop.core.event_bus import EventBus
from autodrop.core.events import ActivityFeed, register_event_handlers
from autodrop.models.schemas import EventType


async def test_event_publishing_and_receiving():
    """Test basic event publishing and receiving"""
    bus = EventBus()
    collector = EventCollector()

    # Subscribe to event
    bus.subscribe(EventType.WORKFLOW_STARTED, collector.handler)

    # Start bus
    await bus.start()

    try:
        # Publish event
        await bus.publish(EventType.WORKFLOW_STARTED, {"workflow_id": "test-123"})

        # Wait for processing
        await bus.wait_until_idle()

        # Verify event received
        events = collector.get_events()
        assert_equal(len(events), 1, "Should receive one event")
        assert_equal(events[0]["workflow_id"], "test-123")

    finally:
        await bus.stop()


async def test_multiple_subscribers():
    """Test multiple subscribers to same event"""
    bus = EventBus()
    collector1 = EventCollector()
    collector2 = EventCollector()
    collector3 = EventCollector()

    bus.subscribe(EventType.HANDOFF_EXECUTED, collector1.handler)
    bus.subscribe(EventType.HANDOFF_EXECUTED, collector2.handler)
    bus.subscribe(EventType.HANDOFF_EXECUTED, collector3.handler)

    await bus.start()

    try:
        await bus.publish(EventType.HANDOFF_EXECUTED, {"to_agent": "marketing"})
        await bus.wait_until_idle()

        # All should receive
        assert_equal(collector1.count(), 1, "Collector 1 should receive event")
        assert_equal(collector2.count(), 1, "Collector 2 should receive event")
        assert_equal(collector3.count(), 1, "Collector 3 should receive event")

    finally:
        await bus.stop()


async def test_handler_failure_doesnt_block_others():
    """Test that one handler failure doesn't block other handlers"""
    bus = EventBus(max_retries=1)
    success_collector = EventCollector()

    async def failing_handler(data: dict):
        raise Exception("Intentional failure")

    bus.subscribe(EventType.STEP_FAILED, failing_handler)
    bus.subscribe(EventType.STEP_FAILED, success_collector.handler)

    await bus.start()

    try:
        await bus.publish(EventType.STEP_FAILED, {"step_id": "s1"})
        await bus.wait_until_idle()

        assert_equal(
            success_collector.count(),
            1,
            "Success handler should receive event despite other handler failing"
        )

    finally:
        await bus.stop()


async def test_retry_then_dead_letter():
    """A handler is retried up to the limit, then the event is parked"""
    bus = EventBus(max_retries=3)
    attempts = []

    async def flaky_handler(data: dict):
        attempts.append(data["n"])
        raise RuntimeError("still broken")

    recovered = []

    async def recovering_handler(data: dict):
        recovered.append(data["n"])
        if len(recovered) < 2:
            raise RuntimeError("first attempt fails")

    bus.subscribe(EventType.WORKFLOW_FAILED, flaky_handler)
    bus.subscribe(EventType.WORKFLOW_COMPLETED, recovering_handler)
    await bus.start()

    try:
        await bus.publish(EventType.WORKFLOW_FAILED, {"n": 1})
        await bus.publish(EventType.WORKFLOW_COMPLETED, {"n": 2})
        await bus.wait_until_idle()

        assert_equal(len(attempts), 3, "Handler should run max_retries times")
        assert_equal(recovered, [2, 2], "Recovering handler succeeds on retry")

        dead = bus.dead_letters
        assert_equal(len(dead), 1)
        assert_equal(dead[0]["event_type"], EventType.WORKFLOW_FAILED.value)
        assert_equal(dead[0]["handler"], "flaky_handler")
        assert_equal(dead[0]["retry_count"], 3)
        assert_equal(bus.get_stats()["dead_letters"], 1)

    finally:
        await bus.stop()


async def test_event_bus_lifecycle():
    """Test event bus start/stop lifecycle"""
    bus = EventBus()

    stats = bus.get_stats()
    assert_equal(stats["running"], False, "Should not be running initially")

    await bus.start()
    stats = bus.get_stats()
    assert_equal(stats["running"], True, "Should be running after start")

    # Starting twice is a no-op
    await bus.start()

    await bus.stop()
    stats = bus.get_stats()
    assert_equal(stats["running"], False, "Should not be running after stop")


async def test_multiple_event_types():
    """Test subscribing to different event types"""
    bus = EventBus()
    workflow_collector = EventCollector()
    conversation_collector = EventCollector()

    bus.subscribe(EventType.WORKFLOW_STARTED, workflow_collector.handler)
    bus.subscribe(EventType.CONVERSATION_STARTED, conversation_collector.handler)

    await bus.start()

    try:
        await bus.publish(EventType.WORKFLOW_STARTED, {"id": "w1"})
        await bus.publish(EventType.CONVERSATION_STARTED, {"id": "c1"})
        await bus.publish(EventType.WORKFLOW_STARTED, {"id": "w2"})

        await bus.wait_until_idle()

        assert_equal(workflow_collector.count(), 2, "Should receive 2 workflow events")
        assert_equal(conversation_collector.count(), 1, "Should receive 1 conversation event")

        stats = bus.get_stats()
        assert_equal(stats["published"], 3)
        assert_equal(stats["processed"], 3)

    finally:
        await bus.stop()


async def test_event_queue_stats():
    """Test event bus statistics"""
    bus = EventBus(max_queue_size=100)
    collector = EventCollector()

    bus.subscribe(EventType.WORKFLOW_STARTED, collector.handler)
    bus.subscribe(EventType.WORKFLOW_COMPLETED, collector.handler)

    stats = bus.get_stats()
    assert_equal(stats["max_queue_size"], 100, "Max queue size should be 100")
    assert_equal(stats["total_handlers"], 2)
    assert_true(len(stats["event_types"]) > 0, "Should have event types registered")


async def test_activity_feed():
    """Registered handlers record every event newest first"""
    bus = EventBus()
    feed = ActivityFeed(max_entries=3)
    register_event_handlers(bus, feed)
    await bus.start()

    try:
        for n in range(4):
            await bus.publish(EventType.STEP_COMPLETED, {"step_id": f"s{n}"})
        await bus.publish(EventType.INQUIRY_ROUTED, {"target_agent": "marketing"})
        await bus.wait_until_idle()

        assert_equal(len(feed), 3, "Feed is bounded")
        recent = feed.recent()
        assert_equal(recent[0]["type"], "inquiry.routed")
        assert_equal(recent[1]["data"], {"step_id": "s3"})

        steps = feed.recent(event_type=EventType.STEP_COMPLETED)
        assert_equal([e["data"]["step_id"] for e in steps], ["s3", "s2"])
        assert_equal(len(feed.recent(limit=1)), 1)

    finally:
        await bus.stop()


async def main():
    """Run all event bus tests"""
    print_test_header("Event Bus Tests")

    tests_passed = 0
    tests_failed = 0

    tests = [
        ("Event publishing and receiving", test_event_publishing_and_receiving),
        ("Multiple subscribers", test_multiple_subscribers),
        ("Handler failure doesn't block others", test_handler_failure_doesnt_block_others),
        ("Retry then dead letter", test_retry_then_dead_letter),
        ("Event bus lifecycle", test_event_bus_lifecycle),
        ("Multiple event types", test_multiple_event_types),
        ("Event queue statistics", test_event_queue_stats),
        ("Activity feed", test_activity_feed),
    ]

    for test_name, test_func in tests:
        try:
            await test_func()
            print_pass(test_name)
            tests_passed += 1
        except Exception as e:
            print_fail(test_name, str(e))
            import traceback
            traceback.print_exc()
            tests_failed += 1

    print_summary(tests_passed, tests_failed)
    return 0 if tests_failed == 0 else 1


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
