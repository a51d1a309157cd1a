#!/usr/bin/env python3
"""
Test: Conversation Manager
Purpose: Verify conversation lifecycle, reply fan-out and idempotent delivery

Tests:
- Initial message stored as a system message
- Fan-out skips the sender and empty replies
- Participant failures do not block the others
- Idempotency keys deliver a message once
- Fan-out depth bounds re-broadcasting (an explicit depth of 0 disables it)
- Remembered idempotency keys are capped
"""

import asyncio
import sys

from fixtures import (
    run_tests, FakeGenerationClient, SystemContext,
    assert_equal, assert_true, assert_in, assert_not_in, assert_raises_async
)

from autodrop.adapters.agent_directory import default_agents
from autodrop.agent_layer.conversation_handler import ConversationManager
from autodrop.core.exceptions import ConversationNotFound, GenerationFailed, InvalidInput
from autodrop.models.schemas import ConversationStatus, EventType

# Registry system prompt -> agent id
AGENT_BY_PROMPT = {record.config.system_prompt: record.id for record in default_agents()}


def agent_of(call) -> str:
    return AGENT_BY_PROMPT.get(call["system_prompt"], "unknown")


def scripted(replies: dict):
    """Responder answering per agent id; callables may raise"""

    def responder(call):
        reply = replies.get(agent_of(call), f"{agent_of(call)} reply")
        return reply(call) if callable(reply) else reply

    return responder


async def test_start_with_initial_message():
    """The opening message is stored with the system sender"""
    async with SystemContext() as ctx:
        conversation_id = await ctx.system.conversations.start(
            ["customer-service", "marketing"], "Launch plan", "Kick-off"
        )
        conversation = await ctx.system.conversations.get(conversation_id)

        assert_equal(conversation.participants, ["customer-service", "marketing"])
        assert_equal(conversation.status, ConversationStatus.ACTIVE)
        assert_equal(len(conversation.messages), 1)
        assert_equal(conversation.messages[0].agent_id, "system")
        assert_equal(conversation.messages[0].content, "Kick-off")
        assert_equal(len(ctx.client.calls), 0, "Starting a conversation does not call agents")


async def test_start_requires_participants():
    async with SystemContext() as ctx:
        await assert_raises_async(InvalidInput, ctx.system.conversations.start([], "empty"))


async def test_fan_out_excludes_sender():
    """Every other participant answers; the sender never answers itself"""
    client = FakeGenerationClient(responder=scripted({}))

    async with SystemContext(client=client) as ctx:
        manager = ctx.system.conversations
        conversation_id = await manager.start(["customer-service", "marketing", "analytics"], "Q3 review")

        appended = await manager.add_message(conversation_id, "customer-service", "Sales are up 10%")
        conversation = await manager.get(conversation_id)

        assert_equal(appended[0].agent_id, "customer-service")
        assert_equal(appended[0].content, "Sales are up 10%")
        assert_equal(sorted(m.agent_id for m in appended[1:]), ["analytics", "marketing"])
        for reply in appended[1:]:
            assert_equal(reply.metadata, {"in_reply_to": "customer-service"})

        responders = [agent_of(c) for c in client.calls]
        assert_not_in("customer-service", responders)
        assert_in('In conversation "Q3 review", customer-service said: "Sales are up 10%".', client.calls[0]["prompt"])
        assert_equal([m.id for m in conversation.messages], [m.id for m in appended])


async def test_empty_and_failed_replies_skipped():
    """Blank replies are dropped and a failing participant is tolerated"""

    def fail(call):
        raise GenerationFailed("AI generation failed: overloaded")

    client = FakeGenerationClient(responder=scripted({"marketing": "   ", "analytics": fail}))

    async with SystemContext(client=client) as ctx:
        manager = ctx.system.conversations
        conversation_id = await manager.start(
            ["customer-service", "marketing", "analytics", "order-management"], "Ops"
        )

        appended = await manager.add_message(conversation_id, "customer-service", "Any blockers?")

        assert_equal([m.agent_id for m in appended], ["customer-service", "order-management"])
        analytics = await ctx.system.directory.get_agent("analytics")
        assert_equal(analytics.metrics.failed_requests, 4 + 1, "Failure recorded in metrics")


async def test_idempotent_delivery():
    """Repeating an idempotency key returns the first result without side effects"""
    client = FakeGenerationClient(responder=scripted({}))

    async with SystemContext(client=client) as ctx:
        manager = ctx.system.conversations
        conversation_id = await manager.start(["customer-service", "marketing"], "Dedup")

        first = await manager.add_message(conversation_id, "customer-service", "hello", idempotency_key="k-1")
        calls_after_first = len(client.calls)
        second = await manager.add_message(conversation_id, "customer-service", "hello", idempotency_key="k-1")

        conversation = await manager.get(conversation_id)
        assert_equal([m.id for m in second], [m.id for m in first])
        assert_equal(len(client.calls), calls_after_first)
        assert_equal(len(conversation.messages), 2)

        await manager.add_message(conversation_id, "customer-service", "hello", idempotency_key="k-2")
        conversation = await manager.get(conversation_id)
        assert_equal(len(conversation.messages), 4, "A new key is a new delivery")


async def test_concurrent_idempotent_delivery():
    """Simultaneous retries with one key deliver once"""
    client = FakeGenerationClient(responder=scripted({}), delay=0.05)

    async with SystemContext(client=client) as ctx:
        manager = ctx.system.conversations
        conversation_id = await manager.start(["customer-service", "marketing"], "Race")

        results = await asyncio.gather(*[
            manager.add_message(conversation_id, "customer-service", "ping", idempotency_key="same")
            for _ in range(5)
        ])

        conversation = await manager.get(conversation_id)
        assert_equal(len(conversation.messages), 2)
        assert_equal(len(client.calls), 1)
        assert_true(all([m.id for m in r] == [m.id for m in results[0]] for r in results))


async def test_fan_out_depth():
    """Replies are re-broadcast only while depth remains"""
    client = FakeGenerationClient(responder=scripted({}))

    async with SystemContext(client=client) as ctx:
        manager = ctx.system.conversations

        shallow_id = await manager.start(["customer-service", "marketing"], "Depth 1")
        shallow = await manager.add_message(shallow_id, "customer-service", "Idea?")
        assert_equal([m.agent_id for m in shallow], ["customer-service", "marketing"])

        deep_id = await manager.start(["customer-service", "marketing"], "Depth 2")
        deep = await manager.add_message(deep_id, "customer-service", "Idea?", max_depth=2)
        assert_equal([m.agent_id for m in deep], ["customer-service", "marketing", "customer-service"])
        assert_equal(deep[2].metadata, {"in_reply_to": "marketing"})

        calls_before = len(client.calls)
        silent_id = await manager.start(["customer-service", "marketing"], "Depth 0")
        silent = await manager.add_message(silent_id, "customer-service", "Note to self", max_depth=0)
        assert_equal([m.agent_id for m in silent], ["customer-service"], "Depth 0 means no replies")
        assert_equal(len(client.calls), calls_before)


async def test_idempotency_cache_is_bounded():
    """Only the most recent keys are remembered"""
    client = FakeGenerationClient(responder=scripted({}))

    async with SystemContext(client=client) as ctx:
        manager = ConversationManager(ctx.system.agent_manager, idempotency_cache_size=2)
        conversation_id = await manager.start(["customer-service", "marketing"], "Bounded")

        for key in ("k-1", "k-2", "k-3"):
            await manager.add_message(conversation_id, "customer-service", key, idempotency_key=key)

        assert_equal(len(manager._idempotency), 2)
        assert_not_in((conversation_id, "k-1"), manager._idempotency)

        calls_before = len(client.calls)
        await manager.add_message(conversation_id, "customer-service", "k-3", idempotency_key="k-3")
        assert_equal(len(client.calls), calls_before, "Recent key is still deduplicated")

        await manager.add_message(conversation_id, "customer-service", "k-1", idempotency_key="k-1")
        assert_equal(len(client.calls), calls_before + 1, "Evicted key is delivered again")

        conversation = await manager.get(conversation_id)
        assert_equal(len(conversation.messages), 8)


async def test_status_and_lookup():
    """Status is caller-controlled and unknown ids are rejected"""
    async with SystemContext() as ctx:
        manager = ctx.system.conversations
        conversation_id = await manager.start(["customer-service"], "Archive me")

        archived = await manager.set_status(conversation_id, ConversationStatus.ARCHIVED)
        assert_equal(archived.status, ConversationStatus.ARCHIVED)
        reopened = await manager.set_status(conversation_id, ConversationStatus.ACTIVE)
        assert_equal(reopened.status, ConversationStatus.ACTIVE)

        await assert_raises_async(ConversationNotFound, manager.get("conv_missing"))
        await assert_raises_async(
            ConversationNotFound, manager.add_message("conv_missing", "customer-service", "hi")
        )
        await assert_raises_async(
            ConversationNotFound, manager.set_status("conv_missing", ConversationStatus.COMPLETED)
        )


async def test_message_events():
    """Each appended message publishes a conversation.message event"""
    async with SystemContext() as ctx:
        messages = ctx.collect(EventType.CONVERSATION_MESSAGE)
        manager = ctx.system.conversations
        conversation_id = await manager.start(["customer-service", "marketing"], "Events")

        appended = await manager.add_message(conversation_id, "marketing", "Campaign live")
        await ctx.settle()

        assert_equal(messages.count(), len(appended))
        assert_equal([e["message_id"] for e in messages.get_events()], [m.id for m in appended])


async def main():
    """Run all conversation manager tests"""
    return await run_tests("Conversation Manager Tests", [
        ("Start with initial message", test_start_with_initial_message),
        ("Start requires participants", test_start_requires_participants),
        ("Fan-out excludes sender", test_fan_out_excludes_sender),
        ("Empty and failed replies skipped", test_empty_and_failed_replies_skipped),
        ("Idempotent delivery", test_idempotent_delivery),
        ("Concurrent idempotent delivery", test_concurrent_idempotent_delivery),
        ("Fan-out depth", test_fan_out_depth),
        ("Idempotency cache is bounded", test_idempotency_cache_is_bounded),
        ("Status and lookup", test_status_and_lookup),
        ("Message events", test_message_events),
    ])


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
