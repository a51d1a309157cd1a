#!/usr/bin/env python3
"""
Test: Triage Router
Purpose: Verify inquiry routing decisions and the fallback route

Tests:
- Structured JSON decision
- Labelled-line decision with normalisation
- Missing labels fall back to defaults
- Failures route to customer service
- Inquiry routing opens a conversation
"""

import asyncio
import sys

from fixtures import (
    run_tests, FakeGenerationClient, SystemContext, assert_equal, assert_true, assert_in
)

from autodrop.agent_layer.agent import SingleAgent
from autodrop.agent_layer.team import DEFAULT_PROFILES, TRIAGE_AGENT_ID
from autodrop.agent_layer.triage import FALLBACK_ROUTING, TriageRouter, parse_routing_decision
from autodrop.models.schemas import EventType, Language, Priority, TargetAgent


def triage_router(client: FakeGenerationClient) -> TriageRouter:
    profile = next(p for p in DEFAULT_PROFILES if p.agent_id == TRIAGE_AGENT_ID)
    return TriageRouter(SingleAgent(profile, client))


async def test_structured_decision():
    """A JSON decision is used as-is"""
    client = FakeGenerationClient(
        default_reply='{"target_agent": "order-management", "context": "Late parcel", '
        '"priority": "high", "reasoning": "Shipping delay"}'
    )

    routing = await triage_router(client).route("Where is my order #123?")

    assert_equal(routing.target_agent, TargetAgent.ORDER_MANAGEMENT)
    assert_equal(routing.priority, Priority.HIGH)
    assert_equal(routing.context, "Late parcel")
    assert_equal(routing.reasoning, "Shipping delay")
    assert_in("Where is my order #123?", client.calls[0]["prompt"])
    assert_in("Language Preference: en", client.calls[0]["prompt"])


async def test_labelled_lines_decision():
    """Labelled lines are parsed when no JSON is given"""
    reply = (
        "Thanks! Let me connect you.\n"
        "TARGET_AGENT: Marketing\n"
        "CONTEXT: Wants help with product descriptions\n"
        "PRIORITY: LOW\n"
        "REASONING: Content request\n"
    )
    client = FakeGenerationClient(default_reply=reply)

    routing = await triage_router(client).route("Can you write my product copy?", language="ar")

    assert_equal(routing.target_agent, TargetAgent.MARKETING)
    assert_equal(routing.priority, Priority.LOW)
    assert_equal(routing.context, "Wants help with product descriptions")
    assert_equal(routing.response, reply)
    assert_equal(client.calls[0]["options"].language, Language.AR)


def test_parse_defaults():
    """Missing or unknown values use the default decision"""
    decision = parse_routing_decision("TARGET_AGENT: billing-department\nPRIORITY: whenever")

    assert_equal(decision.target_agent, TargetAgent.CUSTOMER_SERVICE)
    assert_equal(decision.priority, Priority.MEDIUM)
    assert_equal(decision.context, "Default routing - content analysis needed")
    assert_equal(decision.reasoning, "Automated routing based on content analysis")


def test_labels_must_start_a_line():
    """Labels embedded mid-sentence are not treated as decisions"""
    decision = parse_routing_decision("I could set TARGET_AGENT: analytics but won't.")

    assert_equal(decision.target_agent, TargetAgent.CUSTOMER_SERVICE)


async def test_generation_failure_falls_back():
    """A failing triage agent still produces a route"""

    def boom(call):
        raise RuntimeError("network down")

    routing = await triage_router(FakeGenerationClient(responder=boom)).route("Help")

    assert_equal(routing.target_agent, TargetAgent.CUSTOMER_SERVICE)
    assert_equal(routing.priority, Priority.MEDIUM)
    assert_true(routing.response, "Route always carries a response")


async def test_invalid_language_falls_back():
    """Unsupported language values route to the fallback"""
    routing = await triage_router(FakeGenerationClient()).route("Help", language="fr")

    assert_equal(routing, FALLBACK_ROUTING)
    assert_true(routing is not FALLBACK_ROUTING, "Fallback is returned as a copy")


async def test_route_inquiry_opens_conversation():
    """Routing starts a customer-service conversation with the target"""
    client = FakeGenerationClient(
        default_reply='{"target_agent": "product-research", "context": "Sourcing question", '
        '"priority": "urgent", "reasoning": "Supplier"}'
    )

    async with SystemContext(client=client) as ctx:
        routed = ctx.collect(EventType.INQUIRY_ROUTED)

        conversation_id, routing = await ctx.system.route_inquiry("Find me a supplier for phone cases")
        conversation = await ctx.system.conversations.get(conversation_id)
        await ctx.settle()

        assert_equal(routing.target_agent, TargetAgent.PRODUCT_RESEARCH)
        assert_equal(conversation.participants, ["customer-service", "product-research"])
        assert_equal(conversation.topic, "Customer Inquiry - urgent priority")
        assert_equal(len(conversation.messages), 1)
        assert_equal(conversation.messages[0].agent_id, "system")
        assert_equal(conversation.messages[0].content, "Routed to product-research: Sourcing question")
        assert_equal(routed.count(), 1)
        assert_equal(routed.get_events()[0]["conversation_id"], conversation_id)


async def main():
    """Run all triage tests"""
    return await run_tests("Triage Router Tests", [
        ("Structured decision", test_structured_decision),
        ("Labelled lines decision", test_labelled_lines_decision),
        ("Parse defaults", test_parse_defaults),
        ("Labels must start a line", test_labels_must_start_a_line),
        ("Generation failure falls back", test_generation_failure_falls_back),
        ("Invalid language falls back", test_invalid_language_falls_back),
        ("Route inquiry opens conversation", test_route_inquiry_opens_conversation),
    ])


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
