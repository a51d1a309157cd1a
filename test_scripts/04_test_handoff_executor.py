#!/usr/bin/env python3
"""
Test: Handoff Executor
Purpose: Verify handoff delivery, history and event publication

Tests:
- Destination receives context, data and instructions
- Sequential handoffs overwrite the destination context
- History records completed handoffs only
- Unknown destination is rejected
- Secondary handoffs are reported, not executed
- Cross-agent workflows chain two agents
"""

import asyncio
import sys

from fixtures import (
    run_tests, FakeGenerationClient, SystemContext, reply_for, role_profile,
    assert_equal, assert_true, assert_in, assert_raises_async
)

from autodrop.agent_layer.handoff_executor import HandoffExecutor
from autodrop.agent_layer.team import DEFAULT_PROFILES, build_team
from autodrop.core.exceptions import GenerationFailed, UnknownAgent
from autodrop.models.schemas import AgentHandoff, EventType


def executor_for(client, event_bus=None) -> HandoffExecutor:
    agents = build_team(client, profiles=[role_profile("marketing"), role_profile("analytics")])
    return HandoffExecutor(agents, event_bus=event_bus)


async def test_handoff_delivers_context():
    """Destination agent sees the system note, payload and context"""
    client = FakeGenerationClient(default_reply="Copy drafted.")
    executor = executor_for(client)

    reply = await executor.execute(
        AgentHandoff(
            from_agent="product-research",
            to_agent="marketing",
            context="Research completed",
            data={"products": ["lamp"]},
            instructions="Keep it short",
        )
    )

    assert_equal(reply, "Copy drafted.")
    call = client.calls[0]
    assert_in("HANDOFF RECEIVED from product-research", call["prompt"])
    assert_in("Context: Research completed", call["prompt"])
    assert_in("Special Instructions: Keep it short", call["prompt"])
    assert_in('user: {"products": ["lamp"]}', call["prompt"])
    assert_in('"handoff_from": "product-research"', call["system_prompt"])

    agent = executor.agents["marketing"]
    assert_equal(agent.context.handoff_context, "Research completed")
    assert_equal(agent.context.handoff_data, {"products": ["lamp"]})


async def test_sequential_handoffs_overwrite_context():
    """The second handoff replaces the first one's context and data entirely"""
    client = FakeGenerationClient()
    executor = executor_for(client)

    await executor.execute(
        AgentHandoff(from_agent="product-research", to_agent="marketing", context="First brief", data={"x": 1, "y": 2})
    )
    await executor.execute(
        AgentHandoff(from_agent="analytics", to_agent="marketing", context="Second brief", data={"z": 3})
    )

    context = executor.agents["marketing"].context
    assert_equal(context.handoff_from, "analytics")
    assert_equal(context.handoff_context, "Second brief")
    assert_equal(context.handoff_data, {"z": 3}, "Data is replaced, not merged")

    second_prompt = client.calls[1]["system_prompt"]
    assert_in('"handoff_data": {', second_prompt)
    assert_in('"z": 3', second_prompt)
    assert_true('"x": 1' not in second_prompt)
    assert_true("First brief" not in second_prompt)


async def test_history_records_completion():
    """Completed handoffs are appended with a completion suffix"""
    executor = executor_for(FakeGenerationClient())
    handoff = AgentHandoff(from_agent="marketing", to_agent="analytics", context="Campaign ended", data={})

    await executor.execute(handoff)
    history = await executor.get_history()

    assert_equal(len(history), 1)
    assert_true(history[0].context.startswith("Campaign ended - Completed at "))
    assert_equal(handoff.context, "Campaign ended", "Original handoff is not modified")


async def test_unknown_destination():
    """Handoffs to unregistered agents fail without touching history"""
    executor = executor_for(FakeGenerationClient())

    error = await assert_raises_async(
        UnknownAgent,
        executor.execute(AgentHandoff(from_agent="marketing", to_agent="legal", context="?")),
    )

    assert_equal(str(error), "Agent legal not found")
    assert_equal(len(await executor.get_history()), 0)


async def test_generation_failure_not_recorded():
    """A failing destination propagates and records nothing"""

    def boom(call):
        raise GenerationFailed("AI generation failed: quota")

    executor = executor_for(FakeGenerationClient(responder=boom))

    await assert_raises_async(
        GenerationFailed,
        executor.execute(AgentHandoff(from_agent="marketing", to_agent="analytics", context="x")),
    )
    assert_equal(len(await executor.get_history()), 0)


async def test_secondary_handoffs_reported_only():
    """Handoffs in the destination's reply are published, not executed"""

    def responder(call):
        if reply_for(call) == "marketing":
            return (
                "Drafted. Passing numbers on.\n"
                "HANDOFF_TO: analytics\n"
                "HANDOFF_CONTEXT: Track conversions\n"
                'HANDOFF_DATA: {"campaign": "spring"}'
            )
        return "analytics reply"

    client = FakeGenerationClient(responder=responder)
    profiles = [role_profile("triage"), role_profile("marketing"), role_profile("analytics")]

    async with SystemContext(client=client, profiles=profiles) as ctx:
        executed = ctx.collect(EventType.HANDOFF_EXECUTED)
        detected = ctx.collect(EventType.HANDOFF_DETECTED)

        reply = await ctx.system.execute_handoff(
            AgentHandoff(from_agent="product-research", to_agent="marketing", context="copy", data={})
        )
        await ctx.settle()

        assert_in("Drafted.", reply)
        assert_equal(len(client.calls_for("ROLE:analytics")), 0, "Secondary handoff must not run")
        assert_equal(executed.count(), 1)
        assert_equal(detected.count(), 1)
        assert_equal(detected.get_events()[0]["to_agent"], "analytics")
        assert_equal(len(await ctx.system.handoffs.get_history()), 1)


async def test_product_research_to_marketing():
    """Research output is handed to marketing and both phases are reported"""

    def responder(call):
        if "product research specialist" in call["system_prompt"]:
            return "Top pick: ergonomic lamp"
        if "marketing specialist" in call["system_prompt"]:
            return "Light up your desk!"
        return "other"

    client = FakeGenerationClient(responder=responder)

    async with SystemContext(client=client, profiles=DEFAULT_PROFILES) as ctx:
        report = await ctx.system.product_research_to_marketing("desk lamps")
        history = await ctx.system.handoffs.get_history()

        assert_in("**Research Phase:**\nTop pick: ergonomic lamp", report)
        assert_in("**Marketing Phase:**\nLight up your desk!", report)
        assert_equal(len(history), 1)
        assert_equal(history[0].from_agent, "product-research")
        assert_equal(history[0].to_agent, "marketing")
        assert_equal(history[0].data["research_results"], "Top pick: ergonomic lamp")


async def test_order_to_customer_service():
    """Order processing hands customer details to customer service"""
    async with SystemContext(client=FakeGenerationClient(default_reply="done")) as ctx:
        order = {"id": "ORD-9", "customer": {"name": "Lina"}, "items": 2}

        report = await ctx.system.order_to_customer_service(order)
        history = await ctx.system.handoffs.get_history()

        assert_true(report.startswith("Order workflow completed:"))
        assert_equal(history[0].to_agent, "customer-service")
        assert_equal(history[0].data["customer_info"], {"name": "Lina"})
        assert_equal(history[0].data["order_details"], order)


async def main():
    """Run all handoff executor tests"""
    return await run_tests("Handoff Executor Tests", [
        ("Handoff delivers context", test_handoff_delivers_context),
        ("Sequential handoffs overwrite context", test_sequential_handoffs_overwrite_context),
        ("History records completion", test_history_records_completion),
        ("Unknown destination", test_unknown_destination),
        ("Generation failure not recorded", test_generation_failure_not_recorded),
        ("Secondary handoffs reported only", test_secondary_handoffs_reported_only),
        ("Product research to marketing", test_product_research_to_marketing),
        ("Order to customer service", test_order_to_customer_service),
    ])


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
