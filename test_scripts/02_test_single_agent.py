#!/usr/bin/env python3
"""
Test: Single Agent
Purpose: Verify prompt assembly, reply handling and failure modes of one agent

Tests:
- System prompt layout (instructions, context JSON, handoff format)
- Handoffs read from the reply
- Structured output validation
- Unconfigured provider yields the fallback reply
- respond() propagates failures, run() apologises
"""

import asyncio
import json
import sys

from fixtures import (
    run_tests, FakeGenerationClient, assert_equal, assert_true, assert_false,
    assert_in, assert_not_in, assert_raises_async, isolated_settings
)

from autodrop.adapters.llm import CredentialStore, TextGenerationClient
from autodrop.agent_layer.agent import APOLOGY_MESSAGE, AgentProfile, SingleAgent
from autodrop.agent_layer.handoff import HANDOFF_FORMAT_INSTRUCTIONS
from autodrop.core.exceptions import GenerationFailed
from autodrop.models.schemas import Language, RoutingDecision


PROFILE = AgentProfile(
    agent_id="product-research",
    name="Product Research Agent",
    instructions="You research products.",
    temperature=0.4,
    max_tokens=321,
    department="product_research",
    capabilities=("market_analysis", "sourcing"),
)


async def test_system_prompt_layout():
    """Instructions, then context JSON, then handoff instructions"""
    agent = SingleAgent(PROFILE, FakeGenerationClient())
    agent.set_context(handoff_from="triage", handoff_data={"q": "earbuds"})

    prompt = agent.build_system_prompt()

    assert_true(prompt.startswith("You research products."))
    context_start = prompt.index("Context Information:")
    handoff_start = prompt.index(HANDOFF_FORMAT_INSTRUCTIONS)
    assert_true(context_start < handoff_start, "Context precedes handoff format")

    context_json = prompt[context_start + len("Context Information:"):handoff_start].strip()
    context = json.loads(context_json)
    assert_equal(context["department"], "product_research")
    assert_equal(context["capabilities"], ["market_analysis", "sourcing"])
    assert_equal(context["handoff_from"], "triage")
    assert_equal(context["handoff_data"], {"q": "earbuds"})
    assert_not_in("handoff_context", context, "Unset keys are omitted")


async def test_context_last_write_wins():
    """Context keys are overwritten, not merged"""
    agent = SingleAgent(PROFILE, FakeGenerationClient())
    agent.set_context(handoff_from="triage")
    agent.set_context(handoff_from="marketing")

    assert_equal(agent.context.handoff_from, "marketing")


async def test_prompt_and_options_sent():
    """History is flattened and profile sampling settings are passed"""
    client = FakeGenerationClient(default_reply="Here are the results.")
    agent = SingleAgent(PROFILE, client)

    result = await agent.respond(
        [{"role": "system", "content": "note"}, {"role": "user", "content": "find earbuds"}],
        language=Language.AR,
    )

    call = client.calls[0]
    assert_equal(call["prompt"], "system: note\nuser: find earbuds")
    assert_equal(call["model"], PROFILE.model)
    assert_equal(call["options"].temperature, 0.4)
    assert_equal(call["options"].max_tokens, 321)
    assert_equal(call["options"].language, Language.AR)

    assert_equal(result.reply, "Here are the results.")
    assert_equal(result.kind, "reply")
    assert_equal(len(result.messages), 3, "History plus the assistant reply")
    assert_equal(result.messages[-1].role, "assistant")


async def test_reply_with_handoffs():
    """Handoff blocks in the reply are attributed to the agent name"""
    reply = (
        "Research complete.\n"
        "HANDOFF_TO: marketing\n"
        "HANDOFF_CONTEXT: Need copy\n"
        'HANDOFF_DATA: {"sku": "E-1"}'
    )
    agent = SingleAgent(PROFILE, FakeGenerationClient(default_reply=reply))

    result = await agent.respond([{"role": "user", "content": "go"}])

    assert_equal(result.kind, "reply_with_handoffs")
    assert_equal(len(result.handoffs), 1)
    assert_equal(result.handoffs[0].from_agent, "Product Research Agent")
    assert_equal(result.handoffs[0].to_agent, "marketing")
    assert_equal(result.reply, reply, "Reply text is returned unchanged")


async def test_structured_output_valid():
    """A schema-conforming JSON reply is returned as structured output"""
    reply = '```json\n{"target_agent": "marketing", "context": "SEO question", "priority": "low", "reasoning": "copy"}\n```'
    client = FakeGenerationClient(default_reply=reply)
    agent = SingleAgent(PROFILE, client)

    result = await agent.respond([{"role": "user", "content": "route"}], structured_output=RoutingDecision)

    assert_equal(result.structured_output["target_agent"], "marketing")
    assert_equal(result.structured_output["priority"], "low")
    assert_in("Respond ONLY with a JSON object", client.calls[0]["system_prompt"])


async def test_structured_output_invalid():
    """A reply that does not match the schema yields no structured output"""
    agent = SingleAgent(PROFILE, FakeGenerationClient(default_reply='{"target_agent": "nobody"}'))

    result = await agent.respond([{"role": "user", "content": "route"}], structured_output=RoutingDecision)

    assert_equal(result.structured_output, None)
    assert_equal(result.reply, '{"target_agent": "nobody"}')


async def test_unconfigured_provider_fallback():
    """No API key: the configured fallback text is returned, not an error"""
    client = TextGenerationClient(CredentialStore(isolated_settings()))
    agent = SingleAgent(PROFILE, client, fallback_message="Configure keys please.")

    result = await agent.respond([{"role": "user", "content": "hello"}])

    assert_true(result.fallback)
    assert_equal(result.reply, "Configure keys please.")
    assert_equal(result.handoffs, ())


async def test_respond_propagates_failure():
    """respond() surfaces generation failures"""

    def boom(call):
        raise GenerationFailed("AI generation failed: upstream 500")

    agent = SingleAgent(PROFILE, FakeGenerationClient(responder=boom))

    await assert_raises_async(GenerationFailed, agent.respond([{"role": "user", "content": "hi"}]))


async def test_run_apologises_on_failure():
    """run() turns any failure into the apology reply"""

    def boom(call):
        raise GenerationFailed("AI generation failed: upstream 500")

    agent = SingleAgent(PROFILE, FakeGenerationClient(responder=boom))

    result = await agent.run([{"role": "user", "content": "hi"}])

    assert_equal(result.reply, APOLOGY_MESSAGE)
    assert_equal(result.handoffs, ())
    assert_false(result.fallback)


async def main():
    """Run all single agent tests"""
    return await run_tests("Single Agent Tests", [
        ("System prompt layout", test_system_prompt_layout),
        ("Context last write wins", test_context_last_write_wins),
        ("Prompt and options sent", test_prompt_and_options_sent),
        ("Reply with handoffs", test_reply_with_handoffs),
        ("Structured output valid", test_structured_output_valid),
        ("Structured output invalid", test_structured_output_invalid),
        ("Unconfigured provider fallback", test_unconfigured_provider_fallback),
        ("respond propagates failure", test_respond_propagates_failure),
        ("run apologises on failure", test_run_apologises_on_failure),
    ])


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
