#!/usr/bin/env python3
"""
Test: Handoff Parsing
Purpose: Verify handoff directives are read from agent replies

Tests:
- Textual HANDOFF_* blocks (single, multiple, optional instructions)
- Malformed HANDOFF_DATA drops only that block
- Structured JSON channel wins over textual blocks
- Fenced JSON extraction
"""

import asyncio
import sys

from fixtures import run_tests, assert_equal, assert_true, assert_false

from autodrop.agent_layer.handoff import (
    extract_handoffs,
    extract_json,
    format_handoff_block,
    parse_structured_handoffs,
    parse_text_handoffs,
)
from autodrop.models.schemas import AgentHandoff


def test_single_text_block():
    """A complete block becomes one handoff"""
    reply = (
        "I found three promising gadgets.\n"
        "HANDOFF_TO: marketing\n"
        "HANDOFF_CONTEXT: Research done, need product copy\n"
        'HANDOFF_DATA: {"products": ["earbuds", "smartwatch"]}\n'
        "HANDOFF_INSTRUCTIONS: Write in English and Arabic\n"
    )

    handoffs = extract_handoffs(reply, "Product Research Agent")

    assert_equal(len(handoffs), 1, "Should find one handoff")
    handoff = handoffs[0]
    assert_equal(handoff.from_agent, "Product Research Agent")
    assert_equal(handoff.to_agent, "marketing")
    assert_equal(handoff.context, "Research done, need product copy")
    assert_equal(handoff.data, {"products": ["earbuds", "smartwatch"]})
    assert_equal(handoff.instructions, "Write in English and Arabic")


def test_instructions_optional():
    """Blocks without HANDOFF_INSTRUCTIONS leave instructions empty"""
    reply = (
        "HANDOFF_TO: customer-service\n"
        "HANDOFF_CONTEXT: Order shipped\n"
        'HANDOFF_DATA: {"order_id": "A-1"}'
    )

    handoffs = parse_text_handoffs(reply, "Order Management Agent")

    assert_equal(len(handoffs), 1)
    assert_equal(handoffs[0].instructions, None)
    assert_equal(handoffs[0].data, {"order_id": "A-1"})


def test_multiple_blocks_keep_order():
    """Every block is returned in reply order"""
    reply = (
        "HANDOFF_TO: marketing\n"
        "HANDOFF_CONTEXT: first\n"
        "HANDOFF_DATA: {}\n"
        "\n"
        "Some prose in between.\n"
        "HANDOFF_TO: analytics\n"
        "HANDOFF_CONTEXT: second\n"
        "HANDOFF_DATA: [1, 2, 3]\n"
    )

    handoffs = extract_handoffs(reply, "triage")

    assert_equal([h.to_agent for h in handoffs], ["marketing", "analytics"])
    assert_equal(handoffs[1].data, [1, 2, 3])


def test_malformed_data_drops_only_that_block():
    """Invalid JSON in one block does not hide the others"""
    reply = (
        "HANDOFF_TO: marketing\n"
        "HANDOFF_CONTEXT: broken\n"
        "HANDOFF_DATA: {not json}\n"
        "HANDOFF_TO: analytics\n"
        "HANDOFF_CONTEXT: fine\n"
        'HANDOFF_DATA: {"ok": true}\n'
    )

    handoffs = extract_handoffs(reply, "triage")

    assert_equal(len(handoffs), 1, "Malformed block should be skipped")
    assert_equal(handoffs[0].to_agent, "analytics")
    assert_equal(handoffs[0].data, {"ok": True})


def test_reply_without_handoffs():
    """Plain replies carry no handoffs"""
    assert_equal(extract_handoffs("Thanks for reaching out!", "customer-service"), ())
    assert_equal(extract_handoffs("", "customer-service"), ())


def test_structured_channel_preferred():
    """A JSON reply with `handoffs` wins over any textual blocks"""
    reply = (
        '{"answer": "done", "handoffs": [{"to_agent": "marketing", "context": "structured", '
        '"data": {"sku": "X1"}, "instructions": "be brief"}]}'
    )

    structured = parse_structured_handoffs(reply, "Product Research Agent")
    assert_true(structured is not None, "Structured channel should be detected")

    handoffs = extract_handoffs(reply, "Product Research Agent")
    assert_equal(len(handoffs), 1)
    assert_equal(handoffs[0].context, "structured")
    assert_equal(handoffs[0].data, {"sku": "X1"})
    assert_equal(handoffs[0].instructions, "be brief")


def test_structured_empty_list_suppresses_text_blocks():
    """An explicit empty `handoffs` list means no handoffs"""
    reply = '```json\n{"handoffs": []}\n```\nHANDOFF_TO: marketing\nHANDOFF_CONTEXT: x\nHANDOFF_DATA: {}'

    assert_equal(extract_handoffs(reply, "triage"), ())


def test_structured_invalid_entries_skipped():
    """Entries missing required fields are dropped"""
    reply = '{"handoffs": [{"context": "no target"}, {"to_agent": "analytics", "context": "ok"}]}'

    handoffs = extract_handoffs(reply, "triage")

    assert_equal([h.to_agent for h in handoffs], ["analytics"])


def test_extract_json_variants():
    """Bare and fenced JSON are both read"""
    assert_equal(extract_json('{"a": 1}'), {"a": 1})
    assert_equal(extract_json('Here you go:\n```json\n{"b": 2}\n```'), {"b": 2})
    assert_equal(extract_json("no json here"), None)
    assert_equal(extract_json('```json\n{broken\n```'), None)


def test_format_block_is_parseable():
    """A formatted block parses back into the same directive"""
    handoff = AgentHandoff(
        from_agent="order-management",
        to_agent="customer-service",
        context="Notify the customer",
        data={"order_id": "A-7", "items": 2},
        instructions="Mention tracking",
    )

    parsed = parse_text_handoffs(format_handoff_block(handoff), "order-management")

    assert_equal(len(parsed), 1)
    assert_equal(parsed[0].to_agent, handoff.to_agent)
    assert_equal(parsed[0].data, handoff.data)
    assert_false(parsed[0] is handoff)


async def main():
    """Run all handoff parsing tests"""
    return await run_tests("Handoff Parsing Tests", [
        ("Single textual block", test_single_text_block),
        ("Instructions are optional", test_instructions_optional),
        ("Multiple blocks keep order", test_multiple_blocks_keep_order),
        ("Malformed data drops only that block", test_malformed_data_drops_only_that_block),
        ("Reply without handoffs", test_reply_without_handoffs),
        ("Structured channel preferred", test_structured_channel_preferred),
        ("Structured empty list suppresses text", test_structured_empty_list_suppresses_text_blocks),
        ("Structured invalid entries skipped", test_structured_invalid_entries_skipped),
        ("JSON extraction variants", test_extract_json_variants),
        ("Formatted block is parseable", test_format_block_is_parseable),
    ])


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
