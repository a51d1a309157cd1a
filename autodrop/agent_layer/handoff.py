"""
Handoff protocol between agents.

Agents request a transfer either through a structured JSON reply
(``{"handoffs": [...]}``) or through textual blocks:

    HANDOFF_TO: <agent-id>
    HANDOFF_CONTEXT: <text>
    HANDOFF_DATA: <JSON on one line>
    HANDOFF_INSTRUCTIONS: <text>   (optional)

The structured channel is read first; the textual blocks are the fallback.
"""

import json
import re
from typing import Any, List, Optional, Tuple

import structlog
from pydantic import ValidationError

from autodrop.models.schemas import AgentHandoff, HandoffDirective

logger = structlog.get_logger()

HANDOFF_PATTERN = re.compile(
    r"HANDOFF_TO:\s*([^\n]+)\s*"
    r"HANDOFF_CONTEXT:\s*([^\n]+)\s*"
    r"HANDOFF_DATA:\s*([^\n]+)"
    r"(?:\s*HANDOFF_INSTRUCTIONS:\s*([^\n]+))?",
    re.IGNORECASE,
)

_JSON_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.IGNORECASE | re.DOTALL)

HANDOFF_FORMAT_INSTRUCTIONS = """Handoff Instructions:
When you need to transfer to another agent, use this format:
HANDOFF_TO: [agent-name]
HANDOFF_CONTEXT: [context description]
HANDOFF_DATA: [relevant data as JSON on one line]
HANDOFF_INSTRUCTIONS: [specific instructions for receiving agent]"""


def extract_json(text: str) -> Optional[Any]:
    """
    Read a JSON document from a model reply.

    Accepts a bare JSON reply or the first ```json fenced block.
    Returns None when neither parses.
    """
    if not text:
        return None

    candidates = [text.strip()]
    candidates.extend(match.strip() for match in _JSON_FENCE.findall(text))

    for candidate in candidates:
        if not candidate or candidate[0] not in "{[":
            continue
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue
    return None


def parse_structured_handoffs(text: str, from_agent: str) -> Optional[List[AgentHandoff]]:
    """
    Parse handoffs from the structured JSON channel.

    Returns:
        The handoffs, or None if the reply does not use the structured channel
    """
    document = extract_json(text)
    if not isinstance(document, dict) or "handoffs" not in document:
        return None

    entries = document.get("handoffs") or []
    if not isinstance(entries, list):
        logger.warning("structured_handoffs_malformed", from_agent=from_agent)
        return []

    handoffs = []
    for entry in entries:
        try:
            directive = HandoffDirective.model_validate(entry)
        except ValidationError as e:
            logger.warning("structured_handoff_skipped", from_agent=from_agent, error=str(e))
            continue
        handoffs.append(
            AgentHandoff(
                from_agent=from_agent,
                to_agent=directive.to_agent.strip(),
                context=directive.context.strip(),
                data=directive.data,
                instructions=directive.instructions.strip() if directive.instructions else None,
            )
        )
    return handoffs


def parse_text_handoffs(text: str, from_agent: str) -> List[AgentHandoff]:
    """
    Parse every textual handoff block in a reply.

    A block whose HANDOFF_DATA is not valid JSON is dropped; the others are
    still returned.
    """
    handoffs = []
    for match in HANDOFF_PATTERN.finditer(text or ""):
        to_agent, context, raw_data, instructions = match.groups()
        try:
            data = json.loads(raw_data.strip())
        except json.JSONDecodeError as e:
            logger.warning(
                "handoff_data_parse_failed",
                from_agent=from_agent,
                to_agent=to_agent.strip(),
                error=str(e),
            )
            continue

        handoffs.append(
            AgentHandoff(
                from_agent=from_agent,
                to_agent=to_agent.strip(),
                context=context.strip(),
                data=data,
                instructions=instructions.strip() if instructions else None,
            )
        )
    return handoffs


def extract_handoffs(text: str, from_agent: str) -> Tuple[AgentHandoff, ...]:
    """Structured channel first, textual blocks second"""
    structured = parse_structured_handoffs(text, from_agent)
    if structured is not None:
        return tuple(structured)
    return tuple(parse_text_handoffs(text, from_agent))


def format_handoff_block(handoff: AgentHandoff) -> str:
    """Render a handoff in the textual block format"""
    lines = [
        f"HANDOFF_TO: {handoff.to_agent}",
        f"HANDOFF_CONTEXT: {handoff.context}",
        f"HANDOFF_DATA: {json.dumps(handoff.data, ensure_ascii=False)}",
    ]
    if handoff.instructions:
        lines.append(f"HANDOFF_INSTRUCTIONS: {handoff.instructions}")
    return "\n".join(lines)
