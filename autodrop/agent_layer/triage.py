"""
Triage Router: classifies an inbound inquiry and picks the specialist agent.
"""

import re
from typing import Dict, Optional

import structlog

from autodrop.agent_layer.agent import AgentRunResult, SingleAgent
from autodrop.models.schemas import Language, Priority, RoutingDecision, RoutingResult, TargetAgent

logger = structlog.get_logger()

FALLBACK_ROUTING = RoutingResult(
    target_agent=TargetAgent.CUSTOMER_SERVICE,
    context="Fallback routing due to triage error",
    priority=Priority.MEDIUM,
    reasoning="System fallback - routing to customer service for manual handling",
    response="I'll connect you with our customer service team who can assist you.",
)

_LABELS = {
    "target_agent": re.compile(r"^\s*\**TARGET_AGENT\**:\s*([^\n]+)", re.IGNORECASE | re.MULTILINE),
    "context": re.compile(r"^\s*\**CONTEXT\**:\s*([^\n]+)", re.IGNORECASE | re.MULTILINE),
    "priority": re.compile(r"^\s*\**PRIORITY\**:\s*([^\n]+)", re.IGNORECASE | re.MULTILINE),
    "reasoning": re.compile(r"^\s*\**REASONING\**:\s*([^\n]+)", re.IGNORECASE | re.MULTILINE),
}


def _normalise_enum(value: Optional[str], enum_cls, default):
    if not value:
        return default
    cleaned = value.strip().strip("*`'\".").strip().lower()
    try:
        return enum_cls(cleaned)
    except ValueError:
        logger.warning("routing_value_normalised", field=enum_cls.__name__, value=value, default=default.value)
        return default


def parse_routing_decision(text: str) -> RoutingDecision:
    """
    Extract a routing decision from labelled lines (TARGET_AGENT:, CONTEXT:,
    PRIORITY:, REASONING:). Missing or unknown values fall back to defaults.
    """
    found: Dict[str, str] = {}
    for field, pattern in _LABELS.items():
        match = pattern.search(text or "")
        if match and match.group(1).strip():
            found[field] = match.group(1).strip()

    defaults = RoutingDecision()
    return RoutingDecision(
        target_agent=_normalise_enum(found.get("target_agent"), TargetAgent, defaults.target_agent),
        context=found.get("context", defaults.context),
        priority=_normalise_enum(found.get("priority"), Priority, defaults.priority),
        reasoning=found.get("reasoning", defaults.reasoning),
    )


class TriageRouter:
    """
    Routes a customer inquiry to one of the five specialist agents.

    Never raises: any failure yields the customer-service fallback route.
    """

    def __init__(self, triage_agent: SingleAgent):
        self.agent = triage_agent

    @staticmethod
    def build_prompt(inquiry: str, language: str) -> str:
        return (
            f"Language Preference: {language}\n"
            f"Customer Inquiry: {inquiry}\n\n"
            "Analyze this inquiry and provide routing decision with reasoning."
        )

    async def route(self, inquiry: str, language: str = "en") -> RoutingResult:
        """
        Decide where an inquiry should go.

        Args:
            inquiry: Customer inquiry text
            language: "en" or "ar"

        Returns:
            RoutingResult with target agent, context, priority, reasoning and
            the triage agent's reply
        """
        try:
            lang = Language(language)
            result: AgentRunResult = await self.agent.run(
                [{"role": "user", "content": self.build_prompt(inquiry, lang.value)}],
                structured_output=RoutingDecision,
                language=lang,
            )

            if result.structured_output is not None:
                decision = RoutingDecision.model_validate(result.structured_output)
                source = "structured"
            else:
                decision = parse_routing_decision(result.reply)
                source = "labelled_lines"

            routing = RoutingResult(**decision.model_dump(), response=result.reply)
            logger.info(
                "inquiry_routed",
                target_agent=routing.target_agent.value,
                priority=routing.priority.value,
                source=source,
            )
            return routing
        except Exception as e:
            logger.error("routing_failed", error=str(e), exc_info=True)
            return FALLBACK_ROUTING.model_copy()
