"""
Agent Layer.

Personas backed by a text generation client, and the pieces that let them
cooperate:

- SingleAgent: one persona, replies plus handoff directives
- TriageRouter: picks the specialist for a customer inquiry
- HandoffExecutor: delivers context and data from one agent to another
- ConversationManager: multi-agent conversations with reply fan-out

MultiAgentSystem wires them together; import it from
autodrop.agent_layer.orchestrator.
"""

from autodrop.agent_layer.agent import (
    AgentProfile,
    AgentContext,
    AgentMessage,
    AgentRunResult,
    SingleAgent,
)
from autodrop.agent_layer.handoff import extract_handoffs, extract_json
from autodrop.agent_layer.team import TRIAGE_AGENT_ID, DEFAULT_PROFILES, build_team
from autodrop.agent_layer.triage import TriageRouter, parse_routing_decision
from autodrop.agent_layer.handoff_executor import HandoffExecutor, HandoffHistory
from autodrop.agent_layer.conversation_handler import ConversationManager

__all__ = [
    'AgentProfile',
    'AgentContext',
    'AgentMessage',
    'AgentRunResult',
    'SingleAgent',
    'extract_handoffs',
    'extract_json',
    'TRIAGE_AGENT_ID',
    'DEFAULT_PROFILES',
    'build_team',
    'TriageRouter',
    'parse_routing_decision',
    'HandoffExecutor',
    'HandoffHistory',
    'ConversationManager',
]
