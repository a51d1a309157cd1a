"""
Multi-agent system: composition root for the orchestration layer.

Builds the agent team, triage router, handoff executor, workflow engine and
conversation manager around one text generation client, and implements the
cross-agent flows (inquiry routing, research to marketing, order to customer
service).
"""

import json
from typing import Any, Dict, Iterable, Optional, Tuple

import structlog

from autodrop.adapters.agent_directory import AgentDirectory
from autodrop.adapters.chat_log import ChatLogStore
from autodrop.adapters.llm import CredentialStore, TextGenerationClient
from autodrop.adapters.supabase import SupabaseClient
from autodrop.agent_layer.agent import AgentProfile, SingleAgent
from autodrop.agent_layer.conversation_handler import ConversationManager
from autodrop.agent_layer.handoff_executor import HandoffExecutor
from autodrop.agent_layer.team import TRIAGE_AGENT_ID, apply_record, build_team
from autodrop.agent_layer.triage import TriageRouter
from autodrop.config.settings import settings
from autodrop.core.agent_manager import AgentManager, SlidingWindowRateLimiter
from autodrop.core.exceptions import UnknownAgent
from autodrop.core.workflow_engine import WorkflowEngine
from autodrop.models.schemas import AgentHandoff, EventType, RoutingResult

logger = structlog.get_logger()


class MultiAgentSystem:
    """
    Holds every orchestration component of one running system.

    Construct with `MultiAgentSystem.create(...)`; tests build isolated
    instances with their own client and stores.
    """

    def __init__(
        self,
        client: TextGenerationClient,
        directory: AgentDirectory,
        chat_log: ChatLogStore,
        agent_manager: AgentManager,
        agents: Dict[str, SingleAgent],
        event_bus=None,
    ):
        self.client = client
        self.credentials = client.credentials
        self.directory = directory
        self.chat_log = chat_log
        self.agent_manager = agent_manager
        self.agents = agents
        self.event_bus = event_bus

        self.triage = TriageRouter(agents[TRIAGE_AGENT_ID])
        self.handoffs = HandoffExecutor(agents, event_bus=event_bus)
        self.workflows = WorkflowEngine(agents, event_bus=event_bus)
        self.conversations = ConversationManager(agent_manager, event_bus=event_bus)

    @classmethod
    def create(
        cls,
        client: Optional[TextGenerationClient] = None,
        event_bus=None,
        directory: Optional[AgentDirectory] = None,
        chat_log: Optional[ChatLogStore] = None,
        profiles: Optional[Iterable[AgentProfile]] = None,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
    ) -> "MultiAgentSystem":
        """
        Wire a complete system.

        Missing collaborators are built from settings: Supabase-backed stores
        when SUPABASE_URL/SUPABASE_KEY are set, in-memory ones otherwise.
        """
        client = client or TextGenerationClient(CredentialStore())
        supabase = SupabaseClient() if settings.supabase_enabled else None
        directory = directory or AgentDirectory(supabase=supabase)
        chat_log = chat_log or ChatLogStore(supabase=supabase)

        agents = build_team(client, profiles=profiles)
        agent_manager = AgentManager(directory, client, chat_log, rate_limiter=rate_limiter)

        system = cls(client, directory, chat_log, agent_manager, agents, event_bus=event_bus)
        logger.info(
            "multi_agent_system_created",
            agents=list(agents.keys()),
            directory_backend=directory.backend,
        )
        return system

    async def initialize(self) -> int:
        """Load the agent registry and align agent personas with it"""
        count = await self.directory.load()
        await self.sync_agent_profiles()
        return count

    async def sync_agent_profiles(self):
        """Apply registry provider/model settings to the matching personas"""
        records = {record.id: record for record in await self.directory.list_agents()}
        for agent_id, agent in self.agents.items():
            agent.profile = apply_record(agent.profile, records.get(agent_id))

    # ========================================================================
    # Routing and handoffs
    # ========================================================================

    async def route_inquiry(self, inquiry: str, language: str = "en") -> Tuple[str, RoutingResult]:
        """
        Triage an inquiry and open a conversation with the chosen specialist.

        Returns:
            (conversation_id, routing)
        """
        routing = await self.triage.route(inquiry, language)
        target = routing.target_agent.value

        conversation_id = await self.conversations.start(
            ["customer-service", target],
            f"Customer Inquiry - {routing.priority.value} priority",
            f"Routed to {target}: {routing.context}",
        )

        if self.event_bus:
            await self.event_bus.publish(
                EventType.INQUIRY_ROUTED,
                {
                    "conversation_id": conversation_id,
                    "target_agent": target,
                    "priority": routing.priority.value,
                },
            )
        return conversation_id, routing

    async def execute_handoff(self, handoff: AgentHandoff) -> str:
        return await self.handoffs.execute(handoff)

    def _agent(self, agent_id: str) -> SingleAgent:
        agent = self.agents.get(agent_id)
        if agent is None:
            raise UnknownAgent(agent_id)
        return agent

    # ========================================================================
    # Cross-agent workflows
    # ========================================================================

    async def product_research_to_marketing(self, product_query: str) -> str:
        """Research products, then hand the findings to marketing"""
        research = await self._agent("product-research").run(
            [
                {
                    "role": "user",
                    "content": f"Research products for: {product_query}. Prepare data for marketing content creation.",
                }
            ]
        )

        marketing_reply = await self.execute_handoff(
            AgentHandoff(
                from_agent="product-research",
                to_agent="marketing",
                context="Product research completed, need marketing content creation",
                data={
                    "research_results": research.reply,
                    "content_types": ["product_descriptions", "social_media_posts", "seo_content"],
                    "languages": ["en", "ar"],
                },
            )
        )

        logger.info("cross_agent_workflow_completed", workflow="product-research-to-marketing")
        return (
            "Workflow completed:\n\n"
            f"**Research Phase:**\n{research.reply}\n\n"
            f"**Marketing Phase:**\n{marketing_reply}"
        )

    async def order_to_customer_service(self, order: Dict[str, Any]) -> str:
        """Process an order, then hand customer communication to customer service"""
        processing = await self._agent("order-management").run(
            [
                {
                    "role": "user",
                    "content": f"Process order: {json.dumps(order, ensure_ascii=False, default=str)}. "
                    "Prepare customer communication.",
                }
            ]
        )

        customer_reply = await self.execute_handoff(
            AgentHandoff(
                from_agent="order-management",
                to_agent="customer-service",
                context="Order processed, need customer notification and support setup",
                data={
                    "order_status": "processed",
                    "customer_info": order.get("customer"),
                    "order_details": order,
                    "communication_type": "order_confirmation",
                },
            )
        )

        logger.info("cross_agent_workflow_completed", workflow="order-to-customer-service")
        return (
            "Order workflow completed:\n\n"
            f"**Order Processing:**\n{processing.reply}\n\n"
            f"**Customer Communication:**\n{customer_reply}"
        )

    # ========================================================================
    # Introspection
    # ========================================================================

    async def get_stats(self) -> dict:
        workflows = await self.workflows.list_workflows()
        conversations = await self.conversations.list()
        by_status: Dict[str, int] = {}
        for workflow in workflows:
            by_status[workflow.status.value] = by_status.get(workflow.status.value, 0) + 1

        return {
            "agents": list(self.agents.keys()),
            "workflows": {"total": len(workflows), "by_status": by_status},
            "conversations": len(conversations),
            "handoffs": len(self.handoffs.history),
        }
