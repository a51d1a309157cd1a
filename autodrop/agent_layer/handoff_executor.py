"""
Handoff Executor: delivers a handoff to the destination agent and records it.
"""

import json
from typing import List, Mapping, Optional

import structlog

from autodrop.agent_layer.agent import SingleAgent
from autodrop.core.exceptions import UnknownAgent
from autodrop.models.schemas import AgentHandoff, EventType, utcnow
from autodrop.models.store import AppendOnlyLog

logger = structlog.get_logger()


class HandoffHistory(AppendOnlyLog[AgentHandoff]):
    """Append-only record of completed handoffs"""

    def __init__(self):
        super().__init__("handoff_history")


class HandoffExecutor:
    """
    Runs handoffs between registered agents.

    Secondary handoffs found in the destination's reply are reported but never
    executed.
    """

    def __init__(
        self,
        agents: Mapping[str, SingleAgent],
        event_bus=None,
        history: Optional[HandoffHistory] = None,
    ):
        self.agents = agents
        self.event_bus = event_bus
        self.history = history if history is not None else HandoffHistory()

    @staticmethod
    def build_system_note(handoff: AgentHandoff) -> str:
        lines = [f"HANDOFF RECEIVED from {handoff.from_agent}", f"Context: {handoff.context}"]
        if handoff.instructions:
            lines.append(f"Special Instructions: {handoff.instructions}")
        lines.append("")
        lines.append("Please process this handoff and provide appropriate assistance.")
        return "\n".join(lines)

    @staticmethod
    def render_payload(data) -> str:
        if isinstance(data, str):
            return data
        return json.dumps(data, ensure_ascii=False, default=str)

    async def execute(self, handoff: AgentHandoff) -> str:
        """
        Deliver a handoff and return the destination agent's reply.

        Raises:
            UnknownAgent: If the destination is not registered
            GenerationFailed: If the destination's provider call fails
        """
        agent = self.agents.get(handoff.to_agent)
        if agent is None:
            raise UnknownAgent(handoff.to_agent)

        agent.set_context(
            handoff_from=handoff.from_agent,
            handoff_context=handoff.context,
            handoff_data=handoff.data,
        )

        logger.info(
            "executing_handoff",
            from_agent=handoff.from_agent,
            to_agent=handoff.to_agent,
            has_instructions=bool(handoff.instructions),
        )

        try:
            result = await agent.respond(
                [
                    {"role": "system", "content": self.build_system_note(handoff)},
                    {"role": "user", "content": self.render_payload(handoff.data)},
                ]
            )
        except Exception as e:
            logger.error(
                "handoff_execution_failed",
                from_agent=handoff.from_agent,
                to_agent=handoff.to_agent,
                error=str(e),
            )
            raise

        completed_at = utcnow()
        record = handoff.model_copy(
            update={"context": f"{handoff.context} - Completed at {completed_at.isoformat()}", "timestamp": completed_at}
        )
        await self.history.append(record)

        await self._publish(
            EventType.HANDOFF_EXECUTED,
            {"from_agent": handoff.from_agent, "to_agent": handoff.to_agent, "context": handoff.context},
        )

        if result.handoffs:
            logger.info(
                "additional_handoffs_detected",
                from_agent=handoff.to_agent,
                count=len(result.handoffs),
                targets=[h.to_agent for h in result.handoffs],
            )
            for secondary in result.handoffs:
                await self._publish(
                    EventType.HANDOFF_DETECTED,
                    {"from_agent": secondary.from_agent, "to_agent": secondary.to_agent, "context": secondary.context},
                )

        return result.reply

    async def get_history(self) -> List[AgentHandoff]:
        return await self.history.entries()

    async def _publish(self, event_type: EventType, data: dict):
        if self.event_bus:
            await self.event_bus.publish(event_type, data)
