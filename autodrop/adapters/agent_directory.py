"""
Agent registry: configuration and metrics of the deployed agents.

Backed by the Supabase `agents` table when configured, otherwise seeded with
the default AutoDrop agents. Records are cached in memory either way.
"""

import asyncio
from datetime import datetime, timezone
from typing import Dict, List, Optional

import structlog

from autodrop.adapters.supabase import SupabaseClient
from autodrop.core.exceptions import UnknownAgent
from autodrop.models.schemas import (
    AgentConfig,
    AgentConfigUpdate,
    AgentMetrics,
    AgentRecord,
    AgentStatus,
    Language,
    Provider,
    utcnow,
)

logger = structlog.get_logger()

_SEED_CREATED_AT = datetime(2024, 1, 1, tzinfo=timezone.utc)


def default_agents() -> List[AgentRecord]:
    """The five production agents used when no registry backend is configured"""
    seeds = [
        (
            "customer-service", "Customer Service Agent",
            AgentConfig(
                model="gpt-4o-mini", provider=Provider.OPENAI, temperature=0.7, max_tokens=1000,
                system_prompt="You are a helpful customer service agent for AutoDrop, a dropshipping platform.",
            ),
            AgentMetrics(
                total_requests=1247, successful_requests=1198, failed_requests=49,
                avg_response_time=850, uptime_percentage=99.2,
            ),
        ),
        (
            "product-research", "Product Research Agent",
            AgentConfig(
                model="gemini-pro", provider=Provider.GEMINI, temperature=0.8, max_tokens=1500,
                system_prompt="You are a product research specialist for dropshipping businesses.",
            ),
            AgentMetrics(
                total_requests=892, successful_requests=876, failed_requests=16,
                avg_response_time=1200, uptime_percentage=98.8,
            ),
        ),
        (
            "order-management", "Order Management Agent",
            AgentConfig(
                model="gpt-4o", provider=Provider.OPENAI, temperature=0.5, max_tokens=800,
                system_prompt="You are an order management specialist for AutoDrop platform.",
            ),
            AgentMetrics(
                total_requests=2156, successful_requests=2134, failed_requests=22,
                avg_response_time=650, uptime_percentage=99.5,
            ),
        ),
        (
            "marketing", "Marketing Content Agent",
            AgentConfig(
                model="claude-3-sonnet", provider=Provider.ANTHROPIC, temperature=0.9, max_tokens=2000,
                system_prompt="You are a marketing content creator for dropshipping businesses.",
            ),
            AgentMetrics(
                total_requests=634, successful_requests=621, failed_requests=13,
                avg_response_time=1400, uptime_percentage=98.9,
            ),
        ),
        (
            "analytics", "Analytics Intelligence Agent",
            AgentConfig(
                model="gpt-4o", provider=Provider.OPENAI, temperature=0.3, max_tokens=1200,
                system_prompt="You are a business analytics specialist for AutoDrop platform.",
            ),
            AgentMetrics(
                total_requests=445, successful_requests=441, failed_requests=4,
                avg_response_time=950, uptime_percentage=99.8,
            ),
        ),
    ]

    now = utcnow()
    records = []
    for agent_id, name, config, metrics in seeds:
        config.language = Language.BOTH
        metrics.last_active = now
        records.append(
            AgentRecord(
                id=agent_id,
                name=name,
                type=agent_id,
                status=AgentStatus.ACTIVE,
                config=config,
                metrics=metrics,
                created_at=_SEED_CREATED_AT,
                updated_at=now,
            )
        )
    return records


def running_average(current_avg: float, new_value: float, total: int) -> int:
    """Fold one observation into an average over `total` observations"""
    if total <= 1:
        return round(new_value)
    return round((current_avg * (total - 1) + new_value) / total)


class AgentDirectory:
    """
    Registry of agent records.

    Reads are served from the in-memory cache; writes go to Supabase first
    (when configured) and then update the cache.
    """

    def __init__(self, supabase: Optional[SupabaseClient] = None, agents: Optional[List[AgentRecord]] = None):
        self.supabase = supabase if supabase and supabase.is_configured() else None
        self._agents: Dict[str, AgentRecord] = {}
        self._lock = asyncio.Lock()

        seed = agents if agents is not None else ([] if self.supabase else default_agents())
        for agent in seed:
            self._agents[agent.id] = agent

    @property
    def backend(self) -> str:
        return "supabase" if self.supabase else "memory"

    async def load(self) -> int:
        """
        Populate the cache from the backend.

        Returns:
            Number of agents known after loading
        """
        if self.supabase:
            rows = await self.supabase.select("agents", order="created_at.desc")
            async with self._lock:
                for row in rows:
                    record = AgentRecord.model_validate(row)
                    self._agents[record.id] = record
        else:
            logger.warning("agent_directory_using_defaults", message="Supabase not configured - using default agents")

        logger.info("agent_directory_loaded", backend=self.backend, agents=len(self._agents))
        return len(self._agents)

    async def get_agent(self, agent_id: str) -> Optional[AgentRecord]:
        async with self._lock:
            agent = self._agents.get(agent_id)
        if agent is not None or not self.supabase:
            return agent

        rows = await self.supabase.select("agents", filters={"id": agent_id}, limit=1)
        if not rows:
            return None
        record = AgentRecord.model_validate(rows[0])
        async with self._lock:
            self._agents[record.id] = record
        return record

    async def list_agents(self) -> List[AgentRecord]:
        async with self._lock:
            return list(self._agents.values())

    async def update_config(self, agent_id: str, update: AgentConfigUpdate) -> AgentRecord:
        """
        Apply a partial configuration update.

        Raises:
            UnknownAgent: If the agent is not registered
        """
        agent = await self.get_agent(agent_id)
        if agent is None:
            raise UnknownAgent(agent_id)

        changes = update.model_dump(exclude_none=True)
        new_config = AgentConfig.model_validate({**agent.config.model_dump(), **changes})

        if self.supabase:
            await self.supabase.update(
                "agents",
                {"id": agent_id},
                {"config": new_config.model_dump(mode="json"), "updated_at": utcnow().isoformat()},
            )

        async with self._lock:
            agent.config = new_config
            agent.updated_at = utcnow()

        logger.info("agent_config_updated", agent_id=agent_id, fields=list(changes.keys()))
        return agent

    async def set_status(self, agent_id: str, status: AgentStatus) -> AgentRecord:
        agent = await self.get_agent(agent_id)
        if agent is None:
            raise UnknownAgent(agent_id)

        if self.supabase:
            await self.supabase.update(
                "agents", {"id": agent_id}, {"status": status.value, "updated_at": utcnow().isoformat()}
            )

        async with self._lock:
            agent.status = status
            agent.updated_at = utcnow()

        logger.info("agent_status_updated", agent_id=agent_id, status=status.value)
        return agent

    async def update_metrics(self, agent_id: str, success: bool, response_time_ms: float = 0.0) -> Optional[AgentMetrics]:
        """
        Record the outcome of one invocation.

        Successful calls fold their response time into the running average.
        Backend write failures are logged and never raised.

        Returns:
            The updated metrics, or None if the agent is unknown
        """
        async with self._lock:
            agent = self._agents.get(agent_id)
            if agent is None:
                return None

            metrics = agent.metrics.model_copy()
            metrics.total_requests += 1
            if success:
                metrics.successful_requests += 1
                metrics.avg_response_time = running_average(
                    metrics.avg_response_time, response_time_ms, metrics.total_requests
                )
                metrics.last_active = utcnow()
            else:
                metrics.failed_requests += 1

            agent.metrics = metrics
            agent.updated_at = utcnow()

        if self.supabase:
            try:
                await self.supabase.update(
                    "agents",
                    {"id": agent_id},
                    {"metrics": metrics.model_dump(mode="json"), "updated_at": utcnow().isoformat()},
                )
            except Exception as e:
                logger.error("agent_metrics_write_failed", agent_id=agent_id, error=str(e))

        return metrics
