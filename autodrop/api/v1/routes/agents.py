"""Agent registry and direct chat endpoints."""

from typing import List
import structlog
from fastapi import APIRouter, Depends, Query

from autodrop.api.v1.dependencies import get_system
from autodrop.core.exceptions import InvalidInput, UnknownAgent
from autodrop.models.schemas import (
    AgentChatRequest,
    AgentChatResponse,
    AgentConfigUpdate,
    AgentRecord,
)

router = APIRouter(prefix="/api/agents", tags=["agents"])
logger = structlog.get_logger()


@router.get("", response_model=List[AgentRecord])
async def list_agents(system = Depends(get_system)):
    """List registered agents with their config and metrics"""
    return await system.directory.list_agents()


@router.get("/{agent_id}", response_model=AgentRecord)
async def get_agent(agent_id: str, system = Depends(get_system)):
    """Get one agent record"""
    agent = await system.directory.get_agent(agent_id)
    if agent is None:
        raise UnknownAgent(agent_id)
    return agent


@router.put("/{agent_id}/config", response_model=AgentRecord)
async def update_agent_config(agent_id: str, update: AgentConfigUpdate, system = Depends(get_system)):
    """Apply a partial config update and refresh the agent personas"""
    agent = await system.directory.update_config(agent_id, update)
    await system.sync_agent_profiles()
    return agent


@router.post("/{agent_id}/chat", response_model=AgentChatResponse)
async def chat_with_agent(agent_id: str, request: AgentChatRequest, system = Depends(get_system)):
    """
    Send a message to an agent through the production path.

    Rate limited per agent; inactive agents answer 503.
    """
    if not request.message:
        raise InvalidInput("Message is required")

    response = await system.agent_manager.process_message(
        agent_id,
        request.message,
        user_id=request.user_id,
        language=request.language,
    )
    logger.info("agent_chat_completed", agent_id=agent_id, user_id=request.user_id)
    return AgentChatResponse(response=response, agent_id=agent_id)


@router.get("/{agent_id}/history")
async def chat_history(
    agent_id: str,
    limit: int = Query(50, ge=1, le=500),
    system = Depends(get_system),
):
    """Most recent exchanges with an agent"""
    if await system.directory.get_agent(agent_id) is None:
        raise UnknownAgent(agent_id)
    messages = await system.chat_log.history(agent_id, limit=limit)
    return {"agent_id": agent_id, "messages": messages}
