"""Handoff execution endpoints."""

from typing import List
from fastapi import APIRouter, Depends

from autodrop.api.v1.dependencies import get_system
from autodrop.models.schemas import AgentHandoff, HandoffRequest, HandoffResponse

router = APIRouter(prefix="/api/handoffs", tags=["handoffs"])


@router.get("", response_model=List[AgentHandoff])
async def handoff_history(system = Depends(get_system)):
    """Executed handoffs in execution order"""
    return await system.handoffs.get_history()


@router.post("", response_model=HandoffResponse)
async def execute_handoff(request: HandoffRequest, system = Depends(get_system)):
    """Hand context and data to another agent and return its reply"""
    handoff = AgentHandoff(**request.model_dump())
    response = await system.execute_handoff(handoff)
    return HandoffResponse(response=response, from_agent=handoff.from_agent, to_agent=handoff.to_agent)
