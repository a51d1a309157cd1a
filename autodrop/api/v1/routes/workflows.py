"""Workflow management API endpoints."""

from typing import List, Optional
import structlog
from fastapi import APIRouter, Depends
from pydantic import ValidationError

from autodrop.api.v1.dependencies import get_system, get_workflow_engine
from autodrop.core.exceptions import InvalidInput, InvalidStateTransitionError, WorkflowNotFound
from autodrop.models.schemas import (
    AgentWorkflow,
    CrossAgentResponse,
    OrderProcessingRequest,
    ProductResearchRequest,
    WorkflowCreate,
    WorkflowListResponse,
    WorkflowStatus,
    WorkflowStatusUpdate,
)

router = APIRouter(prefix="/api/workflows", tags=["workflows"])
logger = structlog.get_logger()

CROSS_AGENT_WORKFLOWS = ("product-research-to-marketing", "order-to-customer-service")


@router.get("", response_model=WorkflowListResponse)
async def list_workflows(
    status: Optional[WorkflowStatus] = None,
    engine = Depends(get_workflow_engine),
):
    """List workflows, optionally filtered by status"""
    workflows = await engine.list_workflows(status)
    return WorkflowListResponse(workflows=workflows, total=len(workflows))


@router.post("", response_model=AgentWorkflow)
async def create_workflow(workflow_req: WorkflowCreate, engine = Depends(get_workflow_engine)):
    """
    Create a workflow in draft status.

    Step ids default to step_<n>; dependencies must reference steps of the
    same workflow.
    """
    workflow = await engine.create_workflow(
        workflow_req.name,
        workflow_req.description,
        workflow_req.steps,
        metadata=workflow_req.metadata,
    )
    logger.info("workflow_created_via_api", workflow_id=workflow.id)
    return workflow


@router.post("/templates", response_model=List[AgentWorkflow])
async def create_templates(engine = Depends(get_workflow_engine)):
    """Create the built-in dropshipping workflows"""
    workflow_ids = await engine.create_dropshipping_workflows()
    return [await engine.get_workflow(workflow_id) for workflow_id in workflow_ids]


@router.get("/{workflow_id}", response_model=AgentWorkflow)
async def get_workflow(workflow_id: str, engine = Depends(get_workflow_engine)):
    """Get workflow by ID"""
    return await engine.get_workflow(workflow_id)


@router.post("/{workflow_id}/execute", response_model=AgentWorkflow)
async def execute_workflow(workflow_id: str, engine = Depends(get_workflow_engine)):
    """
    Run a draft workflow.

    A failing step does not turn into an HTTP error: the workflow comes back
    with status `failed`, the failing step and the outputs completed so far.
    """
    try:
        return await engine.execute_workflow(workflow_id)
    except (WorkflowNotFound, InvalidStateTransitionError):
        raise
    except Exception as e:
        logger.warning("workflow_execution_failed_via_api", workflow_id=workflow_id, error=str(e))
        return await engine.get_workflow(workflow_id)


@router.put("/{workflow_id}/status", response_model=AgentWorkflow)
async def set_workflow_status(
    workflow_id: str,
    update: WorkflowStatusUpdate,
    engine = Depends(get_workflow_engine),
):
    """Pause a draft workflow or return a paused one to draft"""
    return await engine.set_status(workflow_id, update.status)


@router.post("/cross-agent/{name}", response_model=CrossAgentResponse)
async def run_cross_agent_workflow(name: str, payload: dict, system = Depends(get_system)):
    """
    Run one of the handoff-based cross-agent workflows.

    - product-research-to-marketing: body {"query": "..."}
    - order-to-customer-service: body {"order": {...}}
    """
    if name not in CROSS_AGENT_WORKFLOWS:
        raise InvalidInput(f"Unknown cross-agent workflow: {name}. Expected one of {', '.join(CROSS_AGENT_WORKFLOWS)}")

    try:
        if name == "product-research-to-marketing":
            request = ProductResearchRequest.model_validate(payload)
        else:
            request = OrderProcessingRequest.model_validate(payload)
    except ValidationError as e:
        error = e.errors()[0]
        field = ".".join(str(part) for part in error["loc"])
        raise InvalidInput(f"{field}: {error['msg']}" if field else error["msg"])

    if name == "product-research-to-marketing":
        report = await system.product_research_to_marketing(request.query)
    else:
        report = await system.order_to_customer_service(request.order)

    return CrossAgentResponse(workflow=name, report=report)
