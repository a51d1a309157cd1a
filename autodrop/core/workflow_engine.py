"""
Workflow engine with state machine management.
Executes DAGs of agent steps in dependency waves and publishes lifecycle events.
"""

import asyncio
import json
import uuid
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import structlog

from autodrop.agent_layer.agent import SingleAgent
from autodrop.core.exceptions import (
    InvalidStateTransitionError,
    UnknownAgent,
    WorkflowError,
    WorkflowNotFound,
    WorkflowValidationError,
)
from autodrop.models.schemas import (
    WORKFLOW_TRANSITIONS,
    AgentWorkflow,
    EventType,
    StepStatus,
    WorkflowStatus,
    WorkflowStep,
    WorkflowStepCreate,
    utcnow,
)
from autodrop.models.store import MemoryStore

logger = structlog.get_logger()


# Built-in templates for the dropshipping business
DROPSHIPPING_TEMPLATES = [
    {
        "name": "AI Product Research & Marketing Pipeline",
        "description": "Intelligent product research with automatic marketing content generation",
        "steps": [
            {
                "agent_id": "customer-service",
                "action": "route_product_research",
                "input": {"query": "trending electronics", "priority": "high"},
                "dependencies": [],
            },
            {
                "agent_id": "product-research",
                "action": "analyze_trending_products",
                "input": {"category": "electronics", "limit": 5, "handoff_ready": True},
                "dependencies": ["step_1"],
            },
            {
                "agent_id": "marketing",
                "action": "create_content_from_handoff",
                "input": {"style": "compelling", "languages": ["en", "ar"]},
                "dependencies": ["step_2"],
            },
        ],
    },
    {
        "name": "Smart Order Processing & Customer Communication",
        "description": "Automated order processing with intelligent customer service handoffs",
        "steps": [
            {
                "agent_id": "customer-service",
                "action": "route_order_inquiry",
                "input": {"order_type": "new_order"},
                "dependencies": [],
            },
            {
                "agent_id": "order-management",
                "action": "process_order_with_handoff",
                "input": {"auto_confirm": True, "prepare_customer_comm": True},
                "dependencies": ["step_1"],
            },
            {
                "agent_id": "customer-service",
                "action": "handle_order_communication",
                "input": {"include_tracking": True, "language": "auto_detect"},
                "dependencies": ["step_2"],
            },
        ],
    },
]


StepDefinition = Union[WorkflowStepCreate, Dict[str, Any]]


class WorkflowEngine:
    """
    Manages workflow state machine and wave execution.

    A wave is every pending step whose dependencies have all completed; the
    steps of a wave run concurrently and the next wave starts only after the
    whole wave has settled.
    """

    def __init__(
        self,
        agents: Mapping[str, SingleAgent],
        event_bus=None,
        store: Optional[MemoryStore[AgentWorkflow]] = None,
    ):
        self.agents = agents
        self.event_bus = event_bus
        self.store = store if store is not None else MemoryStore("workflows")

    # ========================================================================
    # Creation and lookup
    # ========================================================================

    @staticmethod
    def _build_steps(steps: Sequence[StepDefinition]) -> List[WorkflowStep]:
        """Assign default ids and reject duplicate or dangling references"""
        if not steps:
            raise WorkflowValidationError("Workflow must have at least one step")

        built = []
        for index, definition in enumerate(steps, start=1):
            spec = definition if isinstance(definition, WorkflowStepCreate) else WorkflowStepCreate.model_validate(definition)
            built.append(
                WorkflowStep(
                    id=spec.id or f"step_{index}",
                    agent_id=spec.agent_id,
                    action=spec.action,
                    input=dict(spec.input),
                    dependencies=list(spec.dependencies),
                )
            )

        ids = [step.id for step in built]
        duplicates = sorted({step_id for step_id in ids if ids.count(step_id) > 1})
        if duplicates:
            raise WorkflowValidationError(f"Duplicate step ids: {', '.join(duplicates)}")

        known = set(ids)
        for step in built:
            missing = [dep for dep in step.dependencies if dep not in known]
            if missing:
                raise WorkflowValidationError(
                    f"Step {step.id} depends on unknown steps: {', '.join(missing)}"
                )
        return built

    async def create_workflow(
        self,
        name: str,
        description: str,
        steps: Sequence[StepDefinition],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AgentWorkflow:
        """
        Create a workflow in `draft` status.

        Raises:
            WorkflowValidationError: On empty steps, duplicate ids or unknown dependencies
        """
        workflow = AgentWorkflow(
            id=f"workflow_{uuid.uuid4().hex}",
            name=name,
            description=description,
            steps=self._build_steps(steps),
            metadata=dict(metadata or {}),
        )
        await self.store.put(workflow.id, workflow)

        logger.info(
            "workflow_created",
            workflow_id=workflow.id,
            name=name,
            steps=len(workflow.steps),
        )
        await self._publish(
            EventType.WORKFLOW_CREATED,
            {"workflow_id": workflow.id, "name": name, "steps": len(workflow.steps)},
        )
        return workflow

    async def get_workflow(self, workflow_id: str) -> AgentWorkflow:
        """Get workflow by ID"""
        workflow = await self.store.get(workflow_id)
        if workflow is None:
            raise WorkflowNotFound(workflow_id)
        return workflow

    async def list_workflows(self, status: Optional[WorkflowStatus] = None) -> List[AgentWorkflow]:
        """List workflows newest first, optionally filtered by status"""
        workflows = await self.store.values()
        if status:
            workflows = [w for w in workflows if w.status == status]
        return sorted(workflows, key=lambda w: w.created_at, reverse=True)

    async def create_dropshipping_workflows(self) -> List[str]:
        """Create the built-in dropshipping templates and return their ids"""
        workflow_ids = []
        for template in DROPSHIPPING_TEMPLATES:
            workflow = await self.create_workflow(
                template["name"],
                template["description"],
                template["steps"],
                metadata={"template": True},
            )
            workflow_ids.append(workflow.id)
        return workflow_ids

    # ========================================================================
    # State machine
    # ========================================================================

    def can_transition(self, current: WorkflowStatus, new: WorkflowStatus) -> bool:
        """Check if transition is valid"""
        return new in WORKFLOW_TRANSITIONS.get(current, [])

    async def transition_to(self, workflow_id: str, new_status: WorkflowStatus, reason: str = None) -> AgentWorkflow:
        """
        Transition workflow to a new status with validation.

        The check and the write happen under the store lock, so two callers
        cannot both move a draft workflow to running.
        """
        transition = {}

        def apply(workflow: AgentWorkflow):
            current = workflow.status
            if not self.can_transition(current, new_status):
                raise InvalidStateTransitionError(
                    f"Invalid transition from {current.value} to {new_status.value}"
                )
            transition["from"] = current
            workflow.status = new_status
            if new_status == WorkflowStatus.COMPLETED:
                workflow.completed_at = utcnow()

        workflow = await self.store.update(workflow_id, apply)
        if workflow is None:
            raise WorkflowNotFound(workflow_id)

        logger.info(
            "workflow_status_changed",
            workflow_id=workflow_id,
            from_status=transition["from"].value,
            to_status=new_status.value,
            reason=reason,
        )
        await self._publish(
            EventType.WORKFLOW_STATUS_CHANGED,
            {
                "workflow_id": workflow_id,
                "from_status": transition["from"].value,
                "to_status": new_status.value,
                "reason": reason,
            },
        )
        return workflow

    async def set_status(self, workflow_id: str, status: WorkflowStatus) -> AgentWorkflow:
        """
        External control of reserved states (pause a draft, return it to draft).

        Running and terminal states are only reached through execution.
        """
        if status not in (WorkflowStatus.PAUSED, WorkflowStatus.DRAFT):
            raise InvalidStateTransitionError(
                f"Status {status.value} can only be reached by executing the workflow"
            )
        return await self.transition_to(workflow_id, status, reason="Set by caller")

    async def mark_completed(self, workflow: AgentWorkflow) -> AgentWorkflow:
        """Mark workflow as completed"""
        await self.transition_to(workflow.id, WorkflowStatus.COMPLETED, "All steps completed")
        logger.info("workflow_completed", workflow_id=workflow.id, name=workflow.name)
        await self._publish(
            EventType.WORKFLOW_COMPLETED,
            {"workflow_id": workflow.id, "name": workflow.name, "steps": len(workflow.steps)},
        )
        return workflow

    async def mark_failed(self, workflow: AgentWorkflow, step_id: str, error: str) -> AgentWorkflow:
        """Mark workflow as failed, recording the failing step"""
        workflow.error = {"step_id": step_id, "message": error}
        await self.transition_to(workflow.id, WorkflowStatus.FAILED, error)
        logger.error("workflow_failed", workflow_id=workflow.id, step_id=step_id, error=error)
        await self._publish(
            EventType.WORKFLOW_FAILED,
            {"workflow_id": workflow.id, "name": workflow.name, "step_id": step_id, "error": error},
        )
        return workflow

    # ========================================================================
    # Execution
    # ========================================================================

    async def execute_workflow(self, workflow_id: str) -> AgentWorkflow:
        """
        Run a draft workflow to completion.

        Returns:
            The completed workflow

        Raises:
            WorkflowNotFound: If the id is unknown
            InvalidStateTransitionError: If the workflow is not in draft
            WorkflowError: On circular or unresolvable dependencies
            Exception: The first step failure (GenerationFailed, UnknownAgent, ...)
        """
        workflow = await self.transition_to(workflow_id, WorkflowStatus.RUNNING, "Execution requested")

        logger.info("workflow_execution_started", workflow_id=workflow_id, name=workflow.name)
        await self._publish(
            EventType.WORKFLOW_STARTED,
            {"workflow_id": workflow_id, "name": workflow.name, "steps": len(workflow.steps)},
        )

        wave = 0
        while True:
            pending = [s for s in workflow.steps if s.status == StepStatus.PENDING]
            if not pending:
                break

            ready = [s for s in pending if self._dependencies_met(workflow, s)]
            if not ready:
                message = "Workflow has circular or unresolvable dependencies"
                await self.mark_failed(workflow, ",".join(s.id for s in pending), message)
                raise WorkflowError(message)

            wave += 1
            logger.info(
                "workflow_wave_started",
                workflow_id=workflow_id,
                wave=wave,
                steps=[s.id for s in ready],
            )

            results = await asyncio.gather(
                *[self._execute_step(workflow, step) for step in ready],
                return_exceptions=True,
            )

            failures = [(step, result) for step, result in zip(ready, results) if isinstance(result, BaseException)]
            if failures:
                step, error = failures[0]
                await self.mark_failed(workflow, step.id, str(error) or type(error).__name__)
                raise error

        return await self.mark_completed(workflow)

    @staticmethod
    def _dependencies_met(workflow: AgentWorkflow, step: WorkflowStep) -> bool:
        for dep_id in step.dependencies:
            dep = workflow.get_step(dep_id)
            if dep is None or dep.status != StepStatus.COMPLETED:
                return False
        return True

    @staticmethod
    def prepare_step_input(workflow: AgentWorkflow, step: WorkflowStep) -> Dict[str, Any]:
        """Step input plus the outputs of its dependencies under `dependencies`"""
        dependency_outputs = {}
        for dep_id in step.dependencies:
            dep = workflow.get_step(dep_id)
            if dep is not None and dep.output is not None:
                dependency_outputs[dep_id] = dep.output
        return {**step.input, "dependencies": dependency_outputs}

    async def _execute_step(self, workflow: AgentWorkflow, step: WorkflowStep) -> Dict[str, Any]:
        step.status = StepStatus.RUNNING
        step.started_at = utcnow()
        logger.info(
            "executing_step",
            workflow_id=workflow.id,
            step_id=step.id,
            agent_id=step.agent_id,
            action=step.action,
        )

        try:
            agent = self.agents.get(step.agent_id)
            if agent is None:
                raise UnknownAgent(step.agent_id)

            contextual_input = self.prepare_step_input(workflow, step)
            prompt = f"Execute action: {step.action}\nInput: {json.dumps(contextual_input, ensure_ascii=False, default=str)}"
            result = await agent.respond([{"role": "user", "content": prompt}])
        except Exception as e:
            step.error = str(e) or type(e).__name__
            step.status = StepStatus.FAILED
            step.completed_at = utcnow()
            logger.error(
                "step_failed",
                workflow_id=workflow.id,
                step_id=step.id,
                agent_id=step.agent_id,
                error=step.error,
            )
            await self._publish(
                EventType.STEP_FAILED,
                {"workflow_id": workflow.id, "step_id": step.id, "agent_id": step.agent_id, "error": step.error},
            )
            raise

        completed_at = utcnow()
        step.output = {
            "action": step.action,
            "response": result.reply,
            "timestamp": completed_at.isoformat(),
        }
        step.completed_at = completed_at
        step.status = StepStatus.COMPLETED

        logger.info("step_completed", workflow_id=workflow.id, step_id=step.id, agent_id=step.agent_id)
        await self._publish(
            EventType.STEP_COMPLETED,
            {"workflow_id": workflow.id, "step_id": step.id, "agent_id": step.agent_id, "action": step.action},
        )
        return step.output

    async def _publish(self, event_type: EventType, data: dict):
        if self.event_bus:
            await self.event_bus.publish(event_type, data)
