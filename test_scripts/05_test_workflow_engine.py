#!/usr/bin/env python3
"""
Test: Workflow Engine
Purpose: Test DAG validation, wave execution and the workflow state machine

Tests:
- Creation validation (empty, duplicate ids, unknown dependencies)
- Wave ordering and dependency outputs
- Step status progression (pending, running, completed)
- Concurrent execution inside a wave
- Partial failure keeps completed outputs
- Circular dependencies fail the workflow
- State machine transitions
- Built-in templates
"""

import asyncio
import json
import sys

from fixtures import (
    run_tests, FakeGenerationClient, EventCollector, reply_for, role_profile,
    assert_equal, assert_true, assert_in, assert_raises_async
)

from autodrop.agent_layer.team import build_team
from autodrop.core.event_bus import EventBus
from autodrop.core.exceptions import (
    GenerationFailed,
    InvalidStateTransitionError,
    UnknownAgent,
    WorkflowError,
    WorkflowNotFound,
    WorkflowValidationError,
)
from autodrop.core.workflow_engine import DROPSHIPPING_TEMPLATES, WorkflowEngine
from autodrop.models.schemas import EventType, StepStatus, WorkflowStatus


AGENT_IDS = ["research", "writer", "reviewer", "broken"]


def make_engine(client, event_bus=None) -> WorkflowEngine:
    agents = build_team(client, profiles=[role_profile(agent_id) for agent_id in AGENT_IDS])
    return WorkflowEngine(agents, event_bus=event_bus)


def echo_responder(call):
    agent_id = reply_for(call)
    if agent_id == "broken":
        raise GenerationFailed("AI generation failed: broken agent")
    return f"{agent_id} done"


def step_input_of(call) -> dict:
    """Decode the JSON input embedded in a step prompt"""
    prompt = call["prompt"]
    return json.loads(prompt.split("Input: ", 1)[1])


async def test_create_validation():
    """Invalid DAG definitions are rejected at creation"""
    engine = make_engine(FakeGenerationClient())

    await assert_raises_async(WorkflowValidationError, engine.create_workflow("empty", "", []))
    await assert_raises_async(
        WorkflowValidationError,
        engine.create_workflow("dup", "", [
            {"id": "a", "agent_id": "research", "action": "x"},
            {"id": "a", "agent_id": "writer", "action": "y"},
        ]),
    )
    await assert_raises_async(
        WorkflowValidationError,
        engine.create_workflow("dangling", "", [
            {"id": "a", "agent_id": "research", "action": "x", "dependencies": ["ghost"]},
        ]),
    )
    assert_equal(len(await engine.list_workflows()), 0, "Nothing stored on validation failure")


async def test_default_step_ids():
    """Steps without ids are numbered step_1, step_2, ..."""
    engine = make_engine(FakeGenerationClient())

    workflow = await engine.create_workflow("numbered", "", [
        {"agent_id": "research", "action": "find"},
        {"agent_id": "writer", "action": "write", "dependencies": ["step_1"]},
    ])

    assert_equal([s.id for s in workflow.steps], ["step_1", "step_2"])
    assert_equal(workflow.status, WorkflowStatus.DRAFT)
    assert_true(workflow.completed_at is None)


async def test_two_wave_execution():
    """A dependent step runs after its dependency and sees its output"""
    client = FakeGenerationClient(responder=echo_responder)
    engine = make_engine(client)

    workflow = await engine.create_workflow("pipeline", "", [
        {"id": "a", "agent_id": "research", "action": "find_products", "input": {"category": "toys"}},
        {"id": "b", "agent_id": "writer", "action": "write_copy", "dependencies": ["a"]},
    ])

    result = await engine.execute_workflow(workflow.id)

    assert_equal(result.status, WorkflowStatus.COMPLETED)
    assert_true(result.completed_at is not None)
    assert_equal([reply_for(c) for c in client.calls], ["research", "writer"])

    first_input = step_input_of(client.calls[0])
    assert_equal(first_input, {"category": "toys", "dependencies": {}})
    assert_in("Execute action: find_products", client.calls[0]["prompt"])

    second_input = step_input_of(client.calls[1])
    assert_equal(second_input["dependencies"]["a"]["response"], "research done")
    assert_equal(second_input["dependencies"]["a"]["action"], "find_products")

    step_a = result.get_step("a")
    assert_equal(step_a.status, StepStatus.COMPLETED)
    assert_equal(step_a.output["response"], "research done")
    assert_true(step_a.completed_at >= step_a.started_at)


async def test_step_status_progression():
    """A step is running exactly while its agent is called"""
    snapshots = {}
    tracked = []

    def recording_responder(call):
        agent_id = reply_for(call)
        snapshots[agent_id] = {step.id: step.status for step in tracked[0].steps}
        return f"{agent_id} done"

    engine = make_engine(FakeGenerationClient(responder=recording_responder))
    workflow = await engine.create_workflow("progress", "", [
        {"id": "a", "agent_id": "research", "action": "find"},
        {"id": "b", "agent_id": "writer", "action": "write", "dependencies": ["a"]},
    ])
    tracked.append(workflow)
    assert_equal([s.status for s in workflow.steps], [StepStatus.PENDING, StepStatus.PENDING])

    result = await engine.execute_workflow(workflow.id)

    assert_equal(snapshots["research"], {"a": StepStatus.RUNNING, "b": StepStatus.PENDING})
    assert_equal(snapshots["writer"], {"a": StepStatus.COMPLETED, "b": StepStatus.RUNNING})
    assert_equal([s.status for s in result.steps], [StepStatus.COMPLETED, StepStatus.COMPLETED])
    assert_true(all(s.started_at <= s.completed_at for s in result.steps))


async def test_wave_runs_concurrently():
    """Independent steps of one wave overlap in time"""
    client = FakeGenerationClient(responder=echo_responder, delay=0.05)
    engine = make_engine(client)

    workflow = await engine.create_workflow("fan-in", "", [
        {"id": "a", "agent_id": "research", "action": "one"},
        {"id": "b", "agent_id": "writer", "action": "two"},
        {"id": "c", "agent_id": "reviewer", "action": "merge", "dependencies": ["a", "b"]},
    ])

    result = await engine.execute_workflow(workflow.id)

    assert_equal(result.status, WorkflowStatus.COMPLETED)
    assert_equal(client.max_in_flight, 2, "Steps a and b should run together")
    assert_equal(reply_for(client.calls[-1]), "reviewer", "Merge step runs last")
    merge_input = step_input_of(client.calls[-1])
    assert_equal(sorted(merge_input["dependencies"].keys()), ["a", "b"])


async def test_partial_failure():
    """A failing step fails the workflow but keeps sibling outputs"""
    client = FakeGenerationClient(responder=echo_responder)
    bus = EventBus()
    failed_events = EventCollector()
    bus.subscribe(EventType.WORKFLOW_FAILED, failed_events.handler)
    await bus.start()

    try:
        engine = make_engine(client, event_bus=bus)
        workflow = await engine.create_workflow("partial", "", [
            {"id": "ok", "agent_id": "research", "action": "fine"},
            {"id": "bad", "agent_id": "broken", "action": "explode"},
            {"id": "later", "agent_id": "writer", "action": "never", "dependencies": ["ok", "bad"]},
        ])

        await assert_raises_async(GenerationFailed, engine.execute_workflow(workflow.id))
        await bus.wait_until_idle()

        result = await engine.get_workflow(workflow.id)
        assert_equal(result.status, WorkflowStatus.FAILED)
        assert_true(result.completed_at is None, "completed_at is only set on completion")
        assert_equal(result.error["step_id"], "bad")
        assert_in("broken agent", result.error["message"])
        assert_equal(result.get_step("ok").status, StepStatus.COMPLETED)
        assert_equal(result.get_step("ok").output["response"], "research done")
        assert_equal(result.get_step("bad").status, StepStatus.FAILED)
        assert_equal(result.get_step("later").status, StepStatus.PENDING)
        assert_equal(failed_events.count(), 1)
        assert_equal(failed_events.get_events()[0]["step_id"], "bad")
    finally:
        await bus.stop()


async def test_unknown_step_agent():
    """Steps assigned to unknown agents fail the workflow"""
    engine = make_engine(FakeGenerationClient(responder=echo_responder))
    workflow = await engine.create_workflow("ghost", "", [{"id": "x", "agent_id": "nobody", "action": "?"}])

    await assert_raises_async(UnknownAgent, engine.execute_workflow(workflow.id))

    result = await engine.get_workflow(workflow.id)
    assert_equal(result.status, WorkflowStatus.FAILED)
    assert_equal(result.error["step_id"], "x")


async def test_circular_dependencies():
    """Cycles are detected when no step is ready"""
    client = FakeGenerationClient(responder=echo_responder)
    engine = make_engine(client)
    workflow = await engine.create_workflow("loop", "", [
        {"id": "start", "agent_id": "research", "action": "begin"},
        {"id": "a", "agent_id": "writer", "action": "x", "dependencies": ["b"]},
        {"id": "b", "agent_id": "reviewer", "action": "y", "dependencies": ["a"]},
    ])

    error = await assert_raises_async(WorkflowError, engine.execute_workflow(workflow.id))

    assert_equal(str(error), "Workflow has circular or unresolvable dependencies")
    result = await engine.get_workflow(workflow.id)
    assert_equal(result.status, WorkflowStatus.FAILED)
    assert_equal(result.get_step("start").status, StepStatus.COMPLETED, "Ready steps still ran")
    assert_equal(result.error["step_id"], "a,b")
    assert_equal(len(client.calls), 1)


async def test_state_machine():
    """Only draft workflows run; paused is settable and reversible"""
    engine = make_engine(FakeGenerationClient(responder=echo_responder))
    workflow = await engine.create_workflow("states", "", [{"agent_id": "research", "action": "go"}])

    paused = await engine.set_status(workflow.id, WorkflowStatus.PAUSED)
    assert_equal(paused.status, WorkflowStatus.PAUSED)
    await assert_raises_async(InvalidStateTransitionError, engine.execute_workflow(workflow.id))

    await engine.set_status(workflow.id, WorkflowStatus.DRAFT)
    await assert_raises_async(
        InvalidStateTransitionError, engine.set_status(workflow.id, WorkflowStatus.COMPLETED)
    )

    completed = await engine.execute_workflow(workflow.id)
    assert_equal(completed.status, WorkflowStatus.COMPLETED)

    await assert_raises_async(InvalidStateTransitionError, engine.execute_workflow(workflow.id))
    await assert_raises_async(InvalidStateTransitionError, engine.set_status(workflow.id, WorkflowStatus.PAUSED))
    await assert_raises_async(WorkflowNotFound, engine.execute_workflow("workflow_missing"))


async def test_concurrent_execute_runs_once():
    """Two simultaneous execute calls: exactly one wins"""
    client = FakeGenerationClient(responder=echo_responder, delay=0.02)
    engine = make_engine(client)
    workflow = await engine.create_workflow("race", "", [{"agent_id": "research", "action": "go"}])

    results = await asyncio.gather(
        engine.execute_workflow(workflow.id),
        engine.execute_workflow(workflow.id),
        return_exceptions=True,
    )

    errors = [r for r in results if isinstance(r, Exception)]
    assert_equal(len(errors), 1)
    assert_true(isinstance(errors[0], InvalidStateTransitionError))
    assert_equal(len(client.calls), 1)


async def test_list_and_templates():
    """Templates create draft workflows that list newest first"""
    engine = make_engine(FakeGenerationClient())

    workflow_ids = await engine.create_dropshipping_workflows()
    workflows = await engine.list_workflows()

    assert_equal(len(workflow_ids), len(DROPSHIPPING_TEMPLATES))
    assert_equal(len(workflows), 2)
    for workflow in workflows:
        assert_equal([s.id for s in workflow.steps], ["step_1", "step_2", "step_3"])
        assert_equal(workflow.metadata, {"template": True})

    assert_equal(len(await engine.list_workflows(WorkflowStatus.DRAFT)), 2)
    assert_equal(len(await engine.list_workflows(WorkflowStatus.RUNNING)), 0)


async def test_lifecycle_events():
    """Successful runs publish started, step and completed events"""
    bus = EventBus()
    started = EventCollector()
    steps = EventCollector()
    completed = EventCollector()
    bus.subscribe(EventType.WORKFLOW_STARTED, started.handler)
    bus.subscribe(EventType.STEP_COMPLETED, steps.handler)
    bus.subscribe(EventType.WORKFLOW_COMPLETED, completed.handler)
    await bus.start()

    try:
        engine = make_engine(FakeGenerationClient(responder=echo_responder), event_bus=bus)
        workflow = await engine.create_workflow("events", "", [
            {"id": "a", "agent_id": "research", "action": "one"},
            {"id": "b", "agent_id": "writer", "action": "two", "dependencies": ["a"]},
        ])
        await engine.execute_workflow(workflow.id)
        await bus.wait_until_idle()

        assert_equal(started.count(), 1)
        assert_equal([e["step_id"] for e in steps.get_events()], ["a", "b"])
        assert_equal(completed.count(), 1)
        assert_equal(completed.get_events()[0]["workflow_id"], workflow.id)
    finally:
        await bus.stop()


async def main():
    """Run all workflow engine tests"""
    return await run_tests("Workflow Engine Tests", [
        ("Creation validation", test_create_validation),
        ("Default step ids", test_default_step_ids),
        ("Two wave execution", test_two_wave_execution),
        ("Step status progression", test_step_status_progression),
        ("Wave runs concurrently", test_wave_runs_concurrently),
        ("Partial failure", test_partial_failure),
        ("Unknown step agent", test_unknown_step_agent),
        ("Circular dependencies", test_circular_dependencies),
        ("State machine", test_state_machine),
        ("Concurrent execute runs once", test_concurrent_execute_runs_once),
        ("List and templates", test_list_and_templates),
        ("Lifecycle events", test_lifecycle_events),
    ])


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
