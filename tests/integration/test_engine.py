"""End-to-end engine runs with the in-memory backends."""

import asyncio

import pytest

from stepflow import WorkflowEngine
from stepflow.config import QueueConfig, StepflowConfig
from stepflow.contracts import (
    ExecutionStatus,
    StepStatus,
    WorkflowDefinition,
    WorkflowStatus,
    WorkflowStep,
)
from stepflow.errors import (
    ExecutionNotFoundError,
    InvalidTransitionError,
    WorkflowArchivedError,
    WorkflowNotFoundError,
)

CAMPAIGNS = [
    {"id": 1, "type": "search", "status": "active", "views": 1000, "clicks": 50, "spend": 100},
    {"id": 2, "type": "search", "status": "active", "views": 500, "clicks": 5, "spend": 20},
    {"id": 3, "type": "catalog", "status": "active", "views": 200, "clicks": 10, "spend": 40},
    {"id": 4, "type": "catalog", "status": "paused", "views": 900, "clicks": 90, "spend": 10},
]


def _settings(workers=2):
    return StepflowConfig(
        queue=QueueConfig(workers=workers, poll_interval=0.02),
        pause_poll_interval=0.01,
    )


class Gate:
    """Module that blocks until released and records every call."""

    def __init__(self):
        self.calls = []
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def __call__(self, config, input_data):
        self.calls.append(config.get("tag"))
        if config.get("block"):
            self.started.set()
            await self.release.wait()
        return config.get("tag")


async def _wait_for_status(engine, execution_id, status):
    for _ in range(200):
        execution = await engine.get_execution_status(execution_id)
        if execution.status == status:
            return execution
        await asyncio.sleep(0.01)
    raise AssertionError(f"execution never reached {status}")


def _gated_workflow():
    return WorkflowDefinition(
        id="gated",
        name="gated",
        steps=[
            WorkflowStep(id="a", type="gate", configuration={"tag": "a", "block": True}),
            WorkflowStep(id="b", type="gate", configuration={"tag": "b"}, dependencies=["a"]),
            WorkflowStep(id="c", type="gate", configuration={"tag": "c"}, dependencies=["b"]),
        ],
    )


@pytest.mark.asyncio
async def test_campaign_report_workflow():
    workflow = WorkflowDefinition(
        id="report",
        name="Campaign report",
        steps=[
            WorkflowStep(
                id="active",
                type="data-filter",
                configuration={
                    "filters": [{"field": "status", "operator": "equals", "value": "active"}]
                },
            ),
            WorkflowStep(
                id="metrics",
                type="metric-calculator",
                dependencies=["active"],
                configuration={
                    "calculations": [
                        {"name": "ctr", "formula": "clicks / views", "format": "percentage"}
                    ]
                },
            ),
            WorkflowStep(
                id="by_type",
                type="data-aggregator",
                dependencies=["metrics"],
                configuration={
                    "groupBy": "type",
                    "aggregations": [
                        {"field": "spend", "operation": "sum", "alias": "spend"},
                        {"field": "ctr", "operation": "max", "alias": "best_ctr"},
                    ],
                },
            ),
        ],
    )
    async with WorkflowEngine(settings=_settings()) as engine:
        await engine.save_workflow(workflow)
        execution_id = await engine.create_execution("report", CAMPAIGNS)
        execution = await engine.wait_for_completion(execution_id, timeout=5)

    assert execution.status == ExecutionStatus.COMPLETED
    assert [s.step_id for s in execution.steps] == ["active", "metrics", "by_type"]
    rows = {row["type"]: row for row in execution.output_data}
    assert rows["search"]["count"] == 2
    assert rows["search"]["spend"] == 120
    assert rows["search"]["best_ctr"] == pytest.approx(5.0)
    assert rows["catalog"] == {"type": "catalog", "count": 1, "spend": 40, "best_ctr": 5.0}

    events = engine.notifier.names_for(execution_id)
    assert events[0] == "execution:started"
    assert events[-1] == "execution:completed"


@pytest.mark.asyncio
async def test_pause_and_resume_run_each_step_once():
    gate = Gate()
    engine = WorkflowEngine(settings=_settings())
    engine.register_module("gate", gate)
    await engine.start()
    try:
        await engine.save_workflow(_gated_workflow())
        execution_id = await engine.create_execution("gated")
        await asyncio.wait_for(gate.started.wait(), 5)

        paused = await engine.pause_execution(execution_id)
        assert paused.status == ExecutionStatus.PAUSED
        gate.release.set()

        for _ in range(100):
            execution = await engine.get_execution_status(execution_id)
            if execution.step("a") and execution.step("a").status == StepStatus.COMPLETED:
                break
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.05)
        execution = await engine.get_execution_status(execution_id)
        assert execution.status == ExecutionStatus.PAUSED
        assert execution.step("b") is None
        assert gate.calls == ["a"]

        await engine.resume_execution(execution_id)
        execution = await engine.wait_for_completion(execution_id, timeout=5)
    finally:
        await engine.shutdown()

    assert execution.status == ExecutionStatus.COMPLETED
    assert gate.calls == ["a", "b", "c"]
    assert execution.output_data == "c"
    names = engine.notifier.names_for(execution_id)
    assert names.index("execution:paused") < names.index("execution:resumed")
    assert names.count("step:started") == 3


@pytest.mark.asyncio
async def test_stop_while_paused_skips_remaining_steps():
    gate = Gate()
    engine = WorkflowEngine(settings=_settings())
    engine.register_module("gate", gate)
    async with engine:
        await engine.save_workflow(_gated_workflow())
        execution_id = await engine.create_execution("gated")
        await asyncio.wait_for(gate.started.wait(), 5)
        await engine.pause_execution(execution_id)
        gate.release.set()

        stopped = await engine.stop_execution(execution_id)
        assert stopped.status == ExecutionStatus.STOPPED
        await engine.queue.join()

        execution = await engine.get_execution_status(execution_id)
        with pytest.raises(InvalidTransitionError):
            await engine.resume_execution(execution_id)

    assert execution.status == ExecutionStatus.STOPPED
    assert gate.calls == ["a"]
    assert execution.step("b") is None
    assert "execution:completed" not in engine.notifier.names_for(execution_id)


@pytest.mark.asyncio
async def test_stop_before_start():
    engine = WorkflowEngine(settings=_settings())
    gate = Gate()
    engine.register_module("gate", gate)
    await engine.save_workflow(_gated_workflow())
    execution_id = await engine.create_execution("gated")
    await engine.stop_execution(execution_id)
    with pytest.raises(InvalidTransitionError):
        await engine.pause_execution(execution_id)

    async with engine:
        await engine.queue.join()
    execution = await engine.get_execution_status(execution_id)
    assert execution.status == ExecutionStatus.STOPPED
    assert gate.calls == []


@pytest.mark.asyncio
async def test_create_execution_validates_workflow():
    engine = WorkflowEngine(settings=_settings())
    with pytest.raises(WorkflowNotFoundError):
        await engine.create_execution("nope")

    await engine.save_workflow(
        WorkflowDefinition(id="old", name="old", status=WorkflowStatus.ARCHIVED)
    )
    with pytest.raises(WorkflowArchivedError):
        await engine.create_execution("old")
    assert await engine.list_executions() == []


@pytest.mark.asyncio
async def test_unknown_execution_controls():
    engine = WorkflowEngine(settings=_settings())
    for control in (engine.pause_execution, engine.resume_execution, engine.stop_execution):
        with pytest.raises(ExecutionNotFoundError):
            await control("missing")
    with pytest.raises(ExecutionNotFoundError):
        await engine.get_execution_status("missing")


@pytest.mark.asyncio
async def test_list_executions_by_workflow_and_status():
    engine = WorkflowEngine(settings=_settings())
    engine.register_module("noop", lambda config, data: data)
    await engine.save_workflow(
        WorkflowDefinition(id="wf", name="wf", steps=[WorkflowStep(id="a", type="noop")])
    )
    first = await engine.create_execution("wf", 1)
    second = await engine.create_execution("wf", 2)
    await engine.stop_execution(first)

    async with engine:
        await engine.wait_for_completion(second, timeout=5)

    listed = await engine.list_executions(workflow_id="wf")
    assert [e.id for e in listed] == [second, first]
    completed = await engine.list_executions(status=ExecutionStatus.COMPLETED)
    assert [e.output_data for e in completed] == [2]


def test_from_config_rejects_unknown_components():
    with pytest.raises(TypeError):
        WorkflowEngine.from_config(StepflowConfig(), scheduler=object())
