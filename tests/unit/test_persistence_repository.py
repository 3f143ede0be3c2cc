import pytest

from stepflow.contracts import ExecutionStatus, StepStatus, WorkflowDefinition, WorkflowStep
from stepflow.errors import ExecutionNotFoundError, InvalidTransitionError
from stepflow.persistence import (
    InMemoryExecutionRepository,
    SQLiteExecutionRepository,
    get_repository,
)


@pytest.fixture(params=["memory", "sqlite"])
def repo(request, tmp_path):
    if request.param == "memory":
        yield InMemoryExecutionRepository()
        return
    repository = SQLiteExecutionRepository(tmp_path / "stepflow.db")
    yield repository
    repository.close()


def _workflow(**kwargs):
    return WorkflowDefinition(
        id=kwargs.pop("id", "wf-1"),
        name=kwargs.pop("name", "report"),
        steps=[
            WorkflowStep(id="load", type="wb-get-campaigns"),
            WorkflowStep(id="stats", type="wb-get-stats", dependencies=["load"]),
        ],
        **kwargs,
    )


@pytest.mark.asyncio
async def test_workflow_roundtrip(repo):
    await repo.save_workflow(_workflow(priority=3))
    wf = await repo.get_workflow_with_steps("wf-1")
    assert wf is not None
    assert wf.priority == 3
    assert wf.dependency_graph() == {"load": [], "stats": ["load"]}
    assert await repo.get_workflow_with_steps("missing") is None
    assert [w.id for w in await repo.list_workflows()] == ["wf-1"]


@pytest.mark.asyncio
async def test_execution_lifecycle(repo):
    execution_id = await repo.create_execution("wf-1", {"rows": [1, 2]})
    execution = await repo.get_execution(execution_id)
    assert execution.status == ExecutionStatus.PENDING
    assert execution.input_data == {"rows": [1, 2]}
    assert execution.started_at is None

    running = await repo.update_execution_status(execution_id, ExecutionStatus.RUNNING)
    assert running.started_at is not None
    paused = await repo.update_execution_status(execution_id, ExecutionStatus.PAUSED)
    resumed = await repo.update_execution_status(execution_id, ExecutionStatus.RUNNING)
    assert paused.status == ExecutionStatus.PAUSED
    assert resumed.started_at == running.started_at

    done = await repo.update_execution_status(
        execution_id, ExecutionStatus.COMPLETED, output_data={"total": 3}
    )
    assert done.output_data == {"total": 3}
    assert done.completed_at is not None


@pytest.mark.asyncio
async def test_terminal_status_is_final(repo):
    execution_id = await repo.create_execution("wf-1")
    await repo.update_execution_status(execution_id, ExecutionStatus.STOPPED)
    with pytest.raises(InvalidTransitionError, match="STOPPED to RUNNING"):
        await repo.update_execution_status(execution_id, ExecutionStatus.RUNNING)
    with pytest.raises(InvalidTransitionError):
        await repo.update_execution_status(
            execution_id, ExecutionStatus.FAILED, error_message="late failure"
        )
    execution = await repo.get_execution(execution_id)
    assert execution.status == ExecutionStatus.STOPPED
    assert execution.error_message is None


@pytest.mark.asyncio
async def test_pause_requires_running(repo):
    execution_id = await repo.create_execution("wf-1")
    with pytest.raises(InvalidTransitionError):
        await repo.update_execution_status(execution_id, ExecutionStatus.PAUSED)


@pytest.mark.asyncio
async def test_unknown_fields_and_executions(repo):
    execution_id = await repo.create_execution("wf-1")
    with pytest.raises(ValueError):
        await repo.update_execution_status(execution_id, ExecutionStatus.RUNNING, bogus=1)
    with pytest.raises(ExecutionNotFoundError):
        await repo.update_execution_status("nope", ExecutionStatus.RUNNING)
    assert await repo.get_execution("nope") is None


@pytest.mark.asyncio
async def test_step_records(repo):
    execution_id = await repo.create_execution("wf-1")
    await repo.update_step_record(execution_id, "load", StepStatus.RUNNING, step_name="Load")
    record = await repo.update_step_record(
        execution_id, "load", StepStatus.COMPLETED, output={"count": 2}
    )
    assert record.step_name == "Load"
    assert record.started_at is not None
    assert record.completed_at is not None
    await repo.update_step_record(execution_id, "stats", StepStatus.RUNNING)
    await repo.update_step_record(execution_id, "stats", StepStatus.FAILED, error="HTTP 500")

    execution = await repo.get_execution(execution_id)
    assert [(s.step_id, s.status) for s in execution.steps] == [
        ("load", StepStatus.COMPLETED),
        ("stats", StepStatus.FAILED),
    ]
    assert execution.step("load").output_data == {"count": 2}
    assert execution.step("stats").error_message == "HTTP 500"

    bare = await repo.get_execution(execution_id, include_steps=False)
    assert bare.steps == []


@pytest.mark.asyncio
async def test_final_step_records_cannot_change(repo):
    execution_id = await repo.create_execution("wf-1")
    await repo.update_step_record(execution_id, "load", StepStatus.COMPLETED, output=1)
    with pytest.raises(InvalidTransitionError, match="Step load"):
        await repo.update_step_record(execution_id, "load", StepStatus.RUNNING)
    execution = await repo.get_execution(execution_id)
    assert len(execution.steps) == 1
    assert execution.steps[0].output_data == 1


@pytest.mark.asyncio
async def test_list_executions_filters_newest_first(repo):
    first = await repo.create_execution("wf-1")
    second = await repo.create_execution("wf-2")
    third = await repo.create_execution("wf-1")
    await repo.update_execution_status(third, ExecutionStatus.RUNNING)

    assert [e.id for e in await repo.list_executions()] == [third, second, first]
    assert [e.id for e in await repo.list_executions(workflow_id="wf-1")] == [third, first]
    running = await repo.list_executions(status=ExecutionStatus.RUNNING)
    assert [e.id for e in running] == [third]
    assert await repo.list_executions(workflow_id="wf-2", status=ExecutionStatus.RUNNING) == []


@pytest.mark.asyncio
async def test_sqlite_survives_reopen(tmp_path):
    path = tmp_path / "stepflow.db"
    repo = SQLiteExecutionRepository(path)
    await repo.save_workflow(_workflow())
    execution_id = await repo.create_execution("wf-1", [1])
    repo.close()

    reopened = SQLiteExecutionRepository(path)
    execution = await reopened.get_execution(execution_id)
    assert execution.input_data == [1]
    assert (await reopened.get_workflow_with_steps("wf-1")).name == "report"
    reopened.close()


def test_get_repository_selects_backend(tmp_path):
    assert isinstance(get_repository("", None), InMemoryExecutionRepository)
    sqlite_repo = get_repository(f"sqlite://{tmp_path / 'x.db'}")
    assert isinstance(sqlite_repo, SQLiteExecutionRepository)
    sqlite_repo.close()
    with pytest.raises(ValueError):
        get_repository("mysql://localhost/db")
