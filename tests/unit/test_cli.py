import asyncio
import json

import pytest
from typer.testing import CliRunner

from stepflow.cli import app
from stepflow.contracts import ExecutionStatus, StepStatus, WorkflowDefinition, WorkflowStep
from stepflow.persistence import SQLiteExecutionRepository

WORKFLOW_YAML = """
id: cli-demo
steps:
  - id: active
    type: data-filter
    configuration:
      filters:
        - field: status
          operator: equals
          value: active
  - id: metrics
    type: metric-calculator
    dependencies: [active]
    configuration:
      calculations:
        - name: ctr
          formula: clicks / views
          format: percentage
"""

ROWS = [
    {"status": "active", "clicks": 5, "views": 100},
    {"status": "paused", "clicks": 1, "views": 10},
]


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    path = tmp_path / "stepflow.db"
    monkeypatch.setenv("STEPFLOW_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.setenv("STEPFLOW_DATABASE_URL", f"sqlite://{path}")
    for name in ("DATABASE_URL", "STEPFLOW_JOB_QUEUE", "STEPFLOW_NOTIFIER"):
        monkeypatch.delenv(name, raising=False)
    return path


@pytest.fixture
def workflow_file(tmp_path):
    path = tmp_path / "campaign_report.yaml"
    path.write_text(WORKFLOW_YAML)
    return path


def test_modules_list(db_path):
    result = CliRunner().invoke(app, ["modules", "list"])
    assert result.exit_code == 0, result.output
    assert "data-filter\t" in result.output
    assert "campaign-stats-merge\t" in result.output


def test_workflows_register_and_list(db_path, workflow_file):
    runner = CliRunner()
    result = runner.invoke(app, ["workflows", "register", str(workflow_file)])
    assert result.exit_code == 0, result.output
    assert "Registered workflow cli-demo (campaign_report)" in result.output

    result = runner.invoke(app, ["workflows", "list"])
    assert result.exit_code == 0, result.output
    assert "cli-demo\tcampaign_report\tACTIVE\t2 steps" in result.output


def test_workflows_register_rejects_invalid_file(db_path, tmp_path):
    bad = tmp_path / "bad.yaml"
    bad.write_text("- just\n- a list\n")
    result = CliRunner().invoke(app, ["workflows", "register", str(bad)])
    assert result.exit_code == 1
    assert "does not contain a workflow mapping" in result.output


def test_run_prints_output_and_records_execution(db_path, workflow_file):
    runner = CliRunner()
    result = runner.invoke(
        app,
        ["run", str(workflow_file), "--input", json.dumps(ROWS), "--workers", "1", "--timeout", "10"],
    )
    assert result.exit_code == 0, result.output
    assert ": COMPLETED" in result.output
    assert "- active: COMPLETED" in result.output
    output = json.loads(result.output.split("Output:\n", 1)[1])
    assert output == [{"status": "active", "clicks": 5, "views": 100, "ctr": 5.0}]

    result = runner.invoke(app, ["executions", "list", "--status", "completed"])
    assert result.exit_code == 0, result.output
    assert "cli-demo\tCOMPLETED" in result.output


def test_run_with_unknown_step_type_exits_nonzero(db_path, tmp_path):
    path = tmp_path / "broken.json"
    path.write_text(json.dumps({"id": "broken", "steps": [{"id": "a", "type": "nope"}]}))
    result = CliRunner().invoke(app, ["run", str(path), "--workers", "1", "--timeout", "10"])
    assert result.exit_code == 1
    assert ": FAILED" in result.output
    assert "Unknown step type: nope" in result.output


def test_executions_show(db_path):
    repo = SQLiteExecutionRepository(db_path)

    async def _seed():
        await repo.save_workflow(
            WorkflowDefinition(id="wf", name="wf", steps=[WorkflowStep(id="a", type="delay")])
        )
        execution_id = await repo.create_execution("wf")
        await repo.update_execution_status(execution_id, ExecutionStatus.RUNNING)
        await repo.update_step_record(execution_id, "a", StepStatus.FAILED, error="boom")
        await repo.update_execution_status(
            execution_id, ExecutionStatus.FAILED, error_message="boom"
        )
        return execution_id

    execution_id = asyncio.run(_seed())
    repo.close()

    runner = CliRunner()
    result = runner.invoke(app, ["executions", "show", execution_id])
    assert result.exit_code == 0, result.output
    assert f"Execution {execution_id}: FAILED" in result.output
    assert "Error: boom" in result.output
    assert "- a: FAILED" in result.output
    assert "[boom]" in result.output

    result = runner.invoke(app, ["executions", "show", "missing"])
    assert result.exit_code == 1
    assert "Execution not found" in result.output


def test_executions_list_empty(db_path):
    result = CliRunner().invoke(app, ["executions", "list"])
    assert result.exit_code == 0
    assert "No executions found" in result.output
