"""Command line interface for running stepflow workflows and workers."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer

from stepflow import WorkflowEngine, get_repository, load_config
from stepflow.cli_utils.workflow import (
    _dump_json,
    _execution_lines,
    _load_workflow_file,
    _parse_input,
)
from stepflow.config import StepflowConfig
from stepflow.contracts import ExecutionStatus
from stepflow.errors import StepflowError
from stepflow.registry import create_default_registry

app = typer.Typer(help="CLI for stepflow workflows")

# Command groups
modules_app = typer.Typer(help="Commands for inspecting step modules")
workflows_app = typer.Typer(help="Commands for managing workflow definitions")
executions_app = typer.Typer(help="Commands for inspecting executions")

app.add_typer(modules_app, name="modules")
app.add_typer(workflows_app, name="workflows")
app.add_typer(executions_app, name="executions")


def _settings(ctx: typer.Context) -> StepflowConfig:
    return ctx.obj["settings"]


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to a YAML configuration file"
    ),
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Logging level (defaults to the configured log_level)"
    ),
) -> None:
    """stepflow CLI entry point."""
    settings = load_config(str(config) if config else None)
    logging.basicConfig(
        level=(log_level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = {"settings": settings}


@app.command("run")
def run(
    ctx: typer.Context,
    workflow_file: Path,
    input_json: Optional[str] = typer.Option(
        None, "--input", "-i", help="Input data as JSON, or @path to a JSON file"
    ),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", min=1),
    timeout: Optional[float] = typer.Option(None, help="Give up after this many seconds"),
) -> None:
    """
    Run a workflow file to completion and print the result.

    The workflow (YAML or JSON) is stored in the configured repository, an
    execution is queued and the command waits until it reaches a terminal
    status.

    Example:
        stepflow run ./workflows/campaign_report.yaml --input '{"rows": []}'
    """
    settings = _settings(ctx)
    if workers is not None:
        settings.queue.workers = workers
    try:
        definition = _load_workflow_file(workflow_file)
        input_data = _parse_input(input_json)
    except (OSError, ValueError) as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)

    async def _run():
        engine = WorkflowEngine.from_config(settings)
        await engine.start()
        try:
            await engine.save_workflow(definition)
            execution_id = await engine.create_execution(definition.id, input_data)
            return await engine.wait_for_completion(execution_id, timeout=timeout)
        finally:
            await engine.shutdown()

    try:
        execution = asyncio.run(_run())
    except (StepflowError, asyncio.TimeoutError) as exc:
        typer.secho(f"Execution did not finish: {str(exc) or 'timed out'}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    for line in _execution_lines(execution):
        typer.echo(line)
    if execution.status != ExecutionStatus.COMPLETED:
        raise typer.Exit(code=1)
    typer.echo("Output:")
    typer.echo(_dump_json(execution.output_data))


@app.command("worker")
def worker(
    ctx: typer.Context,
    workers: Optional[int] = typer.Option(None, "--workers", "-w", min=1),
    lifespan: Optional[float] = typer.Option(
        None, help="Worker timeout in seconds (default: run indefinitely)"
    ),
) -> None:
    """
    Run queue workers against the configured job queue and repository.

    Example:
        STEPFLOW_JOB_QUEUE=redis stepflow worker --workers 10
    """
    settings = _settings(ctx)
    if workers is not None:
        settings.queue.workers = workers

    async def _serve() -> None:
        engine = WorkflowEngine.from_config(settings)
        await engine.start()
        try:
            if lifespan is None:
                await asyncio.Event().wait()
            else:
                await asyncio.sleep(lifespan)
        finally:
            await engine.shutdown()

    typer.echo(f"Starting {settings.queue.workers} workers ({settings.queue.backend} queue)")
    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        typer.echo("Worker stopped")


@modules_app.command("list")
def modules_list(ctx: typer.Context) -> None:
    """List registered step modules."""
    registry = create_default_registry(_settings(ctx))
    for descriptor in registry.describe():
        description = descriptor.description or ""
        typer.echo(f"{descriptor.name}\t{description}")


@workflows_app.command("register")
def workflows_register(ctx: typer.Context, workflow_file: Path) -> None:
    """Store a workflow definition so that workers can execute it."""
    try:
        definition = _load_workflow_file(workflow_file)
    except (OSError, ValueError) as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    repo = get_repository(config=_settings(ctx))
    asyncio.run(repo.save_workflow(definition))
    typer.echo(f"Registered workflow {definition.id} ({definition.name})")


@workflows_app.command("list")
def workflows_list(ctx: typer.Context) -> None:
    """List stored workflow definitions."""
    repo = get_repository(config=_settings(ctx))
    workflows = asyncio.run(repo.list_workflows())
    if not workflows:
        typer.echo("No workflows found")
        return
    for wf in workflows:
        typer.echo(f"{wf.id}\t{wf.name}\t{wf.status.value}\t{len(wf.steps)} steps")


@executions_app.command("list")
def executions_list(
    ctx: typer.Context,
    workflow_id: Optional[str] = typer.Option(None, "--workflow-id"),
    status: Optional[ExecutionStatus] = typer.Option(None, "--status", case_sensitive=False),
) -> None:
    """
    List executions with their current status.

    Example:
        stepflow executions list --status FAILED
        # Output: 0b6f...    3f2a...    FAILED
    """
    repo = get_repository(config=_settings(ctx))
    executions = asyncio.run(repo.list_executions(workflow_id=workflow_id, status=status))
    if not executions:
        typer.echo("No executions found")
        return
    for execution in executions:
        typer.echo(f"{execution.id}\t{execution.workflow_id}\t{execution.status.value}")


@executions_app.command("show")
def executions_show(ctx: typer.Context, execution_id: str) -> None:
    """Show an execution with its step-by-step history."""
    repo = get_repository(config=_settings(ctx))
    execution = asyncio.run(repo.get_execution(execution_id))
    if execution is None:
        typer.echo("Execution not found")
        raise typer.Exit(code=1)
    for line in _execution_lines(execution):
        typer.echo(line)
    if execution.output_data is not None:
        typer.echo("Output:")
        typer.echo(_dump_json(execution.output_data))


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
