"""Utility functions to load workflow files and render executions."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import ValidationError

from stepflow.contracts import WorkflowDefinition
from stepflow.persistence import WorkflowExecution


def _load_workflow_file(path: Path) -> WorkflowDefinition:
    """Parse a YAML or JSON workflow definition.

    Raises:
        ValueError: The file is not a mapping or fails validation.
    """
    text = path.read_text()
    data = json.loads(text) if path.suffix == ".json" else yaml.safe_load(text)
    if not isinstance(data, dict):
        raise ValueError(f"{path} does not contain a workflow mapping")
    data.setdefault("name", path.stem)
    try:
        return WorkflowDefinition.model_validate(data)
    except ValidationError as exc:
        raise ValueError(f"Invalid workflow {path}: {exc}") from exc


def _parse_input(raw: Optional[str]) -> Any:
    """Parse ``--input``: inline JSON, or ``@file`` to read JSON from a file."""
    if raw is None:
        return None
    if raw.startswith("@"):
        raw = Path(raw[1:]).read_text()
    return json.loads(raw)


def _format_timespan(execution: Any) -> str:
    if execution.started_at or execution.completed_at:
        return f" ({execution.started_at} -> {execution.completed_at})"
    return ""


def _execution_lines(execution: WorkflowExecution) -> list[str]:
    lines = [f"Execution {execution.id}: {execution.status.value}{_format_timespan(execution)}"]
    lines.append(f"Workflow: {execution.workflow_id}")
    if execution.error_message:
        lines.append(f"Error: {execution.error_message}")
    for step in execution.steps:
        line = f"- {step.step_name or step.step_id}: {step.status.value}{_format_timespan(step)}"
        if step.error_message:
            line += f" [{step.error_message}]"
        lines.append(line)
    return lines


def _dump_json(value: Any) -> str:
    return json.dumps(value, indent=2, default=str)
