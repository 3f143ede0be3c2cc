"""Repository abstraction for workflow and execution persistence."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional, Protocol

from ..contracts import ExecutionStatus, StepStatus, WorkflowDefinition, utcnow
from ..errors import InvalidTransitionError
from .models import StepExecutionRecord, WorkflowExecution

EXECUTION_FIELDS = frozenset({"output_data", "error_message", "started_at", "completed_at"})


class ExecutionRepository(Protocol):
    """Protocol for execution state persistence backends."""

    async def save_workflow(self, definition: WorkflowDefinition) -> None:
        """Insert or replace a workflow definition."""

    async def get_workflow_with_steps(self, workflow_id: str) -> WorkflowDefinition | None:
        """Load a workflow definition with its steps and dependencies."""

    async def list_workflows(self) -> list[WorkflowDefinition]:
        """Return all stored workflow definitions."""

    async def create_execution(self, workflow_id: str, input_data: Any = None) -> str:
        """Create a PENDING execution and return its id."""

    async def update_execution_status(
        self, execution_id: str, status: ExecutionStatus, **fields: Any
    ) -> WorkflowExecution:
        """Move an execution to ``status``, refusing illegal transitions."""

    async def update_step_record(
        self,
        execution_id: str,
        step_id: str,
        status: StepStatus,
        output: Any = None,
        error: str | None = None,
        step_name: str | None = None,
    ) -> StepExecutionRecord:
        """Create or update the record of one step within an execution."""

    async def get_execution(
        self, execution_id: str, include_steps: bool = True
    ) -> WorkflowExecution | None:
        """Retrieve an execution, optionally with its step records."""

    async def list_executions(
        self, workflow_id: str | None = None, status: ExecutionStatus | None = None
    ) -> list[WorkflowExecution]:
        """Return executions, newest first, optionally filtered."""


def check_transition(
    execution_id: str, current: ExecutionStatus, target: ExecutionStatus
) -> None:
    if not current.can_transition_to(target):
        raise InvalidTransitionError(execution_id, current.value, target.value)


def transition_fields(
    target: ExecutionStatus, started_at: Optional[datetime], fields: Dict[str, Any]
) -> Dict[str, Any]:
    """Validate ``fields`` and fill in the timestamps implied by ``target``."""
    unknown = set(fields) - EXECUTION_FIELDS
    if unknown:
        raise ValueError(f"Unknown execution fields: {', '.join(sorted(unknown))}")
    values = dict(fields)
    if target == ExecutionStatus.RUNNING and started_at is None:
        values.setdefault("started_at", utcnow())
    if target.is_terminal:
        values.setdefault("completed_at", utcnow())
    return values


def check_step_update(
    execution_id: str, step_id: str, current: Optional[StepStatus], target: StepStatus
) -> None:
    if current is not None and current.is_final:
        raise InvalidTransitionError(
            execution_id, current.value, target.value, step_id=step_id
        )
