"""In-memory implementation of the execution repository."""

from __future__ import annotations

import uuid
from typing import Any, Dict

from ..contracts import ExecutionStatus, StepStatus, WorkflowDefinition, utcnow
from ..errors import ExecutionNotFoundError
from .models import StepExecutionRecord, WorkflowExecution
from .repository import (
    ExecutionRepository,
    check_step_update,
    check_transition,
    transition_fields,
)


class InMemoryExecutionRepository(ExecutionRepository):
    """Store workflows and executions in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Returned models are copies.
    """

    def __init__(self) -> None:
        self._workflows: Dict[str, WorkflowDefinition] = {}
        self._executions: Dict[str, WorkflowExecution] = {}

    # ------------------------------------------------------------------
    async def save_workflow(self, definition: WorkflowDefinition) -> None:
        self._workflows[definition.id] = definition.model_copy(deep=True)

    async def get_workflow_with_steps(self, workflow_id: str) -> WorkflowDefinition | None:
        wf = self._workflows.get(workflow_id)
        return wf.model_copy(deep=True) if wf else None

    async def list_workflows(self) -> list[WorkflowDefinition]:
        return [wf.model_copy(deep=True) for wf in self._workflows.values()]

    # ------------------------------------------------------------------
    async def create_execution(self, workflow_id: str, input_data: Any = None) -> str:
        execution_id = str(uuid.uuid4())
        self._executions[execution_id] = WorkflowExecution(
            id=execution_id,
            workflow_id=workflow_id,
            input_data=input_data,
            created_at=utcnow(),
        )
        return execution_id

    def _require(self, execution_id: str) -> WorkflowExecution:
        execution = self._executions.get(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id)
        return execution

    async def update_execution_status(
        self, execution_id: str, status: ExecutionStatus, **fields: Any
    ) -> WorkflowExecution:
        status = ExecutionStatus(status)
        execution = self._require(execution_id)
        check_transition(execution_id, execution.status, status)
        for key, value in transition_fields(status, execution.started_at, fields).items():
            setattr(execution, key, value)
        execution.status = status
        return execution.model_copy(deep=True, update={"steps": []})

    async def update_step_record(
        self,
        execution_id: str,
        step_id: str,
        status: StepStatus,
        output: Any = None,
        error: str | None = None,
        step_name: str | None = None,
    ) -> StepExecutionRecord:
        status = StepStatus(status)
        execution = self._require(execution_id)
        record = execution.step(step_id)
        check_step_update(execution_id, step_id, record.status if record else None, status)
        if record is None:
            record = StepExecutionRecord(execution_id=execution_id, step_id=step_id)
            execution.steps.append(record)
        now = utcnow()
        record.status = status
        if step_name is not None:
            record.step_name = step_name
        if status == StepStatus.RUNNING:
            record.started_at = now
        if status.is_final:
            record.completed_at = now
            record.output_data = output
            record.error_message = error
        return record.model_copy(deep=True)

    async def get_execution(
        self, execution_id: str, include_steps: bool = True
    ) -> WorkflowExecution | None:
        execution = self._executions.get(execution_id)
        if execution is None:
            return None
        if include_steps:
            return execution.model_copy(deep=True)
        return execution.model_copy(deep=True, update={"steps": []})

    async def list_executions(
        self, workflow_id: str | None = None, status: ExecutionStatus | None = None
    ) -> list[WorkflowExecution]:
        executions = [
            e.model_copy(deep=True, update={"steps": []})
            for e in self._executions.values()
            if (workflow_id is None or e.workflow_id == workflow_id)
            and (status is None or e.status == ExecutionStatus(status))
        ]
        return list(reversed(executions))
