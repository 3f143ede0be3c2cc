"""Data models for persisted execution state."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from ..contracts import ExecutionStatus, StepStatus


class StepExecutionRecord(BaseModel):
    """Audit record of one step within one execution."""

    execution_id: str
    step_id: str
    step_name: Optional[str] = None
    status: StepStatus = StepStatus.PENDING
    output_data: Any = None
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class WorkflowExecution(BaseModel):
    """Persisted state of one workflow run."""

    id: str
    workflow_id: str
    status: ExecutionStatus = ExecutionStatus.PENDING
    input_data: Any = None
    output_data: Any = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    steps: list[StepExecutionRecord] = Field(default_factory=list)

    def step(self, step_id: str) -> Optional[StepExecutionRecord]:
        return next((s for s in self.steps if s.step_id == step_id), None)
