"""Core workflow contracts for the stepflow engine."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_OUTPUT_KEY = "data"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowStatus(str, Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"


class ExecutionStatus(str, Enum):
    """Lifecycle of a single workflow run."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    STOPPED = "STOPPED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    def can_transition_to(self, target: "ExecutionStatus") -> bool:
        """Return ``True`` when moving from this status to ``target`` is legal."""
        return target in _TRANSITIONS[self]


TERMINAL_STATUSES = frozenset(
    {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.STOPPED}
)

_TRANSITIONS: Dict[ExecutionStatus, frozenset] = {
    ExecutionStatus.PENDING: frozenset(
        {ExecutionStatus.RUNNING, ExecutionStatus.FAILED, ExecutionStatus.STOPPED}
    ),
    ExecutionStatus.RUNNING: frozenset(
        {
            ExecutionStatus.PAUSED,
            ExecutionStatus.COMPLETED,
            ExecutionStatus.FAILED,
            ExecutionStatus.STOPPED,
        }
    ),
    ExecutionStatus.PAUSED: frozenset(
        {ExecutionStatus.RUNNING, ExecutionStatus.STOPPED}
    ),
    ExecutionStatus.COMPLETED: frozenset(),
    ExecutionStatus.FAILED: frozenset(),
    ExecutionStatus.STOPPED: frozenset(),
}


class StepStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_final(self) -> bool:
        return self in (StepStatus.COMPLETED, StepStatus.FAILED)


class OnError(str, Enum):
    STOP = "stop"
    CONTINUE = "continue"


class OutputMode(str, Enum):
    PASS_THROUGH = "pass-through"
    ISOLATED = "isolated"


class WorkflowStepDependency(BaseModel):
    """Edge from a step to one of the steps whose output it consumes."""

    model_config = ConfigDict(populate_by_name=True)

    step_id: Optional[str] = Field(default=None, alias="stepId")
    depends_on_step_id: str = Field(alias="dependsOnStepId")
    output_key: Optional[str] = Field(default=None, alias="outputKey")

    @property
    def slot(self) -> str:
        """Key under which the dependency's output is exposed."""
        return self.output_key or DEFAULT_OUTPUT_KEY


class WorkflowStep(BaseModel):
    """Defines one step in a workflow."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: Optional[str] = None
    type: str
    configuration: Dict[str, Any] = Field(default_factory=dict)
    dependencies: List[WorkflowStepDependency] = Field(default_factory=list)
    on_error: OnError = Field(default=OnError.STOP, alias="onError")
    output_mode: OutputMode = Field(default=OutputMode.PASS_THROUGH, alias="outputMode")

    @field_validator("dependencies", mode="before")
    @classmethod
    def _expand_shorthand(cls, value: Any) -> Any:
        # ``dependencies: [a, b]`` is accepted as a shorthand in workflow files
        if isinstance(value, list):
            return [
                {"depends_on_step_id": item} if isinstance(item, str) else item
                for item in value
            ]
        return value

    @model_validator(mode="after")
    def _bind_dependencies(self) -> "WorkflowStep":
        if self.name is None:
            self.name = self.id
        for dep in self.dependencies:
            if dep.step_id is None:
                dep.step_id = self.id
            elif dep.step_id != self.id:
                raise ValueError(
                    f"Dependency of step {self.id} declares foreign step_id {dep.step_id}"
                )
        return self

    @property
    def depends_on(self) -> List[str]:
        return [dep.depends_on_step_id for dep in self.dependencies]


class WorkflowDefinition(BaseModel):
    """A named DAG of steps. Read-only to the engine."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    description: Optional[str] = None
    steps: List[WorkflowStep] = Field(default_factory=list)
    status: WorkflowStatus = WorkflowStatus.ACTIVE
    priority: int = 0

    @model_validator(mode="after")
    def _check_step_references(self) -> "WorkflowDefinition":
        seen: set[str] = set()
        for step in self.steps:
            if step.id in seen:
                raise ValueError(f"Duplicate step id in workflow {self.name}: {step.id}")
            seen.add(step.id)
        for step in self.steps:
            for dep_id in step.depends_on:
                if dep_id not in seen:
                    raise ValueError(
                        f"Step {step.id} depends on unknown step {dep_id}"
                    )
        return self

    def dependency_graph(self) -> Dict[str, List[str]]:
        """Map each step id to the ids it depends on, in step order."""
        return {step.id: step.depends_on for step in self.steps}

    def step_map(self) -> Dict[str, WorkflowStep]:
        return {step.id: step for step in self.steps}


class ExecutionJob(BaseModel):
    """Unit of work carried by the execution queue."""

    execution_id: str
    workflow_id: str
    input_data: Any = None
    priority: int = 0
    attempt: int = 1
    enqueued_at: datetime = Field(default_factory=utcnow)

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str | bytes) -> "ExecutionJob":
        return cls.model_validate_json(data)

    def next_attempt(self) -> "ExecutionJob":
        return self.model_copy(update={"attempt": self.attempt + 1})


class ExecutionEvent(BaseModel):
    """Progress or lifecycle notification for one execution."""

    event: str
    execution_id: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)

    def to_message(self) -> Dict[str, Any]:
        """Flatten to the ``{executionId, ...payload, timestamp}`` wire shape."""
        message: Dict[str, Any] = {"executionId": self.execution_id}
        message.update(self.payload)
        message["timestamp"] = self.timestamp.isoformat()
        return message


__all__ = [
    "DEFAULT_OUTPUT_KEY",
    "WorkflowStatus",
    "ExecutionStatus",
    "TERMINAL_STATUSES",
    "StepStatus",
    "OnError",
    "OutputMode",
    "WorkflowStepDependency",
    "WorkflowStep",
    "WorkflowDefinition",
    "ExecutionJob",
    "ExecutionEvent",
    "utcnow",
]
