"""Exception hierarchy for the stepflow engine."""

from __future__ import annotations

from typing import Iterable, Optional


class StepflowError(Exception):
    """Base class for all engine errors."""


class CircularDependencyError(StepflowError):
    """Raised when a workflow's step graph contains a cycle."""

    def __init__(self, remaining: Iterable[str]) -> None:
        self.remaining = sorted(remaining)
        super().__init__(
            "Circular dependency detected in workflow between steps: "
            + ", ".join(self.remaining)
        )


class StepModuleNotFoundError(StepflowError):
    """Raised when no module is registered for a step type."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Unknown step type: {name}")


class ModuleConfigurationError(StepflowError):
    """A module received configuration or input it cannot work with."""


class StepExecutionError(StepflowError):
    """A module raised while executing a step."""

    def __init__(self, step_id: str, cause: BaseException) -> None:
        self.step_id = step_id
        self.cause = cause
        super().__init__(str(cause) or cause.__class__.__name__)


class CircuitOpenError(StepflowError):
    """Raised instead of calling a dependency whose circuit is open."""

    def __init__(self, name: str, retry_after: Optional[float] = None) -> None:
        self.name = name
        self.retry_after = retry_after
        message = f"Circuit '{name}' is open"
        if retry_after is not None:
            message += f"; retry in {retry_after:.2f}s"
        super().__init__(message)


class UnsafeExpressionError(StepflowError):
    """A formula contains something other than plain arithmetic."""


class PersistenceError(StepflowError):
    """Raised by repository adapters when storage fails."""


class InvalidTransitionError(StepflowError):
    """An execution status change violates the lifecycle."""

    def __init__(
        self, execution_id: str, current: str, target: str, step_id: Optional[str] = None
    ) -> None:
        self.execution_id = execution_id
        self.current = current
        self.target = target
        self.step_id = step_id
        subject = f"Execution {execution_id}"
        if step_id is not None:
            subject = f"Step {step_id} of execution {execution_id}"
        super().__init__(f"{subject} cannot move from {current} to {target}")


class WorkflowNotFoundError(StepflowError):
    def __init__(self, workflow_id: str) -> None:
        self.workflow_id = workflow_id
        super().__init__(f"Workflow not found: {workflow_id}")


class WorkflowArchivedError(StepflowError):
    def __init__(self, workflow_id: str) -> None:
        self.workflow_id = workflow_id
        super().__init__(f"Workflow {workflow_id} is archived and cannot be executed")


class ExecutionNotFoundError(StepflowError):
    def __init__(self, execution_id: str) -> None:
        self.execution_id = execution_id
        super().__init__(f"Execution not found: {execution_id}")


__all__ = [
    "StepflowError",
    "CircularDependencyError",
    "StepModuleNotFoundError",
    "ModuleConfigurationError",
    "StepExecutionError",
    "CircuitOpenError",
    "UnsafeExpressionError",
    "PersistenceError",
    "InvalidTransitionError",
    "WorkflowNotFoundError",
    "WorkflowArchivedError",
    "ExecutionNotFoundError",
]
