"""stepflow: workflow execution engine with pluggable step modules."""

from .config import StepflowConfig, load_config
from .contracts import (
    ExecutionStatus,
    StepStatus,
    WorkflowDefinition,
    WorkflowStep,
    WorkflowStepDependency,
)
from .coordinator import ExecutionCoordinator
from .dispatch import ExecutionQueue
from .engine import WorkflowEngine
from .execute import StepExecutor
from .graph import topological_sort
from .jobqueue import get_job_queue
from .notifier import get_notifier
from .persistence import get_repository
from .registry import ModuleRegistry, create_default_registry

__version__ = "0.1.0"
__all__ = [
    "ExecutionCoordinator",
    "ExecutionQueue",
    "ExecutionStatus",
    "ModuleRegistry",
    "StepExecutor",
    "StepStatus",
    "StepflowConfig",
    "WorkflowDefinition",
    "WorkflowEngine",
    "WorkflowStep",
    "WorkflowStepDependency",
    "create_default_registry",
    "get_job_queue",
    "get_notifier",
    "get_repository",
    "load_config",
    "topological_sort",
]
