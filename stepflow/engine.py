"""Engine facade: the control surface an API layer talks to."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from .config import StepflowConfig, load_config
from .contracts import ExecutionStatus, WorkflowDefinition, WorkflowStatus
from .coordinator import ExecutionCoordinator
from .dispatch import ExecutionQueue
from .errors import ExecutionNotFoundError, WorkflowArchivedError, WorkflowNotFoundError
from .execute import StepExecutor
from .jobqueue import BaseJobQueue, InMemoryJobQueue, get_job_queue
from .notifier import BaseNotifier, InMemoryNotifier, get_notifier
from .notifier.base import EXECUTION_PAUSED, EXECUTION_RESUMED, EXECUTION_STOPPED
from .persistence import (
    ExecutionRepository,
    InMemoryExecutionRepository,
    WorkflowExecution,
    get_repository,
)
from .registry import ModuleRegistry, StepModule, create_default_registry

logger = logging.getLogger(__name__)


class WorkflowEngine:
    """Wire the registry, repository, notifier and queue together.

    Typical use::

        engine = WorkflowEngine.from_config()
        await engine.start()
        execution_id = await engine.create_execution(workflow_id, {"rows": []})
        ...
        await engine.shutdown()
    """

    def __init__(
        self,
        repository: Optional[ExecutionRepository] = None,
        registry: Optional[ModuleRegistry] = None,
        notifier: Optional[BaseNotifier] = None,
        job_queue: Optional[BaseJobQueue] = None,
        settings: Optional[StepflowConfig] = None,
    ) -> None:
        self.settings = settings or StepflowConfig()
        self.repository = repository or InMemoryExecutionRepository()
        self.registry = registry or create_default_registry(self.settings)
        self.notifier = notifier or InMemoryNotifier()
        self.executor = StepExecutor(self.registry)
        self.coordinator = ExecutionCoordinator(
            self.repository,
            self.executor,
            self.notifier,
            pause_poll_interval=self.settings.pause_poll_interval,
        )
        queue_conf = self.settings.queue
        self.queue = ExecutionQueue(
            job_queue or InMemoryJobQueue(),
            self.coordinator,
            self.repository,
            self.notifier,
            workers=queue_conf.workers,
            max_attempts=queue_conf.max_attempts,
            backoff_base=queue_conf.backoff_base,
            backoff_max=queue_conf.backoff_max,
            poll_interval=queue_conf.poll_interval,
        )

    @classmethod
    def from_config(
        cls, settings: Optional[StepflowConfig] = None, **overrides: Any
    ) -> "WorkflowEngine":
        """Build an engine whose backends are selected by configuration.

        Keyword ``overrides`` (``repository``, ``registry``, ``notifier``,
        ``job_queue``) replace the configured components.
        """
        settings = settings or load_config()
        components = {
            "repository": overrides.pop("repository", None)
            or get_repository(config=settings),
            "registry": overrides.pop("registry", None) or create_default_registry(settings),
            "notifier": overrides.pop("notifier", None) or get_notifier(config=settings),
            "job_queue": overrides.pop("job_queue", None) or get_job_queue(config=settings),
        }
        if overrides:
            raise TypeError(f"Unknown engine components: {', '.join(sorted(overrides))}")
        return cls(settings=settings, **components)

    # ------------------------------------------------------------------
    async def start(self) -> None:
        await self.notifier.connect()
        await self.queue.start()

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        await self.queue.shutdown(timeout)
        await self.notifier.disconnect()

    async def __aenter__(self) -> "WorkflowEngine":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.shutdown()

    def register_module(
        self, name: str, module: StepModule, description: Optional[str] = None
    ) -> None:
        self.registry.register(name, module, description)

    async def save_workflow(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        await self.repository.save_workflow(definition)
        return definition

    # ------------------------------------------------------------------
    async def create_execution(self, workflow_id: str, input_data: Any = None) -> str:
        """Create a PENDING execution and queue it at the workflow's priority."""
        workflow = await self.repository.get_workflow_with_steps(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        if workflow.status == WorkflowStatus.ARCHIVED:
            raise WorkflowArchivedError(workflow_id)
        execution_id = await self.repository.create_execution(workflow_id, input_data)
        await self.queue.enqueue(execution_id, workflow_id, input_data, workflow.priority)
        logger.info(f"Workflow execution queued: {execution_id}")
        return execution_id

    async def pause_execution(self, execution_id: str) -> WorkflowExecution:
        return await self._control(execution_id, ExecutionStatus.PAUSED, EXECUTION_PAUSED)

    async def resume_execution(self, execution_id: str) -> WorkflowExecution:
        return await self._control(execution_id, ExecutionStatus.RUNNING, EXECUTION_RESUMED)

    async def stop_execution(self, execution_id: str) -> WorkflowExecution:
        return await self._control(execution_id, ExecutionStatus.STOPPED, EXECUTION_STOPPED)

    async def _control(
        self, execution_id: str, status: ExecutionStatus, event: str
    ) -> WorkflowExecution:
        if await self.repository.get_execution(execution_id, include_steps=False) is None:
            raise ExecutionNotFoundError(execution_id)
        execution = await self.repository.update_execution_status(execution_id, status)
        await self.notifier.emit(event, execution_id, {"status": status.value})
        logger.info(f"Execution {execution_id} -> {status.value}")
        return execution

    async def get_execution_status(self, execution_id: str) -> WorkflowExecution:
        execution = await self.repository.get_execution(execution_id, include_steps=True)
        if execution is None:
            raise ExecutionNotFoundError(execution_id)
        return execution

    async def list_executions(
        self, workflow_id: Optional[str] = None, status: Optional[ExecutionStatus] = None
    ) -> list[WorkflowExecution]:
        return await self.repository.list_executions(workflow_id=workflow_id, status=status)

    async def wait_for_completion(
        self,
        execution_id: str,
        poll_interval: float = 0.05,
        timeout: Optional[float] = None,
    ) -> WorkflowExecution:
        """Poll until the execution is terminal, then return it with its steps."""

        async def _poll() -> WorkflowExecution:
            while True:
                execution = await self.get_execution_status(execution_id)
                if execution.status.is_terminal:
                    return execution
                await asyncio.sleep(poll_interval)

        return await asyncio.wait_for(_poll(), timeout)
