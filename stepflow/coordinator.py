"""Execution coordinator: drives one workflow execution to a terminal state."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from .contracts import ExecutionStatus, OnError, OutputMode, StepStatus, WorkflowStep
from .errors import (
    CircularDependencyError,
    InvalidTransitionError,
    StepExecutionError,
    StepModuleNotFoundError,
)
from .execute import StepExecutor
from .graph import topological_sort
from .notifier import BaseNotifier
from .notifier.base import (
    EXECUTION_COMPLETED,
    EXECUTION_FAILED,
    EXECUTION_PROGRESS,
    EXECUTION_STARTED,
    STEP_COMPLETED,
    STEP_FAILED,
    STEP_STARTED,
)
from .persistence import ExecutionRepository, WorkflowExecution

logger = logging.getLogger(__name__)


class ExecutionCoordinator:
    """Runs the steps of one execution sequentially in dependency order.

    The coordinator returns normally whenever the execution reaches a
    terminal state, including a step failure that stops the run. Only
    infrastructure errors such as storage failures escape to the caller,
    which may invoke :meth:`run` again for the same execution:
    completed step records are then replayed from storage instead of being
    run twice.

    Pause and stop are honoured at step boundaries. A module call already in
    flight is never interrupted.
    """

    def __init__(
        self,
        repository: ExecutionRepository,
        executor: StepExecutor,
        notifier: BaseNotifier,
        pause_poll_interval: float = 0.5,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._repository = repository
        self._executor = executor
        self._notifier = notifier
        self._pause_poll_interval = pause_poll_interval
        self._sleep = sleep

    async def run(self, execution_id: str) -> Optional[WorkflowExecution]:
        execution = await self._repository.get_execution(execution_id)
        if execution is None:
            logger.error(f"Execution {execution_id} vanished before it could run")
            return None
        if execution.status.is_terminal:
            logger.info(
                f"Execution {execution_id} already {execution.status.value}, nothing to do"
            )
            return execution

        workflow = await self._repository.get_workflow_with_steps(execution.workflow_id)
        if workflow is None:
            await self._fail(execution_id, f"Workflow not found: {execution.workflow_id}")
            return await self._repository.get_execution(execution_id)

        try:
            order = topological_sort(workflow.dependency_graph())
        except CircularDependencyError as exc:
            await self._fail(execution_id, str(exc))
            return await self._repository.get_execution(execution_id)

        if execution.status == ExecutionStatus.PENDING:
            try:
                await self._repository.update_execution_status(
                    execution_id, ExecutionStatus.RUNNING
                )
            except InvalidTransitionError:
                # stopped before it started
                return await self._repository.get_execution(execution_id)
            await self._notifier.emit(
                EXECUTION_STARTED,
                execution_id,
                {"workflowId": workflow.id, "status": ExecutionStatus.RUNNING.value},
            )
            logger.info(f"Execution started for execution_id={execution_id}")

        steps = workflow.step_map()
        records = {record.step_id: record for record in execution.steps}
        current_data: Any = execution.input_data
        step_outputs: Dict[str, Any] = {}
        finished = 0
        total = len(order)

        for step_id in order:
            step = steps[step_id]
            record = records.get(step_id)

            if record is not None and record.status == StepStatus.COMPLETED:
                step_outputs[step_id] = record.output_data
                if step.output_mode == OutputMode.PASS_THROUGH:
                    current_data = record.output_data
                finished += 1
                logger.debug(f"Replaying completed step_id={step_id} for {execution_id}")
                continue
            if record is not None and record.status == StepStatus.FAILED:
                if step.on_error == OnError.CONTINUE:
                    finished += 1
                    continue
                await self._fail(execution_id, record.error_message or "Step failed")
                return await self._repository.get_execution(execution_id)

            if not await self._wait_at_boundary(execution_id):
                return await self._repository.get_execution(execution_id)

            try:
                output = await self._run_step(execution_id, step, current_data, step_outputs)
            except StepModuleNotFoundError as exc:
                await self._record_step_failure(execution_id, step, str(exc))
                await self._fail(execution_id, str(exc))
                return await self._repository.get_execution(execution_id)
            except StepExecutionError as exc:
                await self._record_step_failure(execution_id, step, str(exc))
                if step.on_error == OnError.CONTINUE:
                    logger.warning(
                        f"Continuing execution_id={execution_id} despite failure of step_id={step.id}"
                    )
                    finished += 1
                    continue
                await self._fail(execution_id, str(exc))
                return await self._repository.get_execution(execution_id)

            step_outputs[step_id] = output
            if step.output_mode == OutputMode.PASS_THROUGH:
                current_data = output
            finished += 1
            await self._notifier.emit(
                EXECUTION_PROGRESS,
                execution_id,
                {
                    "completedSteps": finished,
                    "totalSteps": total,
                    "progress": round(finished * 100 / total) if total else 100,
                    "stepId": step_id,
                },
            )

        if not await self._wait_at_boundary(execution_id):
            return await self._repository.get_execution(execution_id)
        try:
            await self._repository.update_execution_status(
                execution_id, ExecutionStatus.COMPLETED, output_data=current_data
            )
        except InvalidTransitionError as exc:
            logger.info(f"Execution {execution_id} not completed: {exc}")
            return await self._repository.get_execution(execution_id)
        await self._notifier.emit(EXECUTION_COMPLETED, execution_id, {"result": current_data})
        logger.info(f"Execution completed for execution_id={execution_id}")
        return await self._repository.get_execution(execution_id)

    async def _run_step(
        self,
        execution_id: str,
        step: WorkflowStep,
        current_data: Any,
        step_outputs: Dict[str, Any],
    ) -> Any:
        await self._repository.update_step_record(
            execution_id, step.id, StepStatus.RUNNING, step_name=step.name
        )
        await self._notifier.emit(
            STEP_STARTED, execution_id, {"stepId": step.id, "stepName": step.name}
        )
        output = await self._executor.execute(step, current_data, step_outputs)
        await self._repository.update_step_record(
            execution_id, step.id, StepStatus.COMPLETED, output=output, step_name=step.name
        )
        await self._notifier.emit(
            STEP_COMPLETED,
            execution_id,
            {"stepId": step.id, "stepName": step.name, "result": output},
        )
        logger.info(f"Step {step.id} completed for execution_id={execution_id}")
        return output

    async def _record_step_failure(
        self, execution_id: str, step: WorkflowStep, message: str
    ) -> None:
        logger.error(f"Step {step.id} failed for execution_id={execution_id}: {message}")
        await self._repository.update_step_record(
            execution_id, step.id, StepStatus.FAILED, error=message, step_name=step.name
        )
        await self._notifier.emit(
            STEP_FAILED,
            execution_id,
            {"stepId": step.id, "stepName": step.name, "error": message},
        )

    async def _fail(self, execution_id: str, message: str) -> None:
        try:
            await self._repository.update_execution_status(
                execution_id, ExecutionStatus.FAILED, error_message=message
            )
        except InvalidTransitionError as exc:
            logger.info(f"Execution {execution_id} not marked failed: {exc}")
            return
        logger.error(f"Execution failed for execution_id={execution_id}: {message}")
        await self._notifier.emit(EXECUTION_FAILED, execution_id, {"error": message})

    async def _wait_at_boundary(self, execution_id: str) -> bool:
        """Return ``True`` when the execution may run its next step.

        A paused execution parks here, polling until it is resumed or
        stopped. Any other non-running status ends the run.
        """
        parked = False
        while True:
            execution = await self._repository.get_execution(execution_id, include_steps=False)
            if execution is None:
                return False
            if execution.status == ExecutionStatus.RUNNING:
                if parked:
                    logger.info(f"Execution {execution_id} resumed")
                return True
            if execution.status != ExecutionStatus.PAUSED:
                logger.info(f"Execution {execution_id} is {execution.status.value}, ending run")
                return False
            if not parked:
                logger.info(f"Execution {execution_id} paused, waiting")
                parked = True
            await self._sleep(self._pause_poll_interval)
