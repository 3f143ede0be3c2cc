"""Step execution for stepflow workflows."""

from __future__ import annotations

import inspect
import logging
from typing import Any, Dict, Mapping

from .contracts import WorkflowStep
from .errors import StepExecutionError
from .registry import ModuleRegistry

logger = logging.getLogger(__name__)


def resolve_input(
    step: WorkflowStep, current_data: Any, step_outputs: Mapping[str, Any]
) -> Any:
    """Build the input handed to ``step``'s module.

    A step with dependencies receives a map from each dependency's slot
    (``output_key`` or ``"data"``) to that dependency's output; dependencies
    without a recorded output are left out. A step without dependencies
    receives the running ``current_data``.
    """
    if not step.dependencies:
        return current_data
    resolved: Dict[str, Any] = {}
    for dep in step.dependencies:
        if dep.depends_on_step_id in step_outputs:
            resolved[dep.slot] = step_outputs[dep.depends_on_step_id]
    return resolved


class StepExecutor:
    """Runs a single step through the module registered for its type."""

    def __init__(self, registry: ModuleRegistry) -> None:
        self._registry = registry

    async def execute(
        self, step: WorkflowStep, current_data: Any, step_outputs: Mapping[str, Any]
    ) -> Any:
        """Invoke ``step`` and return its output.

        Raises:
            StepModuleNotFoundError: No module is registered for ``step.type``.
            StepExecutionError: The module raised; the original exception is
                chained and its message preserved.
        """
        module = self._registry.get(step.type)
        resolved = resolve_input(step, current_data, step_outputs)
        return await self.invoke(step, module, resolved)

    async def invoke(self, step: WorkflowStep, module: Any, resolved: Any) -> Any:
        logger.debug(f"Invoking module {step.type} for step_id={step.id}")
        try:
            result = module(step.configuration, resolved)
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:
            raise StepExecutionError(step.id, exc) from exc
        return result
