"""Base notifier interface for execution events."""

from __future__ import annotations

import abc
import logging
from typing import Any, Dict, Optional

from ..contracts import ExecutionEvent

logger = logging.getLogger(__name__)

EXECUTION_STARTED = "execution:started"
EXECUTION_PROGRESS = "execution:progress"
EXECUTION_COMPLETED = "execution:completed"
EXECUTION_FAILED = "execution:failed"
EXECUTION_PAUSED = "execution:paused"
EXECUTION_RESUMED = "execution:resumed"
EXECUTION_STOPPED = "execution:stopped"
STEP_STARTED = "step:started"
STEP_COMPLETED = "step:completed"
STEP_FAILED = "step:failed"


class BaseNotifier(metaclass=abc.ABCMeta):
    """Abstract publisher of execution lifecycle events.

    Delivery is at-most-once: :meth:`emit` logs publishing errors instead of
    raising them, so a broken notifier never fails an execution.
    """

    async def connect(self) -> None:
        """Open connection to the event backend (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Close connection to the event backend (no-op by default)."""
        pass

    @abc.abstractmethod
    async def publish(self, event: ExecutionEvent) -> None:
        """Deliver one event."""
        raise NotImplementedError

    async def emit(
        self, event: str, execution_id: str, payload: Optional[Dict[str, Any]] = None
    ) -> None:
        message = ExecutionEvent(event=event, execution_id=execution_id, payload=payload or {})
        try:
            await self.publish(message)
        except Exception as exc:
            logger.error(f"Failed to publish {event} for execution_id={execution_id}: {exc}")
