"""Base job queue interface for the execution queue."""

from __future__ import annotations

import abc
from typing import Optional

from ..contracts import ExecutionJob


class BaseJobQueue(metaclass=abc.ABCMeta):
    """Priority queue of execution jobs.

    Higher ``priority`` is served first; jobs of equal priority are served in
    insertion order.
    """

    async def connect(self) -> None:
        """Open connection to broker (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Close connection to broker (no-op by default)."""
        pass

    @abc.abstractmethod
    async def put(self, job: ExecutionJob) -> None:
        """Enqueue a job."""
        raise NotImplementedError

    @abc.abstractmethod
    async def get(self, timeout: Optional[float] = None) -> Optional[ExecutionJob]:
        """Take the next job, waiting up to ``timeout`` seconds.

        Returns ``None`` when the timeout expires with the queue empty.
        """
        raise NotImplementedError

    async def ack(self, job: ExecutionJob) -> None:
        """Acknowledge a processed job (no-op when taking a job consumes it)."""
        pass

    @abc.abstractmethod
    async def size(self) -> int:
        """Number of jobs waiting."""
        raise NotImplementedError
