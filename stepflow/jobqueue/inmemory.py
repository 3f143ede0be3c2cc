"""In-process job queue."""

from __future__ import annotations

import asyncio
import heapq
import itertools
from typing import List, Optional, Tuple

from ..contracts import ExecutionJob
from .base import BaseJobQueue


class InMemoryJobQueue(BaseJobQueue):
    """Heap-backed priority queue for single-process deployments and tests."""

    def __init__(self) -> None:
        self._heap: List[Tuple[int, int, ExecutionJob]] = []
        self._counter = itertools.count()
        self._condition: Optional[asyncio.Condition] = None

    @property
    def _cond(self) -> asyncio.Condition:
        # created lazily so the queue can be built outside a running loop
        if self._condition is None:
            self._condition = asyncio.Condition()
        return self._condition

    async def put(self, job: ExecutionJob) -> None:
        async with self._cond:
            heapq.heappush(self._heap, (-job.priority, next(self._counter), job))
            self._cond.notify()

    async def get(self, timeout: Optional[float] = None) -> Optional[ExecutionJob]:
        async with self._cond:
            try:
                await asyncio.wait_for(
                    self._cond.wait_for(lambda: bool(self._heap)), timeout
                )
            except asyncio.TimeoutError:
                return None
            return heapq.heappop(self._heap)[2]

    async def size(self) -> int:
        return len(self._heap)
