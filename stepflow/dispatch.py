"""Execution queue: workers pulling execution jobs and running them."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from .contracts import ExecutionJob, ExecutionStatus
from .coordinator import ExecutionCoordinator
from .errors import InvalidTransitionError
from .jobqueue import BaseJobQueue
from .notifier import BaseNotifier
from .notifier.base import EXECUTION_FAILED
from .persistence import ExecutionRepository
from .utils.retry import compute_backoff

logger = logging.getLogger(__name__)


class ExecutionQueue:
    """Priority job queue served by a fixed pool of worker tasks.

    Each worker owns one job at a time and awaits the coordinator for it.
    A job whose coordinator run raises is re-enqueued with exponential
    backoff until ``max_attempts`` attempts have been made; the execution is
    then marked FAILED and ``execution:failed`` is emitted.
    """

    def __init__(
        self,
        job_queue: BaseJobQueue,
        coordinator: ExecutionCoordinator,
        repository: ExecutionRepository,
        notifier: BaseNotifier,
        workers: int = 5,
        max_attempts: int = 3,
        backoff_base: float = 2.0,
        backoff_max: float = 60.0,
        poll_interval: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if workers < 1:
            raise ValueError("workers must be >= 1")
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._job_queue = job_queue
        self._coordinator = coordinator
        self._repository = repository
        self._notifier = notifier
        self.workers = workers
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._poll_interval = poll_interval
        self._sleep = sleep

        self._tasks: List[asyncio.Task] = []
        self._retry_tasks: Set[asyncio.Task] = set()
        self._in_flight: Set[str] = set()
        self._outstanding: Set[str] = set()
        self._idle = asyncio.Event()
        self._idle.set()
        self._stopping = False
        self._stats = {"processed": 0, "failed": 0, "retried": 0, "duplicates": 0}

    @property
    def running(self) -> bool:
        return bool(self._tasks) and not self._stopping

    def retry_delay(self, attempt: int) -> float:
        """Delay before re-running a job whose ``attempt``-th run failed."""
        return compute_backoff(attempt - 1, self.backoff_base, 2.0, max_delay=self.backoff_max)

    async def enqueue(
        self,
        execution_id: str,
        workflow_id: str,
        input_data: Any = None,
        priority: int = 0,
    ) -> ExecutionJob:
        job = ExecutionJob(
            execution_id=execution_id,
            workflow_id=workflow_id,
            input_data=input_data,
            priority=priority,
        )
        self._outstanding.add(execution_id)
        self._idle.clear()
        await self._job_queue.put(job)
        logger.info(f"Execution queued: execution_id={execution_id} priority={priority}")
        return job

    async def start(self) -> None:
        if self._tasks:
            return
        self._stopping = False
        await self._job_queue.connect()
        self._tasks = [
            asyncio.create_task(self._worker_loop(i), name=f"stepflow-worker-{i}")
            for i in range(self.workers)
        ]
        logger.info(f"Execution queue started with {self.workers} workers")

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """Stop taking jobs and wait up to ``timeout`` for running ones."""
        self._stopping = True
        for task in list(self._retry_tasks):
            task.cancel()
        if self._tasks:
            _, pending = await asyncio.wait(self._tasks, timeout=timeout)
            for task in pending:
                task.cancel()
            await asyncio.gather(*self._tasks, *self._retry_tasks, return_exceptions=True)
        self._tasks = []
        self._retry_tasks.clear()
        self._outstanding.clear()
        self._idle.set()
        await self._job_queue.disconnect()
        logger.info("Execution queue stopped")

    async def join(self) -> None:
        """Wait until every job enqueued through this queue has finished."""
        await self._idle.wait()

    def stats(self) -> Dict[str, int]:
        return {
            **self._stats,
            "in_flight": len(self._in_flight),
            "workers": len(self._tasks),
        }

    # ------------------------------------------------------------------
    async def _worker_loop(self, worker_id: int) -> None:
        while not self._stopping:
            try:
                job = await self._job_queue.get(timeout=self._poll_interval)
            except Exception as exc:
                logger.error(f"Worker {worker_id} could not take a job: {exc}")
                await self._sleep(self._poll_interval)
                continue
            if job is None:
                continue
            if job.execution_id in self._in_flight:
                logger.warning(
                    f"Worker {worker_id} dropping duplicate job for execution_id={job.execution_id}"
                )
                self._stats["duplicates"] += 1
                await self._job_queue.ack(job)
                continue
            self._in_flight.add(job.execution_id)
            try:
                await self._process(job)
            finally:
                self._in_flight.discard(job.execution_id)
                await self._job_queue.ack(job)

    async def _process(self, job: ExecutionJob) -> None:
        logger.debug(f"Running execution_id={job.execution_id} attempt={job.attempt}")
        try:
            await self._coordinator.run(job.execution_id)
        except Exception as exc:
            if job.attempt < self.max_attempts:
                delay = self.retry_delay(job.attempt)
                logger.warning(
                    f"Execution {job.execution_id} attempt {job.attempt}/{self.max_attempts} "
                    f"failed: {exc}. Retrying in {delay:.2f}s"
                )
                self._stats["retried"] += 1
                task = asyncio.create_task(self._requeue(job.next_attempt(), delay))
                self._retry_tasks.add(task)
                task.add_done_callback(self._retry_tasks.discard)
                return
            self._stats["failed"] += 1
            logger.error(
                f"Execution {job.execution_id} failed after {job.attempt} attempts: {exc}"
            )
            await self._fail_execution(job, exc)
        else:
            self._stats["processed"] += 1
        self._finish(job.execution_id)

    async def _requeue(self, job: ExecutionJob, delay: float) -> None:
        await self._sleep(delay)
        await self._job_queue.put(job)

    async def _fail_execution(self, job: ExecutionJob, exc: Exception) -> None:
        message = str(exc) or exc.__class__.__name__
        try:
            await self._repository.update_execution_status(
                job.execution_id, ExecutionStatus.FAILED, error_message=message
            )
        except InvalidTransitionError as err:
            logger.info(f"Execution {job.execution_id} not marked failed: {err}")
            return
        except Exception as err:
            logger.error(f"Could not record failure of execution {job.execution_id}: {err}")
            return
        await self._notifier.emit(EXECUTION_FAILED, job.execution_id, {"error": message})

    def _finish(self, execution_id: str) -> None:
        self._outstanding.discard(execution_id)
        if not self._outstanding:
            self._idle.set()
