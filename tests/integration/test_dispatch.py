"""Execution queue behaviour with stand-in coordinators."""

import asyncio

import pytest

from stepflow.contracts import ExecutionStatus
from stepflow.dispatch import ExecutionQueue
from stepflow.jobqueue import InMemoryJobQueue
from stepflow.notifier import InMemoryNotifier
from stepflow.persistence import InMemoryExecutionRepository


class RecordingCoordinator:
    def __init__(self, failures=0, gate=None):
        self.order = []
        self.failures = failures
        self.gate = gate
        self.active = 0
        self.max_active = 0

    async def run(self, execution_id):
        self.order.append(execution_id)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.failures:
                self.failures -= 1
                raise ConnectionError("database unavailable")
        finally:
            self.active -= 1


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)
        await asyncio.sleep(0)


def make_queue(coordinator, repo=None, notifier=None, **kwargs):
    kwargs.setdefault("poll_interval", 0.02)
    return ExecutionQueue(
        InMemoryJobQueue(),
        coordinator,
        repo or InMemoryExecutionRepository(),
        notifier or InMemoryNotifier(),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_higher_priority_jobs_run_first():
    coordinator = RecordingCoordinator()
    queue = make_queue(coordinator, workers=1)
    await queue.enqueue("low", "wf", priority=0)
    await queue.enqueue("high", "wf", priority=10)
    await queue.enqueue("mid", "wf", priority=5)
    await queue.enqueue("low-2", "wf", priority=0)

    await queue.start()
    await asyncio.wait_for(queue.join(), 5)
    await queue.shutdown()

    assert coordinator.order == ["high", "mid", "low", "low-2"]
    assert queue.stats()["processed"] == 4


@pytest.mark.asyncio
async def test_workers_run_jobs_concurrently():
    gate = asyncio.Event()
    coordinator = RecordingCoordinator(gate=gate)
    queue = make_queue(coordinator, workers=3)
    await queue.start()
    for i in range(3):
        await queue.enqueue(f"e{i}", "wf")

    for _ in range(50):
        if coordinator.active == 3:
            break
        await asyncio.sleep(0.01)
    assert queue.stats()["in_flight"] == 3
    gate.set()
    await asyncio.wait_for(queue.join(), 5)
    await queue.shutdown()
    assert coordinator.max_active == 3


@pytest.mark.asyncio
async def test_failed_job_is_retried_with_backoff():
    sleep = SleepRecorder()
    coordinator = RecordingCoordinator(failures=2)
    queue = make_queue(coordinator, workers=1, max_attempts=3, backoff_base=2.0, sleep=sleep)
    await queue.start()
    await queue.enqueue("e1", "wf")
    await asyncio.wait_for(queue.join(), 5)
    await queue.shutdown()

    assert coordinator.order == ["e1", "e1", "e1"]
    assert sleep.delays == [2.0, 4.0]
    stats = queue.stats()
    assert (stats["retried"], stats["processed"], stats["failed"]) == (2, 1, 0)


@pytest.mark.asyncio
async def test_exhausted_retries_fail_the_execution():
    repo = InMemoryExecutionRepository()
    notifier = InMemoryNotifier()
    execution_id = await repo.create_execution("wf")
    coordinator = RecordingCoordinator(failures=10)
    queue = make_queue(
        coordinator, repo, notifier, workers=1, max_attempts=2, sleep=SleepRecorder()
    )
    await queue.start()
    await queue.enqueue(execution_id, "wf")
    await asyncio.wait_for(queue.join(), 5)
    await queue.shutdown()

    assert len(coordinator.order) == 2
    execution = await repo.get_execution(execution_id)
    assert execution.status == ExecutionStatus.FAILED
    assert execution.error_message == "database unavailable"
    assert notifier.names_for(execution_id) == ["execution:failed"]
    assert queue.stats()["failed"] == 1


@pytest.mark.asyncio
async def test_exhausted_retries_leave_terminal_execution_untouched():
    repo = InMemoryExecutionRepository()
    notifier = InMemoryNotifier()
    execution_id = await repo.create_execution("wf")
    await repo.update_execution_status(execution_id, ExecutionStatus.STOPPED)
    queue = make_queue(
        RecordingCoordinator(failures=1), repo, notifier, workers=1, max_attempts=1
    )
    await queue.start()
    await queue.enqueue(execution_id, "wf")
    await asyncio.wait_for(queue.join(), 5)
    await queue.shutdown()

    assert (await repo.get_execution(execution_id)).status == ExecutionStatus.STOPPED
    assert notifier.names_for(execution_id) == []


class BrokenStatusRepository(InMemoryExecutionRepository):
    async def update_execution_status(self, execution_id, status, **fields):
        raise ConnectionError("status write lost")


@pytest.mark.asyncio
async def test_failure_event_needs_a_recorded_status():
    repo = BrokenStatusRepository()
    notifier = InMemoryNotifier()
    execution_id = await repo.create_execution("wf")
    queue = make_queue(
        RecordingCoordinator(failures=1), repo, notifier, workers=1, max_attempts=1
    )
    await queue.start()
    await queue.enqueue(execution_id, "wf")
    await asyncio.wait_for(queue.join(), 5)
    await queue.shutdown()

    assert notifier.names_for(execution_id) == []
    assert queue.stats()["failed"] == 1


@pytest.mark.asyncio
async def test_duplicate_job_for_running_execution_is_dropped():
    gate = asyncio.Event()
    coordinator = RecordingCoordinator(gate=gate)
    queue = make_queue(coordinator, workers=2)
    await queue.start()
    await queue.enqueue("e1", "wf")
    while coordinator.active == 0:
        await asyncio.sleep(0.01)
    await queue.enqueue("e1", "wf")
    for _ in range(50):
        if queue.stats()["duplicates"]:
            break
        await asyncio.sleep(0.01)
    gate.set()
    await asyncio.wait_for(queue.join(), 5)
    await queue.shutdown()

    assert coordinator.order == ["e1"]
    assert queue.stats()["duplicates"] == 1


@pytest.mark.asyncio
async def test_shutdown_stops_workers():
    queue = make_queue(RecordingCoordinator(), workers=2)
    await queue.start()
    assert queue.running
    await queue.shutdown()
    assert not queue.running
    assert queue.stats()["workers"] == 0


@pytest.mark.asyncio
async def test_shutdown_releases_join_for_pending_retry():
    async def never_wakes(delay):
        await asyncio.Event().wait()

    queue = make_queue(
        RecordingCoordinator(failures=1), workers=1, max_attempts=3, sleep=never_wakes
    )
    await queue.start()
    await queue.enqueue("e1", "wf")
    for _ in range(50):
        if queue.stats()["retried"]:
            break
        await asyncio.sleep(0.01)
    assert queue.stats()["retried"] == 1

    await queue.shutdown()
    await asyncio.wait_for(queue.join(), 1)


def test_retry_delay_is_capped():
    queue = make_queue(RecordingCoordinator(), backoff_base=2.0, backoff_max=5.0)
    assert [queue.retry_delay(n) for n in (1, 2, 3, 4)] == [2.0, 4.0, 5.0, 5.0]
