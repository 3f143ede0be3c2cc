import asyncio

import pytest

from stepflow.contracts import ExecutionJob
from stepflow.jobqueue import InMemoryJobQueue
from stepflow.jobqueue.redis import RedisJobQueue


def _job(execution_id, priority=0):
    return ExecutionJob(execution_id=execution_id, workflow_id="wf", priority=priority)


@pytest.mark.asyncio
async def test_higher_priority_first_then_fifo():
    queue = InMemoryJobQueue()
    for execution_id, priority in [("a", 0), ("b", 5), ("c", 0), ("d", 5), ("e", -1)]:
        await queue.put(_job(execution_id, priority))
    assert await queue.size() == 5

    order = [(await queue.get()).execution_id for _ in range(5)]
    assert order == ["b", "d", "a", "c", "e"]


@pytest.mark.asyncio
async def test_get_times_out_with_none():
    queue = InMemoryJobQueue()
    assert await queue.get(timeout=0.01) is None


@pytest.mark.asyncio
async def test_waiting_getter_is_woken_by_put():
    queue = InMemoryJobQueue()
    getter = asyncio.create_task(queue.get(timeout=1.0))
    await asyncio.sleep(0)
    await queue.put(_job("late"))
    job = await getter
    assert job.execution_id == "late"


class FakeRedis:
    def __init__(self):
        self.sorted = {}
        self.counter = 0

    async def incr(self, key):
        self.counter += 1
        return self.counter

    async def zadd(self, name, mapping):
        self.sorted.update(mapping)

    async def bzpopmin(self, name, timeout=0):
        if not self.sorted:
            return None
        member = min(self.sorted, key=self.sorted.get)
        score = self.sorted.pop(member)
        return name, member, score

    async def zcard(self, name):
        return len(self.sorted)


@pytest.mark.asyncio
async def test_redis_queue_scores_by_priority_and_sequence():
    queue = RedisJobQueue(queue_name="test:jobs")
    queue._redis = FakeRedis()
    await queue.put(_job("low"))
    await queue.put(_job("high", priority=2))
    await queue.put(_job("low-2"))

    assert await queue.size() == 3
    order = [(await queue.get(timeout=0.1)).execution_id for _ in range(3)]
    assert order == ["high", "low", "low-2"]
    assert await queue.get(timeout=0.1) is None


@pytest.mark.asyncio
async def test_redis_queue_drops_malformed_members():
    queue = RedisJobQueue()
    queue._redis = FakeRedis()
    queue._redis.sorted["not json"] = 1
    assert await queue.get(timeout=0.1) is None
