import json
import logging

import pytest

from stepflow.notifier import InMemoryNotifier, LoggingNotifier
from stepflow.notifier.base import BaseNotifier
from stepflow.notifier.redis import RedisNotifier


@pytest.mark.asyncio
async def test_in_memory_history_and_subscribers():
    notifier = InMemoryNotifier()
    own = notifier.subscribe("e1")
    everything = notifier.subscribe()

    await notifier.emit("execution:started", "e1", {"workflowId": "wf", "status": "RUNNING"})
    await notifier.emit("execution:started", "e2", {"workflowId": "wf", "status": "RUNNING"})

    assert own.qsize() == 1
    assert everything.qsize() == 2
    assert notifier.names_for("e1") == ["execution:started"]
    message = notifier.messages_for("e1")[0]
    assert message["executionId"] == "e1"
    assert message["workflowId"] == "wf"
    assert "timestamp" in message

    notifier.unsubscribe(own)
    await notifier.emit("execution:completed", "e1", {"result": 1})
    assert own.qsize() == 1


class BrokenNotifier(BaseNotifier):
    async def publish(self, event):
        raise ConnectionError("broker down")


@pytest.mark.asyncio
async def test_emit_logs_instead_of_raising(caplog):
    with caplog.at_level(logging.ERROR, logger="stepflow.notifier.base"):
        await BrokenNotifier().emit("step:started", "e1", {"stepId": "a"})
    assert "Failed to publish step:started for execution_id=e1" in caplog.text


@pytest.mark.asyncio
async def test_logging_notifier(caplog):
    with caplog.at_level(logging.INFO, logger="stepflow.notifier.log"):
        await LoggingNotifier().emit("execution:progress", "e1", {"progress": 50})
    assert "execution:progress" in caplog.text
    assert '"progress": 50' in caplog.text


class FakeRedis:
    def __init__(self):
        self.published = []

    async def publish(self, channel, document):
        self.published.append((channel, document))


@pytest.mark.asyncio
async def test_redis_notifier_publishes_on_execution_channel():
    notifier = RedisNotifier(channel_prefix="test")
    notifier._redis = FakeRedis()
    await notifier.emit("step:completed", "e1", {"stepId": "a", "result": [1]})

    channel, document = notifier._redis.published[0]
    assert channel == "test:e1"
    body = json.loads(document)
    assert body["event"] == "step:completed"
    assert body["data"]["executionId"] == "e1"
    assert body["data"]["result"] == [1]
