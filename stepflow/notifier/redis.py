"""Redis pub/sub notifier for cross-process event delivery."""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

try:
    import redis.asyncio as redis
except ImportError:
    redis = None

from ..contracts import ExecutionEvent
from .base import BaseNotifier

logger = logging.getLogger(__name__)


class RedisNotifier(BaseNotifier):
    """Publish each event on channel ``<prefix>:<execution_id>``.

    The published document is ``{"event": name, "data": message}`` where
    ``message`` is the flattened ``{executionId, ...payload, timestamp}``.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        channel_prefix: str = "stepflow:execution",
    ) -> None:
        if redis is None:
            raise ImportError("redis package is required for RedisNotifier")

        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self.channel_prefix = channel_prefix
        self._redis: Optional[Any] = None

    async def connect(self) -> None:
        self._redis = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        await self._redis.ping()

    async def disconnect(self) -> None:
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    def channel(self, execution_id: str) -> str:
        return f"{self.channel_prefix}:{execution_id}"

    async def publish(self, event: ExecutionEvent) -> None:
        if not self._redis:
            await self.connect()
        document = json.dumps({"event": event.event, "data": event.to_message()}, default=str)
        await self._redis.publish(self.channel(event.execution_id), document)
