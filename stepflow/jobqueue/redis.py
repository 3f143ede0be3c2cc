"""Redis job queue for cross-process workers."""

from __future__ import annotations

import logging
from typing import Any, Optional

try:
    import redis.asyncio as redis
except ImportError:
    redis = None

from ..contracts import ExecutionJob
from .base import BaseJobQueue

logger = logging.getLogger(__name__)

# keeps FIFO order within one priority level
_PRIORITY_STRIDE = 10**12


class RedisJobQueue(BaseJobQueue):
    """Sorted-set backed queue; the lowest score is popped first.

    A job's score is ``-priority * stride + sequence`` where the sequence
    comes from an ``INCR`` counter, so higher priorities sort first and
    equal priorities keep insertion order.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        queue_name: str = "stepflow:jobs",
    ) -> None:
        if redis is None:
            raise ImportError("redis package is required for RedisJobQueue")

        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self.queue_name = queue_name
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

    async def put(self, job: ExecutionJob) -> None:
        if not self._redis:
            await self.connect()
        sequence = await self._redis.incr(f"{self.queue_name}:seq")
        score = -job.priority * _PRIORITY_STRIDE + sequence
        await self._redis.zadd(self.queue_name, {job.to_json(): score})

    async def get(self, timeout: Optional[float] = None) -> Optional[ExecutionJob]:
        if not self._redis:
            await self.connect()
        # BZPOPMIN treats 0 as "block forever"
        result = await self._redis.bzpopmin(self.queue_name, timeout=timeout or 0)
        if not result:
            return None
        _, member, _ = result
        try:
            return ExecutionJob.from_json(member)
        except ValueError as exc:
            logger.error(f"Dropping malformed job from {self.queue_name}: {exc}")
            return None

    async def size(self) -> int:
        if not self._redis:
            await self.connect()
        return await self._redis.zcard(self.queue_name)
