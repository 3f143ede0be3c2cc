"""In-memory notifier for tests and single-process runs."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Any, Dict, List, Optional

from ..contracts import ExecutionEvent
from .base import BaseNotifier


class InMemoryNotifier(BaseNotifier):
    """Keep an event history and fan events out to subscriber queues."""

    def __init__(self) -> None:
        self.history: List[ExecutionEvent] = []
        self._subscribers: Dict[Optional[str], List[asyncio.Queue]] = defaultdict(list)

    async def publish(self, event: ExecutionEvent) -> None:
        self.history.append(event)
        for key in (event.execution_id, None):
            for queue in self._subscribers.get(key, []):
                queue.put_nowait(event)

    def subscribe(self, execution_id: Optional[str] = None) -> "asyncio.Queue[ExecutionEvent]":
        """Return a queue receiving events for ``execution_id`` (all when None)."""
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers[execution_id].append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        for queues in self._subscribers.values():
            if queue in queues:
                queues.remove(queue)

    def events_for(self, execution_id: str) -> List[ExecutionEvent]:
        return [e for e in self.history if e.execution_id == execution_id]

    def names_for(self, execution_id: str) -> List[str]:
        return [e.event for e in self.events_for(execution_id)]

    def messages_for(self, execution_id: str) -> List[Dict[str, Any]]:
        return [e.to_message() for e in self.events_for(execution_id)]
