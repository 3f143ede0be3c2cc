"""Notifier that writes events to the application log."""

from __future__ import annotations

import json
import logging

from ..contracts import ExecutionEvent
from .base import BaseNotifier

logger = logging.getLogger(__name__)


class LoggingNotifier(BaseNotifier):
    def __init__(self, level: int = logging.INFO) -> None:
        self.level = level

    async def publish(self, event: ExecutionEvent) -> None:
        logger.log(self.level, f"{event.event} {json.dumps(event.to_message(), default=str)}")
