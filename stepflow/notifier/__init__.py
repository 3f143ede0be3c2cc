"""Notifier factory and initialization."""

from __future__ import annotations

from typing import Optional

from ..config import StepflowConfig, load_config
from .base import BaseNotifier
from .inmemory import InMemoryNotifier
from .log import LoggingNotifier


def get_notifier(
    backend: Optional[str] = None, config: Optional[StepflowConfig] = None
) -> BaseNotifier:
    """Factory function to get the configured notifier."""

    config = config or load_config()
    backend = (backend or config.notifier.backend).lower()

    if backend == "inmemory":
        return InMemoryNotifier()
    elif backend == "logging":
        return LoggingNotifier()
    elif backend == "redis":
        from .redis import RedisNotifier

        redis_conf = config.notifier.redis
        return RedisNotifier(
            host=redis_conf.host,
            port=redis_conf.port,
            db=redis_conf.db,
            password=redis_conf.password,
            channel_prefix=config.notifier.channel_prefix,
        )
    else:
        raise ValueError(f"Unsupported notifier backend: {backend}")


__all__ = ["BaseNotifier", "InMemoryNotifier", "LoggingNotifier", "get_notifier"]
