"""``delay`` module: wait, then pass the input through unchanged."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict

from ..errors import ModuleConfigurationError


class DelayModule:
    def __init__(self, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep) -> None:
        self._sleep = sleep

    async def __call__(self, configuration: Dict[str, Any], input_data: Any) -> Any:
        if "milliseconds" in configuration:
            seconds = float(configuration["milliseconds"]) / 1000
        else:
            seconds = float(configuration.get("seconds", 0))
        if seconds < 0:
            raise ModuleConfigurationError("delay must not be negative")
        await self._sleep(seconds)
        return input_data
