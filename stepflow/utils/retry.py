from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from ..errors import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


def compute_backoff(
    attempt: int,
    base_delay: float = 1.0,
    factor: float = 2.0,
    max_delay: Optional[float] = None,
    jitter: float = 0.0,
) -> float:
    """Compute exponential backoff ``base_delay * factor**attempt`` with optional cap and jitter."""
    delay = base_delay * factor**attempt
    if max_delay is not None:
        delay = min(delay, max_delay)
    if jitter:
        delay += random.uniform(0, jitter)
    return delay


class RetryPolicy:
    """Bounded retry with exponential backoff around a single async operation.

    ``max_retries`` counts retries, so an operation that always fails is
    attempted ``max_retries + 1`` times. The last error is re-raised as-is.
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        backoff_factor: float = 2.0,
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor
        self.retry_on = retry_on
        self._sleep = sleep

    def delay_for(self, attempt: int) -> float:
        return compute_backoff(
            attempt, self.base_delay, self.backoff_factor, max_delay=self.max_delay
        )

    def _should_retry(self, exc: BaseException) -> bool:
        if isinstance(exc, CircuitOpenError):
            return False
        return isinstance(exc, self.retry_on)

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` until it succeeds or retries are exhausted."""
        attempt = 0
        while True:
            try:
                return await operation()
            except Exception as exc:
                if attempt >= self.max_retries or not self._should_retry(exc):
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    f"Attempt {attempt + 1}/{self.max_retries + 1} failed: {exc}. "
                    f"Retrying in {delay:.2f}s"
                )
                await self._sleep(delay)
                attempt += 1
