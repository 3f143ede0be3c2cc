"""Circuit breaker guarding calls to unreliable dependencies.

States:
    CLOSED: calls pass through, failures are counted inside a sliding
        ``monitoring_period`` window.
    OPEN: calls fail fast with :class:`CircuitOpenError` until
        ``reset_timeout`` has elapsed.
    HALF_OPEN: a single trial call is let through. Success closes the
        circuit, failure opens it again with a fresh timeout.

Wrap retried calls as one unit so that exhausting every retry counts as a
single failure::

    await breaker.execute(lambda: retry_policy.execute(operation))
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from enum import Enum
from typing import Awaitable, Callable, Deque, Dict, Optional, Tuple, Type, TypeVar

from ..errors import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    def __init__(
        self,
        name: str = "default",
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        monitoring_period: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        expected_exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.monitoring_period = monitoring_period
        self._clock = clock
        self.expected_exceptions = expected_exceptions

        self._state = CircuitState.CLOSED
        self._failures: Deque[float] = deque()
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._current_state()

    @property
    def failure_count(self) -> int:
        with self._lock:
            self._prune(self._clock())
            return len(self._failures)

    def _current_state(self) -> CircuitState:
        if (
            self._state == CircuitState.OPEN
            and self._clock() - (self._opened_at or 0.0) >= self.reset_timeout
        ):
            self._state = CircuitState.HALF_OPEN
            logger.info(f"Circuit '{self.name}' half-open, allowing a trial call")
        return self._state

    def _prune(self, now: float) -> None:
        while self._failures and now - self._failures[0] > self.monitoring_period:
            self._failures.popleft()

    def _acquire(self) -> bool:
        """Admit a call, returning ``True`` when it is the half-open trial."""
        with self._lock:
            state = self._current_state()
            if state == CircuitState.CLOSED:
                return False
            if state == CircuitState.HALF_OPEN and not self._trial_in_flight:
                self._trial_in_flight = True
                return True
            retry_after = None
            if self._opened_at is not None:
                retry_after = max(
                    0.0, self.reset_timeout - (self._clock() - self._opened_at)
                )
            raise CircuitOpenError(self.name, retry_after)

    def _open(self, now: float) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = now
        logger.warning(
            f"Circuit '{self.name}' opened after {len(self._failures)} failures; "
            f"retrying after {self.reset_timeout}s"
        )

    def record_success(self, trial: bool = False) -> None:
        with self._lock:
            if trial:
                self._trial_in_flight = False
                logger.info(f"Circuit '{self.name}' closed after successful trial")
            if trial or self._state == CircuitState.CLOSED:
                self._state = CircuitState.CLOSED
                self._failures.clear()
                self._opened_at = None

    def record_failure(self, trial: bool = False) -> None:
        with self._lock:
            now = self._clock()
            if trial:
                self._trial_in_flight = False
                self._failures.append(now)
                self._open(now)
                return
            if self._state != CircuitState.CLOSED:
                return
            self._failures.append(now)
            self._prune(now)
            if len(self._failures) >= self.failure_threshold:
                self._open(now)

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` if the circuit admits it.

        Raises:
            CircuitOpenError: If the circuit is open, or half-open with the
                trial call already in flight. ``operation`` is not invoked.
        """
        trial = self._acquire()
        try:
            result = await operation()
        except Exception as exc:
            # errors outside expected_exceptions mean the dependency answered
            if isinstance(exc, self.expected_exceptions):
                self.record_failure(trial)
            else:
                self.record_success(trial)
            raise
        except BaseException:
            # cancelled trial: let the next caller try again
            if trial:
                with self._lock:
                    self._trial_in_flight = False
            raise
        self.record_success(trial)
        return result

    def reset(self) -> None:
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failures.clear()
            self._opened_at = None
            self._trial_in_flight = False


class CircuitBreakerRegistry:
    """Hands out one breaker per dependency name."""

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        monitoring_period: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        expected_exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    ) -> None:
        self._defaults = dict(
            failure_threshold=failure_threshold,
            reset_timeout=reset_timeout,
            monitoring_period=monitoring_period,
            clock=clock,
            expected_exceptions=expected_exceptions,
        )
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get(self, name: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                breaker = CircuitBreaker(name=name, **self._defaults)
                self._breakers[name] = breaker
            return breaker

    def states(self) -> Dict[str, CircuitState]:
        with self._lock:
            breakers = list(self._breakers.values())
        return {breaker.name: breaker.state for breaker in breakers}


__all__ = ["CircuitState", "CircuitBreaker", "CircuitBreakerRegistry"]
