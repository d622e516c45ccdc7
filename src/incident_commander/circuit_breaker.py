"""
Circuit breaker guarding calls to the planning collaborator.

A planner that keeps timing out or returning errors is skipped for a
recovery window, so incidents go straight to the rule-based fallback.
After the window one trial call at a time is let through (HALF_OPEN);
concurrent callers are refused until it finishes. Enough successful
trials close the circuit again, any failure re-opens it.
"""

import asyncio
import functools
import logging
import time
from dataclasses import dataclass
from enum import Enum
from threading import Lock
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from .exceptions import PlannerUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar('T')


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerError(PlannerUnavailableError):
    """Raised when the circuit is open and the call was not attempted."""
    pass


@dataclass(frozen=True)
class BreakerSettings:
    """
    Thresholds for one breaker.

    Attributes:
        failure_threshold: Consecutive failures that open the circuit
        success_threshold: Trial successes needed to close it again
        recovery_seconds: Time the circuit stays open before a trial call
        expected_exceptions: Exception types that count as failures
    """
    failure_threshold: int = 3
    success_threshold: int = 1
    recovery_seconds: float = 60.0
    expected_exceptions: tuple = (Exception,)


class CircuitBreaker:
    """
    Async circuit breaker.

    Usage:
        breaker = CircuitBreaker(failure_threshold=3, timeout=30, name="planner")
        plan = await breaker.call(planner.propose, alarm)
    """

    def __init__(
        self,
        failure_threshold: int = 3,
        success_threshold: int = 1,
        timeout: float = 60.0,
        expected_exceptions: tuple = (Exception,),
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
    ):
        if failure_threshold <= 0:
            raise ValueError("failure_threshold must be positive")
        if success_threshold <= 0:
            raise ValueError("success_threshold must be positive")
        self.settings = BreakerSettings(
            failure_threshold=failure_threshold,
            success_threshold=success_threshold,
            recovery_seconds=timeout,
            expected_exceptions=expected_exceptions,
        )
        self.name = name
        self._clock = clock
        self._lock = Lock()
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._trial_successes = 0
        self._last_failure_at: Optional[float] = None
        self._retry_at: Optional[float] = None
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    @property
    def failure_count(self) -> int:
        with self._lock:
            return self._consecutive_failures

    def _move_to(self, state: CircuitState, reason: str) -> None:
        # Caller holds the lock.
        previous, self._state = self._state, state
        self._trial_successes = 0
        self._trial_in_flight = False
        self._retry_at = (
            self._clock() + self.settings.recovery_seconds if state == CircuitState.OPEN else None
        )
        log = logger.warning if state == CircuitState.OPEN else logger.info
        log(f"Planner breaker '{self.name}': {previous.name} -> {state.name} ({reason})")

    def _admit(self) -> bool:
        """Let a call through or raise; True if the call is the HALF_OPEN trial."""
        with self._lock:
            if self._state == CircuitState.CLOSED:
                return False
            if self._state == CircuitState.HALF_OPEN:
                if self._trial_in_flight:
                    raise CircuitBreakerError(
                        f"Circuit breaker '{self.name}' is HALF_OPEN; trial call in progress"
                    )
                self._trial_in_flight = True
                return True
            if self._clock() >= self._retry_at:
                self._move_to(CircuitState.HALF_OPEN, "recovery window elapsed")
                self._trial_in_flight = True
                return True
            remaining = self._retry_at - self._clock()
            raise CircuitBreakerError(
                f"Circuit breaker '{self.name}' is OPEN; "
                f"next trial in {remaining:.1f}s"
            )

    def _on_success(self, trial: bool) -> None:
        with self._lock:
            self._consecutive_failures = 0
            if not trial or self._state != CircuitState.HALF_OPEN:
                return
            self._trial_successes += 1
            self._trial_in_flight = False
            if self._trial_successes >= self.settings.success_threshold:
                self._move_to(CircuitState.CLOSED, "trial calls succeeded")

    def _release_trial(self, trial: bool) -> None:
        if not trial:
            return
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._trial_in_flight = False

    def _on_failure(self, error: BaseException) -> None:
        with self._lock:
            self._consecutive_failures += 1
            self._last_failure_at = self._clock()
            if self._state == CircuitState.HALF_OPEN:
                self._move_to(CircuitState.OPEN, f"trial call failed: {type(error).__name__}")
            elif (
                self._state == CircuitState.CLOSED
                and self._consecutive_failures >= self.settings.failure_threshold
            ):
                self._move_to(
                    CircuitState.OPEN,
                    f"{self._consecutive_failures} consecutive failures",
                )

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """
        Await ``func(*args, **kwargs)`` through the breaker.

        Cancellation and exceptions outside ``expected_exceptions`` are not
        counted as failures; they only free the HALF_OPEN trial slot.

        Raises:
            CircuitBreakerError: If the circuit is open, or HALF_OPEN with a
                trial call already running
        """
        trial = self._admit()
        try:
            result = await func(*args, **kwargs)
        except asyncio.CancelledError:
            self._release_trial(trial)
            raise
        except self.settings.expected_exceptions as e:
            self._on_failure(e)
            raise
        except BaseException:
            self._release_trial(trial)
            raise
        self._on_success(trial)
        return result

    def protected(self, func: Callable) -> Callable:
        """Decorator form of :meth:`call` for coroutine functions."""
        if not asyncio.iscoroutinefunction(func):
            raise TypeError("protected() requires a coroutine function")

        @functools.wraps(func)
        async def guarded(*args, **kwargs):
            return await self.call(func, *args, **kwargs)

        return guarded

    def reset(self) -> None:
        with self._lock:
            if self._state != CircuitState.CLOSED:
                self._move_to(CircuitState.CLOSED, "manual reset")
            self._consecutive_failures = 0
            self._last_failure_at = None

    def get_stats(self) -> Dict[str, Any]:
        """Breaker state for the status query."""
        with self._lock:
            retry_in = None
            if self._retry_at is not None:
                retry_in = max(0.0, self._retry_at - self._clock())
            return {
                "name": self.name,
                "state": self._state.value,
                "failure_count": self._consecutive_failures,
                "last_failure_time": self._last_failure_at,
                "retry_in_seconds": retry_in,
                "config": {
                    "failure_threshold": self.settings.failure_threshold,
                    "success_threshold": self.settings.success_threshold,
                    "timeout": self.settings.recovery_seconds,
                },
            }
