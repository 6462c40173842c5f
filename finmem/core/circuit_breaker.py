"""
Circuit breaker for the engine's external collaborators.

Guards the text service and the vector store: after repeated failures the
circuit opens and callers go straight to their local fallback until the
recovery timeout elapses.

States:
- CLOSED: calls pass through
- OPEN: calls are refused with CircuitBreakerOpenError
- HALF_OPEN: a limited number of trial calls decide whether to close again

Usage:
    breaker = CircuitBreaker("anthropic", failure_threshold=5, recovery_timeout=60)
    result = await breaker.call(client.refine, text, 60)
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

import structlog

from finmem.core.exceptions import CircuitBreakerOpenError
from finmem.monitoring.metrics import (
    record_circuit_breaker_failure,
    update_circuit_breaker_state,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreaker:
    """
    Circuit breaker protecting one external service.

    Args:
        name: Service identifier used in logs and metrics
        failure_threshold: Consecutive failures before opening
        recovery_timeout: Seconds to wait before a trial call
        success_threshold: Trial successes needed to close again
    """

    name: str
    failure_threshold: int = 5
    recovery_timeout: float = 60.0
    success_threshold: int = 2

    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failure_count: int = field(default=0, init=False)
    _success_count: int = field(default=0, init=False)
    _last_failure_time: Optional[float] = field(default=None, init=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)

    @property
    def state(self) -> CircuitState:
        """Current state, moving OPEN to HALF_OPEN once the timeout passed."""
        if self._state == CircuitState.OPEN and self._last_failure_time:
            if time.time() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
                self._success_count = 0
                update_circuit_breaker_state(self.name, CircuitState.HALF_OPEN.value)
                logger.info("circuit_breaker_half_open", name=self.name)
        return self._state

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    def can_execute(self) -> bool:
        """Check if a call may go through."""
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def time_until_recovery(self) -> float:
        """Seconds until the circuit allows a trial call."""
        if self._state != CircuitState.OPEN or not self._last_failure_time:
            return 0.0
        elapsed = time.time() - self._last_failure_time
        return max(0.0, self.recovery_timeout - elapsed)

    async def record_success(self) -> None:
        async with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.success_threshold:
                    self._state = CircuitState.CLOSED
                    self._failure_count = 0
                    self._success_count = 0
                    update_circuit_breaker_state(self.name, CircuitState.CLOSED.value)
                    logger.info("circuit_breaker_closed", name=self.name)
            elif self._state == CircuitState.CLOSED:
                self._failure_count = 0

    async def record_failure(self) -> None:
        async with self._lock:
            self._failure_count += 1
            self._last_failure_time = time.time()
            record_circuit_breaker_failure(self.name)

            if self._state == CircuitState.HALF_OPEN:
                self._state = CircuitState.OPEN
                update_circuit_breaker_state(self.name, CircuitState.OPEN.value)
                logger.warning("circuit_breaker_reopened", name=self.name)
            elif (
                self._state == CircuitState.CLOSED
                and self._failure_count >= self.failure_threshold
            ):
                self._state = CircuitState.OPEN
                update_circuit_breaker_state(self.name, CircuitState.OPEN.value)
                logger.warning(
                    "circuit_breaker_opened",
                    name=self.name,
                    failure_count=self._failure_count,
                    recovery_timeout=self.recovery_timeout,
                )

    def reset(self) -> None:
        """Reset circuit breaker to closed state."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time = None
        update_circuit_breaker_state(self.name, CircuitState.CLOSED.value)
        logger.info("circuit_breaker_reset", name=self.name)

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """
        Run an async callable through the breaker.

        Raises:
            CircuitBreakerOpenError: If the circuit refuses the call.
        """
        if not self.can_execute():
            raise CircuitBreakerOpenError(self.name, self.time_until_recovery())

        try:
            result = await func(*args, **kwargs)
        except Exception:
            await self.record_failure()
            raise
        await self.record_success()
        return result
