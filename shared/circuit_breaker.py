"""
Circuit breaker protecting calls to the subscription backend.
"""

import time
from enum import Enum
from typing import Dict, Any, Callable, Awaitable

from shared.logging import get_logger


class CircuitBreakerState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Failing, requests blocked
    HALF_OPEN = "half_open"  # Probing whether the backend recovered


class CircuitBreakerOpenException(Exception):
    """Raised when the circuit breaker is open."""
    pass


class CircuitBreaker:
    """Circuit breaker implementation."""

    def __init__(self,
                 failure_threshold: int = 3,
                 recovery_timeout: float = 30.0,
                 name: str = "default",
                 clock: Callable[[], float] = time.monotonic):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.name = name
        self.logger = get_logger(f"circuit_breaker.{name}")
        self._clock = clock

        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0
        self._last_failure_time = 0.0
        self._success_count = 0

    def _can_attempt_reset(self) -> bool:
        return (self._clock() - self._last_failure_time) >= self.recovery_timeout

    def _should_attempt_call(self) -> bool:
        if self._state == CircuitBreakerState.CLOSED:
            return True
        if self._state == CircuitBreakerState.OPEN:
            if self._can_attempt_reset():
                self._state = CircuitBreakerState.HALF_OPEN
                self.logger.info("Circuit breaker transitioning to half-open")
                return True
            return False
        return True

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Execute func with circuit breaker protection."""
        if not self._should_attempt_call():
            raise CircuitBreakerOpenException(
                f"Circuit breaker '{self.name}' is OPEN - blocking call"
            )

        try:
            result = await func(*args, **kwargs)
        except Exception:
            self._record_failure()
            raise

        if self._state == CircuitBreakerState.HALF_OPEN:
            self.logger.info("Circuit breaker reset to CLOSED after successful call")
        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0
        self._success_count += 1
        return result

    def _record_failure(self):
        self._failure_count += 1
        self._last_failure_time = self._clock()
        self._success_count = 0

        if self._state == CircuitBreakerState.HALF_OPEN or self._failure_count >= self.failure_threshold:
            self._state = CircuitBreakerState.OPEN
            self.logger.warning(
                "Circuit breaker opened due to failures",
                failure_count=self._failure_count,
                threshold=self.failure_threshold
            )

    def get_state(self) -> Dict[str, Any]:
        """Get current circuit breaker state."""
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "success_count": self._success_count,
            "last_failure_time": self._last_failure_time,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout
        }

    def is_open(self) -> bool:
        """Check if circuit breaker is in OPEN state."""
        return self._state == CircuitBreakerState.OPEN
