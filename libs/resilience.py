"""
Resilience primitives for calls to external rate services.

Provides an async circuit breaker so that an unavailable upstream is skipped
quickly instead of being awaited on every line item of every bill.
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Type

import structlog

logger = structlog.get_logger(__name__)


class CircuitBreakerState(Enum):
    """Circuit breaker states"""
    CLOSED = "closed"        # Normal operation
    OPEN = "open"            # Calls fail fast
    HALF_OPEN = "half_open"  # Probing whether the service is back


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker"""
    failure_threshold: int = 5          # Consecutive failures before opening
    recovery_timeout: float = 30.0      # Seconds before trying half-open
    success_threshold: int = 1          # Successes to close from half-open
    expected_exceptions: Tuple[Type[BaseException], ...] = (Exception,)


class CircuitBreakerError(Exception):
    """Raised when circuit breaker is open"""
    pass


class CircuitBreaker:
    """Async circuit breaker for a single upstream dependency"""

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self.state = CircuitBreakerState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self._half_open_in_flight = False

        # Metrics
        self.total_requests = 0
        self.total_failures = 0
        self.total_rejections = 0
        self.state_changes = 0

        logger.info(
            "Circuit breaker initialized",
            breaker=name,
            threshold=self.config.failure_threshold,
            timeout=self.config.recovery_timeout,
        )

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Await func under circuit breaker protection.

        Raises:
            CircuitBreakerError: If the circuit is open, or half-open with
                a trial call already in flight.
        """
        self.total_requests += 1

        if self.state == CircuitBreakerState.OPEN:
            if self._should_attempt_reset():
                self._transition_to_half_open()
            else:
                self.total_rejections += 1
                raise CircuitBreakerError(f"Circuit breaker '{self.name}' is OPEN")

        # Half-open admits a single trial call at a time.
        trial = self.state == CircuitBreakerState.HALF_OPEN
        if trial:
            if self._half_open_in_flight:
                self.total_rejections += 1
                raise CircuitBreakerError(f"Circuit breaker '{self.name}' is HALF_OPEN with a trial call in flight")
            self._half_open_in_flight = True

        try:
            result = await func(*args, **kwargs)
        except self.config.expected_exceptions as e:
            self._record_failure(e)
            raise
        finally:
            if trial:
                self._half_open_in_flight = False

        self._record_success()
        return result

    def _should_attempt_reset(self) -> bool:
        """Check if enough time has passed to attempt reset"""
        if self.last_failure_time is None:
            return True
        return self._clock() - self.last_failure_time >= self.config.recovery_timeout

    def _record_success(self) -> None:
        if self.state == CircuitBreakerState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.config.success_threshold:
                self._transition_to_closed()
        else:
            self.failure_count = 0

    def _record_failure(self, error: BaseException) -> None:
        self.total_failures += 1
        self.failure_count += 1
        self.last_failure_time = self._clock()

        if self.state == CircuitBreakerState.HALF_OPEN:
            self._transition_to_open(error)
        elif self.failure_count >= self.config.failure_threshold:
            self._transition_to_open(error)

    def _transition_to_half_open(self) -> None:
        self.state = CircuitBreakerState.HALF_OPEN
        self.success_count = 0
        self.state_changes += 1
        logger.info("Circuit breaker transitioned to HALF_OPEN", breaker=self.name)

    def _transition_to_open(self, error: BaseException) -> None:
        self.state = CircuitBreakerState.OPEN
        self.state_changes += 1
        logger.warning(
            "Circuit breaker transitioned to OPEN",
            breaker=self.name,
            failures=self.failure_count,
            error=str(error),
        )

    def _transition_to_closed(self) -> None:
        self.state = CircuitBreakerState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.state_changes += 1
        logger.info("Circuit breaker transitioned to CLOSED", breaker=self.name)

    def get_metrics(self) -> Dict[str, Any]:
        """Get circuit breaker metrics"""
        return {
            "name": self.name,
            "state": self.state.value,
            "total_requests": self.total_requests,
            "total_failures": self.total_failures,
            "total_rejections": self.total_rejections,
            "failure_count": self.failure_count,
            "state_changes": self.state_changes,
        }
