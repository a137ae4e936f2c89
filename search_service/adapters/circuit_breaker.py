"""Circuit breaker guarding calls to the embedding service."""

import asyncio
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, Union
import structlog

logger = structlog.get_logger("search_service.circuit_breaker")


class CircuitBreakerState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Failing, reject calls
    HALF_OPEN = "half_open"  # Testing whether the dependency recovered


class CircuitBreakerError(Exception):
    """Circuit breaker is open."""
    pass


class CircuitBreaker:
    """Async circuit breaker.

    After ``failure_threshold`` consecutive failures the breaker opens and
    rejects calls with ``CircuitBreakerError`` until ``recovery_timeout``
    seconds have passed. The next call is then admitted as a trial; any
    other caller arriving while that trial is running is rejected.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        expected_exception: Union[Type[BaseException], Tuple[Type[BaseException], ...]] = Exception,
        clock: Callable[[], float] = time.monotonic
    ):
        """Configure a circuit breaker.

        Parameters
        - name: Identifier for logs
        - failure_threshold: Consecutive failures before opening the breaker
        - recovery_timeout: Seconds to wait before a HALF_OPEN trial call
        - expected_exception: Exception type(s) counted as failures
        - clock: Monotonic time source (injectable for tests)
        """
        if failure_threshold <= 0:
            raise ValueError("failure_threshold must be positive")

        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception
        self._clock = clock

        self.failure_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = CircuitBreakerState.CLOSED
        self._trial_in_flight = False
        self._lock = asyncio.Lock()

    async def call(self, func: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        """Await ``func(*args, **kwargs)`` under breaker protection."""
        is_trial = await self._admit()

        try:
            result = await func(*args, **kwargs)
        except self.expected_exception:
            await self._on_failure()
            raise
        else:
            await self._on_success()
            return result
        finally:
            if is_trial:
                self._trial_in_flight = False

    async def _admit(self) -> bool:
        """Reject the call or let it through; True when it is the HALF_OPEN trial."""
        async with self._lock:
            if self.state == CircuitBreakerState.OPEN:
                if not self._recovery_elapsed():
                    logger.warning("Circuit breaker is OPEN, rejecting call", name=self.name)
                    raise CircuitBreakerError(f"Circuit breaker {self.name} is open")
                self.state = CircuitBreakerState.HALF_OPEN
                logger.info("Circuit breaker transitioning to HALF_OPEN", name=self.name)

            if self.state == CircuitBreakerState.HALF_OPEN:
                if self._trial_in_flight:
                    logger.warning("Circuit breaker trial call in flight, rejecting call", name=self.name)
                    raise CircuitBreakerError(f"Circuit breaker {self.name} is half-open")
                self._trial_in_flight = True
                return True
            return False

    def _recovery_elapsed(self) -> bool:
        if self.last_failure_time is None:
            return True
        return (self._clock() - self.last_failure_time) >= self.recovery_timeout

    async def _on_success(self) -> None:
        async with self._lock:
            if self.state == CircuitBreakerState.HALF_OPEN:
                logger.info("Circuit breaker reset to CLOSED", name=self.name)
            self.state = CircuitBreakerState.CLOSED
            self.failure_count = 0

    async def _on_failure(self) -> None:
        async with self._lock:
            self.failure_count += 1
            self.last_failure_time = self._clock()

            # A failed trial call reopens immediately
            if (
                self.state == CircuitBreakerState.HALF_OPEN
                or self.failure_count >= self.failure_threshold
            ):
                self.state = CircuitBreakerState.OPEN
                logger.warning(
                    "Circuit breaker opened due to failures",
                    name=self.name,
                    failure_count=self.failure_count,
                    threshold=self.failure_threshold
                )

    def get_stats(self) -> dict:
        """Get circuit breaker statistics."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout
        }
