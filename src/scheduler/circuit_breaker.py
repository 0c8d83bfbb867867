"""
Circuit breaker guarding detection cycles.

States:
    CLOSED: Calls pass through. Failures are counted; reaching
        ``failure_threshold`` opens the circuit.
    OPEN: Calls are rejected without running. Once ``recovery_timeout_ms``
        has elapsed since the last failure, the next call moves the circuit
        to HALF_OPEN.
    HALF_OPEN: Up to ``half_open_max_calls`` trial calls are let through.
        A success closes the circuit, a failure opens it again.

Every call is bounded by ``timeout_ms``; a timeout counts as a failure.

Example:
    >>> breaker = CircuitBreaker("monitoring-detection", config.monitoring.circuit_breaker)
    >>> try:
    ...     result = await breaker.call(aggregator.run_detection_cycle)
    ... except CircuitOpenError:
    ...     logger.warning("detection_cycle_rejected")
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

import structlog

from src.config.models import CircuitBreakerConfig
from src.models.health import CircuitBreakerInfo, CircuitBreakerState

logger = structlog.get_logger(__name__)

DEFAULT_BREAKER_NAME = "monitoring-detection"


class CircuitBreakerError(Exception):
    """
    Base exception for circuit breaker errors.

    Attributes:
        name: Breaker name.
        state: Breaker state when the error was raised.
    """

    def __init__(self, message: str, name: str, state: CircuitBreakerState) -> None:
        self.name = name
        self.state = state
        super().__init__(message)


class CircuitOpenError(CircuitBreakerError):
    """Raised when a call is rejected by an open circuit."""

    pass


class CircuitTimeoutError(CircuitBreakerError):
    """Raised when a call exceeds the breaker timeout."""

    pass


class CircuitBreaker:
    """
    Three-state circuit breaker for async calls.

    State changes are serialized by an asyncio.Lock. The clock is injectable
    so that recovery timing can be tested without sleeping.

    Attributes:
        name: Breaker name used in logs and status.
        config: Thresholds and timeouts.
    """

    def __init__(
        self,
        name: str = DEFAULT_BREAKER_NAME,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the breaker in the CLOSED state.

        Args:
            name: Breaker name.
            config: Breaker configuration, defaults to CircuitBreakerConfig().
            clock: Monotonic clock in seconds.
        """
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = asyncio.Lock()

        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0
        self._half_open_calls = 0
        self._last_failure_at: Optional[float] = None
        self._last_failure_time: Optional[datetime] = None

    @property
    def state(self) -> CircuitBreakerState:
        """Current breaker state."""
        return self._state

    @property
    def failure_count(self) -> int:
        """Consecutive failures counted in the current state."""
        return self._failure_count

    async def call(
        self,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """
        Run ``func`` through the breaker.

        Args:
            func: Async callable to run.
            *args: Positional arguments for func.
            **kwargs: Keyword arguments for func.

        Returns:
            Any: Result of func.

        Raises:
            CircuitOpenError: If the circuit rejects the call.
            CircuitTimeoutError: If the call exceeds ``timeout_ms``.
            Exception: Whatever func raised, after counting the failure.
        """
        async with self._lock:
            self._admit()

        timeout_ms = self.config.timeout_ms
        try:
            result = await asyncio.wait_for(func(*args, **kwargs), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError as e:
            await self._on_failure()
            raise CircuitTimeoutError(
                f"Call through '{self.name}' timed out after {timeout_ms} ms",
                name=self.name,
                state=self._state,
            ) from e
        except Exception:
            await self._on_failure()
            raise

        await self._on_success()
        return result

    def _admit(self) -> None:
        """Decide whether a call may run; caller holds the lock."""
        if self._state == CircuitBreakerState.OPEN:
            if self._recovery_elapsed():
                self._transition_to_half_open()
            else:
                raise CircuitOpenError(
                    f"Circuit '{self.name}' is OPEN",
                    name=self.name,
                    state=self._state,
                )

        if self._state == CircuitBreakerState.HALF_OPEN:
            if self._half_open_calls >= self.config.half_open_max_calls:
                raise CircuitOpenError(
                    f"Circuit '{self.name}' is HALF_OPEN and at its trial call limit",
                    name=self.name,
                    state=self._state,
                )
            self._half_open_calls += 1

    def _recovery_elapsed(self) -> bool:
        if self._last_failure_at is None:
            return True
        elapsed_ms = (self._clock() - self._last_failure_at) * 1000
        return elapsed_ms >= self.config.recovery_timeout_ms

    async def _on_success(self) -> None:
        async with self._lock:
            if self._state != CircuitBreakerState.CLOSED:
                self._transition_to_closed()
            self._failure_count = 0

    async def _on_failure(self) -> None:
        async with self._lock:
            self._failure_count += 1
            self._last_failure_at = self._clock()
            self._last_failure_time = datetime.now(timezone.utc)

            if self._state == CircuitBreakerState.HALF_OPEN:
                self._transition_to_open()
            elif (
                self._state == CircuitBreakerState.CLOSED
                and self._failure_count >= self.config.failure_threshold
            ):
                self._transition_to_open()
            else:
                logger.debug(
                    "circuit_breaker_failure_recorded",
                    breaker=self.name,
                    failure_count=self._failure_count,
                )

    def _transition_to_open(self) -> None:
        previous = self._state
        self._state = CircuitBreakerState.OPEN
        self._half_open_calls = 0
        logger.warning(
            "circuit_breaker_opened",
            breaker=self.name,
            previous_state=previous.value,
            failure_count=self._failure_count,
            recovery_timeout_ms=self.config.recovery_timeout_ms,
        )

    def _transition_to_half_open(self) -> None:
        self._state = CircuitBreakerState.HALF_OPEN
        self._half_open_calls = 0
        logger.info("circuit_breaker_half_open", breaker=self.name)

    def _transition_to_closed(self) -> None:
        previous = self._state
        self._state = CircuitBreakerState.CLOSED
        self._half_open_calls = 0
        logger.info(
            "circuit_breaker_closed",
            breaker=self.name,
            previous_state=previous.value,
        )

    async def reset(self) -> None:
        """Force the breaker back to CLOSED with a clean failure count."""
        async with self._lock:
            self._transition_to_closed()
            self._failure_count = 0
            self._last_failure_at = None
            self._last_failure_time = None

    def get_info(self) -> CircuitBreakerInfo:
        """
        Snapshot the breaker state.

        Returns:
            CircuitBreakerInfo: Current state, counters and configuration.
        """
        return CircuitBreakerInfo(
            name=self.name,
            state=self._state,
            failure_count=self._failure_count,
            last_failure_time=self._last_failure_time,
            half_open_calls=self._half_open_calls,
            config=self.config,
        )
