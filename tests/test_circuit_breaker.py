"""Tests for the detection circuit breaker."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from src.config.models import CircuitBreakerConfig
from src.models.health import CircuitBreakerState
from src.scheduler import CircuitBreaker, CircuitOpenError, CircuitTimeoutError


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def _fail():
    raise RuntimeError("cycle failed")


async def _succeed():
    return "ok"


class TestCircuitBreaker:
    """Tests for CircuitBreaker state transitions."""

    def setup_method(self):
        self.clock = FakeClock()
        self.config = CircuitBreakerConfig(
            failure_threshold=3,
            recovery_timeout_ms=60_000,
            half_open_max_calls=1,
            timeout_ms=1_000,
        )
        self.breaker = CircuitBreaker("test-breaker", self.config, clock=self.clock)

    async def _trip(self):
        for _ in range(self.config.failure_threshold):
            with pytest.raises(RuntimeError):
                await self.breaker.call(_fail)

    @pytest.mark.asyncio
    async def test_starts_closed_and_passes_results(self):
        assert self.breaker.state == CircuitBreakerState.CLOSED
        assert await self.breaker.call(_succeed) == "ok"

    @pytest.mark.asyncio
    async def test_opens_after_threshold_failures(self):
        await self._trip()

        assert self.breaker.state == CircuitBreakerState.OPEN
        assert self.breaker.failure_count == 3

    @pytest.mark.asyncio
    async def test_open_circuit_rejects_without_calling(self):
        await self._trip()
        func = AsyncMock(return_value="ok")

        with pytest.raises(CircuitOpenError) as exc_info:
            await self.breaker.call(func)

        func.assert_not_awaited()
        assert exc_info.value.state == CircuitBreakerState.OPEN
        assert exc_info.value.name == "test-breaker"

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self):
        with pytest.raises(RuntimeError):
            await self.breaker.call(_fail)
        await self.breaker.call(_succeed)

        assert self.breaker.failure_count == 0
        assert self.breaker.state == CircuitBreakerState.CLOSED

    @pytest.mark.asyncio
    async def test_recovers_through_half_open(self):
        await self._trip()
        self.clock.advance(60)

        assert await self.breaker.call(_succeed) == "ok"
        assert self.breaker.state == CircuitBreakerState.CLOSED
        assert self.breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_stays_open_before_recovery_timeout(self):
        await self._trip()
        self.clock.advance(59)

        with pytest.raises(CircuitOpenError):
            await self.breaker.call(_succeed)

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self):
        await self._trip()
        self.clock.advance(61)

        with pytest.raises(RuntimeError):
            await self.breaker.call(_fail)

        assert self.breaker.state == CircuitBreakerState.OPEN
        with pytest.raises(CircuitOpenError):
            await self.breaker.call(_succeed)

    @pytest.mark.asyncio
    async def test_half_open_limits_trial_calls(self):
        await self._trip()
        self.clock.advance(61)
        release = asyncio.Event()

        async def _slow():
            await release.wait()
            return "trial"

        trial = asyncio.create_task(self.breaker.call(_slow))
        await asyncio.sleep(0)

        assert self.breaker.state == CircuitBreakerState.HALF_OPEN
        with pytest.raises(CircuitOpenError) as exc_info:
            await self.breaker.call(_succeed)
        assert exc_info.value.state == CircuitBreakerState.HALF_OPEN

        release.set()
        assert await trial == "trial"
        assert self.breaker.state == CircuitBreakerState.CLOSED

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failure(self):
        breaker = CircuitBreaker(
            "slow",
            CircuitBreakerConfig(failure_threshold=1, timeout_ms=50),
            clock=self.clock,
        )

        async def _hang():
            await asyncio.sleep(5)

        with pytest.raises(CircuitTimeoutError):
            await breaker.call(_hang)

        assert breaker.state == CircuitBreakerState.OPEN
        assert breaker.get_info().last_failure_time is not None

    @pytest.mark.asyncio
    async def test_reset(self):
        await self._trip()

        await self.breaker.reset()

        info = self.breaker.get_info()
        assert info.state == CircuitBreakerState.CLOSED
        assert info.failure_count == 0
        assert info.last_failure_time is None
        assert info.config == self.config
