"""
Tests for Circuit Breaker Pattern
"""
import pytest

from app.core.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    get_platform_circuit_breaker,
)
from app.core.config import settings
from app.core.exceptions import CircuitBreakerOpenError


class ManualClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


async def fail_func():
    raise ConnectionError("Test failure")


async def success_func():
    return "success"


class TestCircuitBreaker:
    """Tests for circuit breaker functionality"""

    @pytest.fixture
    def clock(self) -> ManualClock:
        return ManualClock()

    @pytest.fixture
    def breaker(self, clock: ManualClock) -> CircuitBreaker:
        config = CircuitBreakerConfig(
            failure_threshold=3,
            success_threshold=2,
            timeout_seconds=30,
            half_open_max_calls=2,
        )
        return CircuitBreaker("test-service", config, clock=clock)

    async def _open(self, breaker: CircuitBreaker) -> None:
        for _ in range(3):
            with pytest.raises(ConnectionError):
                await breaker.execute(fail_func)

    @pytest.mark.unit
    def test_initial_state_is_closed(self, breaker: CircuitBreaker):
        assert breaker.is_closed
        assert not breaker.is_open
        assert not breaker.is_half_open

    @pytest.mark.unit
    async def test_successful_execution_keeps_closed(self, breaker: CircuitBreaker):
        assert await breaker.execute(success_func) == "success"
        assert breaker.is_closed

    @pytest.mark.unit
    async def test_sync_callables_supported(self, breaker: CircuitBreaker):
        assert await breaker.execute(lambda x: x * 2, 21) == 42

    @pytest.mark.unit
    async def test_failures_open_circuit(self, breaker: CircuitBreaker):
        await self._open(breaker)
        assert breaker.is_open

    @pytest.mark.unit
    async def test_success_resets_failure_count(self, breaker: CircuitBreaker):
        for _ in range(2):
            with pytest.raises(ConnectionError):
                await breaker.execute(fail_func)
        await breaker.execute(success_func)
        for _ in range(2):
            with pytest.raises(ConnectionError):
                await breaker.execute(fail_func)

        assert breaker.is_closed

    @pytest.mark.unit
    async def test_open_circuit_blocks_requests(self, breaker: CircuitBreaker):
        await self._open(breaker)

        with pytest.raises(CircuitBreakerOpenError) as exc_info:
            await breaker.execute(success_func)

        assert "test-service" in str(exc_info.value)
        assert exc_info.value.details["retry_after_seconds"] == 30

    @pytest.mark.unit
    async def test_circuit_transitions_to_half_open(self, breaker: CircuitBreaker, clock: ManualClock):
        await self._open(breaker)

        clock.now += 29
        assert breaker.can_execute() is False

        clock.now += 1
        assert breaker.can_execute() is True
        assert breaker.is_half_open

    @pytest.mark.unit
    async def test_half_open_limits_probe_calls(self, breaker: CircuitBreaker, clock: ManualClock):
        await self._open(breaker)
        clock.now += 30

        assert [breaker.can_execute() for _ in range(3)] == [True, True, False]

    @pytest.mark.unit
    async def test_half_open_success_closes_circuit(self, breaker: CircuitBreaker, clock: ManualClock):
        await self._open(breaker)
        clock.now += 30

        for _ in range(2):
            assert await breaker.execute(success_func) == "success"

        assert breaker.is_closed

    @pytest.mark.unit
    async def test_half_open_failure_reopens_circuit(self, breaker: CircuitBreaker, clock: ManualClock):
        await self._open(breaker)
        clock.now += 30

        with pytest.raises(ConnectionError):
            await breaker.execute(fail_func)

        assert breaker.is_open

    @pytest.mark.unit
    async def test_get_retry_after(self, breaker: CircuitBreaker, clock: ManualClock):
        assert breaker.get_retry_after() == 0.0
        await self._open(breaker)

        clock.now += 10
        assert breaker.get_retry_after() == pytest.approx(20)

        clock.now += 25
        assert breaker.get_retry_after() == 0.0

    @pytest.mark.unit
    async def test_snapshot(self, breaker: CircuitBreaker):
        await self._open(breaker)
        assert breaker.snapshot() == {"state": "open", "failure_count": 3, "retry_after_seconds": 30.0}

    @pytest.mark.unit
    def test_singleton_pattern(self):
        """Should return same instance for same service"""
        cb1 = CircuitBreaker.get_instance("singleton-test", CircuitBreakerConfig())
        cb2 = CircuitBreaker.get_instance("singleton-test")

        assert cb1 is cb2

    @pytest.mark.unit
    def test_platform_breaker_uses_settings(self):
        breaker = get_platform_circuit_breaker("viber")

        assert breaker is get_platform_circuit_breaker("viber")
        assert breaker is not get_platform_circuit_breaker("telegram")
        assert breaker.config.failure_threshold == settings.CIRCUIT_BREAKER_FAILURE_THRESHOLD
        assert breaker.config.timeout_seconds == settings.CIRCUIT_BREAKER_TIMEOUT_SECONDS
