"""Unit tests for circuit breaker implementation.

Tests state transitions, failure counting, recovery logic, the
exponential backoff variant and the registry.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from tests.conftest import FakeClock
from wallwhale.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
    ExponentialBackoffCircuitBreaker,
)
from wallwhale.services.errors import CircuitOpenError


class Boom(Exception):
    pass


class CallCounter:
    """Async callable that fails or succeeds on demand."""

    def __init__(self, fail: bool = True) -> None:
        self.calls = 0
        self.fail = fail

    async def __call__(self) -> str:
        self.calls += 1
        if self.fail:
            raise Boom(f"failure {self.calls}")
        return "ok"


def make_breaker(clock: FakeClock, **kwargs) -> CircuitBreaker:
    config = CircuitBreakerConfig(**kwargs)
    return CircuitBreaker("downloads", config, clock)


async def fail_times(breaker: CircuitBreaker, op: CallCounter, times: int) -> None:
    for _ in range(times):
        with pytest.raises(Boom):
            await breaker.execute(op)


class TestCircuitBreakerConfig:
    """Tests for circuit breaker configuration."""

    def test_defaults(self) -> None:
        config = CircuitBreakerConfig()
        assert config.failure_threshold == 5
        assert config.recovery_timeout == timedelta(seconds=60)
        assert config.success_threshold == 3
        assert config.use_exponential_backoff is False

    def test_config_is_frozen(self) -> None:
        config = CircuitBreakerConfig()
        with pytest.raises(AttributeError):
            config.failure_threshold = 10  # type: ignore[misc]


class TestClosedState:
    """Tests for CLOSED behaviour."""

    @pytest.mark.asyncio
    async def test_success_passes_result_through(self, clock: FakeClock) -> None:
        breaker = make_breaker(clock)

        assert await breaker.execute(CallCounter(fail=False)) == "ok"
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_operation_error_is_reraised(self, clock: FakeClock) -> None:
        breaker = make_breaker(clock)

        with pytest.raises(Boom, match="failure 1"):
            await breaker.execute(CallCounter())

        assert breaker.failure_count == 1

    @pytest.mark.asyncio
    async def test_opens_at_threshold(self, clock: FakeClock) -> None:
        """Three failures open the circuit; the fourth call never runs."""
        breaker = make_breaker(clock, failure_threshold=3)
        op = CallCounter()

        await fail_times(breaker, op, 3)
        assert breaker.state == CircuitState.OPEN

        with pytest.raises(CircuitOpenError):
            await breaker.execute(op)
        assert op.calls == 3

    @pytest.mark.asyncio
    async def test_success_resets_consecutive_failures(self, clock: FakeClock) -> None:
        breaker = make_breaker(clock, failure_threshold=3)
        failing = CallCounter()

        await fail_times(breaker, failing, 2)
        await breaker.execute(CallCounter(fail=False))
        await fail_times(breaker, failing, 2)

        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_total_requests_counts_rejections(self, clock: FakeClock) -> None:
        breaker = make_breaker(clock, failure_threshold=1)
        op = CallCounter()

        await fail_times(breaker, op, 1)
        with pytest.raises(CircuitOpenError):
            await breaker.execute(op)

        assert breaker.get_stats().total_requests == 2


class TestRecovery:
    """Tests for OPEN → HALF_OPEN → CLOSED."""

    @pytest.mark.asyncio
    async def test_stays_open_before_recovery_timeout(self, clock: FakeClock) -> None:
        breaker = make_breaker(clock, failure_threshold=1, recovery_timeout=timedelta(seconds=30))
        op = CallCounter()
        await fail_times(breaker, op, 1)

        clock.advance(29)

        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.execute(op)
        assert exc_info.value.reset_after_seconds == pytest.approx(1.0)
        assert op.calls == 1

    @pytest.mark.asyncio
    async def test_half_open_after_recovery_timeout(self, clock: FakeClock) -> None:
        """The first call after the window runs as a trial call."""
        breaker = make_breaker(
            clock, failure_threshold=3, recovery_timeout=timedelta(seconds=30)
        )
        await fail_times(breaker, CallCounter(), 3)
        clock.advance(30)

        trial = CallCounter(fail=False)
        assert await breaker.execute(trial) == "ok"

        assert trial.calls == 1
        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.success_count == 1

    @pytest.mark.asyncio
    async def test_closes_after_success_threshold(self, clock: FakeClock) -> None:
        breaker = make_breaker(
            clock,
            failure_threshold=3,
            success_threshold=3,
            recovery_timeout=timedelta(seconds=30),
        )
        await fail_times(breaker, CallCounter(), 3)
        clock.advance(31)

        ok = CallCounter(fail=False)
        for _ in range(3):
            await breaker.execute(ok)

        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0
        assert breaker.success_count == 0

    @pytest.mark.asyncio
    async def test_half_open_admits_one_call_at_a_time(self, clock: FakeClock) -> None:
        """A second call during the trial call is rejected without running."""
        breaker = make_breaker(clock, failure_threshold=1, recovery_timeout=timedelta(seconds=10))
        await fail_times(breaker, CallCounter(), 1)
        clock.advance(10)

        release = asyncio.Event()

        async def slow_trial() -> str:
            await release.wait()
            return "ok"

        trial = asyncio.create_task(breaker.execute(slow_trial))
        await asyncio.sleep(0)
        assert breaker.state == CircuitState.HALF_OPEN

        second = CallCounter(fail=False)
        with pytest.raises(CircuitOpenError):
            await breaker.execute(second)
        assert second.calls == 0

        release.set()
        assert await trial == "ok"
        assert await breaker.execute(second) == "ok"
        assert second.calls == 1

    @pytest.mark.asyncio
    async def test_failure_in_half_open_reopens(self, clock: FakeClock) -> None:
        breaker = make_breaker(clock, failure_threshold=2, recovery_timeout=timedelta(seconds=10))
        op = CallCounter()
        await fail_times(breaker, op, 2)
        clock.advance(10)

        await fail_times(breaker, op, 1)

        assert breaker.state == CircuitState.OPEN
        assert breaker.get_stats().last_failure_at == clock.now()
        with pytest.raises(CircuitOpenError):
            await breaker.execute(op)
        assert op.calls == 3


class TestManualControl:
    """Tests for trip() and force_close()."""

    @pytest.mark.asyncio
    async def test_trip_blocks_requests(self, clock: FakeClock) -> None:
        breaker = make_breaker(clock)
        op = CallCounter(fail=False)

        breaker.trip()

        assert breaker.state == CircuitState.OPEN
        with pytest.raises(CircuitOpenError):
            await breaker.execute(op)
        assert op.calls == 0

    @pytest.mark.asyncio
    async def test_force_close_resets(self, clock: FakeClock) -> None:
        breaker = make_breaker(clock, failure_threshold=1)
        await fail_times(breaker, CallCounter(), 1)

        breaker.force_close()

        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0
        assert await breaker.execute(CallCounter(fail=False)) == "ok"

    def test_status_dict(self, clock: FakeClock) -> None:
        breaker = make_breaker(clock)
        breaker.trip()

        status = breaker.get_status()

        assert status["service_id"] == "downloads"
        assert status["state"] == "OPEN"
        assert status["time_until_reset"] == pytest.approx(60.0)


class TestExponentialBackoff:
    """Tests for ExponentialBackoffCircuitBreaker."""

    def make(self, clock: FakeClock, **kwargs) -> ExponentialBackoffCircuitBreaker:
        config = CircuitBreakerConfig(use_exponential_backoff=True, **kwargs)
        return ExponentialBackoffCircuitBreaker("downloads", config, clock)

    @pytest.mark.asyncio
    async def test_window_grows_with_failures(self, clock: FakeClock) -> None:
        breaker = self.make(clock, failure_threshold=2, recovery_timeout=timedelta(seconds=10))
        op = CallCounter()
        await fail_times(breaker, op, 2)

        assert breaker.recovery_window() == timedelta(seconds=40)

        clock.advance(39)
        with pytest.raises(CircuitOpenError):
            await breaker.execute(op)

        clock.advance(1)
        await fail_times(breaker, op, 1)
        assert breaker.recovery_window() == timedelta(seconds=80)

    @pytest.mark.asyncio
    async def test_window_is_capped(self, clock: FakeClock) -> None:
        breaker = self.make(
            clock,
            failure_threshold=12,
            recovery_timeout=timedelta(seconds=10),
            max_backoff=timedelta(minutes=5),
        )
        await fail_times(breaker, CallCounter(), 12)

        assert breaker.recovery_window() == timedelta(minutes=5)


class TestCircuitBreakerRegistry:
    """Tests for CircuitBreakerRegistry."""

    def test_get_creates_once(self, clock: FakeClock) -> None:
        registry = CircuitBreakerRegistry(clock=clock)

        first = registry.get("create_job")

        assert registry.get("create_job") is first
        assert registry.find("cancel_job") is None

    @pytest.mark.asyncio
    async def test_breakers_fail_independently(self, clock: FakeClock) -> None:
        registry = CircuitBreakerRegistry(CircuitBreakerConfig(failure_threshold=1), clock)

        await fail_times(registry.get("get_job_status"), CallCounter(), 1)

        assert registry.get_open_circuits() == ["get_job_status"]
        assert await registry.get("create_job").execute(CallCounter(fail=False)) == "ok"

    def test_exponential_variant_from_config(self, clock: FakeClock) -> None:
        registry = CircuitBreakerRegistry(
            CircuitBreakerConfig(use_exponential_backoff=True), clock
        )

        assert isinstance(registry.get("x"), ExponentialBackoffCircuitBreaker)

    def test_reset_and_remove(self, clock: FakeClock) -> None:
        registry = CircuitBreakerRegistry(clock=clock)
        registry.get("a").trip()
        registry.get("b").trip()

        assert registry.reset("a")
        assert not registry.reset("missing")
        assert registry.get_open_circuits() == ["b"]

        registry.reset_all()
        assert registry.get_open_circuits() == []
        assert set(registry.get_all_status()) == {"a", "b"}

        assert registry.remove("a")
        assert registry.find("a") is None
