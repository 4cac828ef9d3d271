"""
CircuitBreaker - Prevents cascading failures by stopping requests to failing services.

States:
- CLOSED: Normal operation, requests pass through
- OPEN: Service is failing, requests are blocked
- HALF_OPEN: Testing if service has recovered

Transitions:
- CLOSED → OPEN: When failure_threshold consecutive failures are reached
- OPEN → HALF_OPEN: On the first request after the recovery window
- HALF_OPEN → CLOSED: After success_threshold successes
- HALF_OPEN → OPEN: On failed request
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

from wallwhale.services.clock import Clock
from wallwhale.services.errors import CircuitOpenError

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"  # Normal operation
    OPEN = "OPEN"  # Blocking requests
    HALF_OPEN = "HALF_OPEN"  # Testing recovery


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""

    enabled: bool = True
    failure_threshold: int = 5  # Failures before opening
    recovery_timeout: timedelta = timedelta(seconds=60)  # Time before half-open
    success_threshold: int = 3  # Successes needed to close from half-open
    half_open_max_requests: int = 1  # Concurrent trial calls allowed in half-open state
    use_exponential_backoff: bool = False
    backoff_multiplier: float = 2.0
    max_backoff: timedelta = timedelta(minutes=5)


@dataclass
class CircuitStats:
    """Snapshot of a circuit breaker."""

    state: CircuitState
    failures: int
    successes: int
    last_failure_at: datetime | None
    total_requests: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "failures": self.failures,
            "successes": self.successes,
            "last_failure": (
                self.last_failure_at.isoformat() if self.last_failure_at else None
            ),
            "total_requests": self.total_requests,
        }


class CircuitBreaker:
    """
    Circuit breaker implementation for a single service.

    Usage:
        cb = CircuitBreaker("get_job_status")
        job = await cb.execute(lambda: api.get_job_status(job_id))

    execute() re-raises every error of the guarded operation; it only
    decides whether the operation runs at all.
    """

    def __init__(
        self,
        service_id: str,
        config: CircuitBreakerConfig | None = None,
        clock: Clock | None = None,
    ):
        self.service_id = service_id
        self.config = config or CircuitBreakerConfig()
        self._clock = clock or Clock()

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._total_requests = 0
        self._last_failure_time: datetime | None = None
        self._half_open_requests = 0

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def success_count(self) -> int:
        return self._success_count

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run an operation under circuit breaker protection.

        Raises:
            CircuitOpenError: If the circuit is open and the recovery window
                has not elapsed. The operation is not called.
        """
        self._total_requests += 1

        if self._state == CircuitState.OPEN:
            if self._should_attempt_reset():
                self._half_open()
            else:
                raise CircuitOpenError(self.service_id, self.get_time_until_reset() or 0)

        limited = self._state == CircuitState.HALF_OPEN
        if limited:
            if self._half_open_requests >= self.config.half_open_max_requests:
                raise CircuitOpenError(self.service_id, 0)
            self._half_open_requests += 1

        try:
            result = await operation()
        except Exception:
            self.record_failure()
            raise
        else:
            self.record_success()
            return result
        finally:
            if limited and self._half_open_requests > 0:
                self._half_open_requests -= 1

    def record_success(self) -> None:
        """Record a successful request."""
        if self._state == CircuitState.HALF_OPEN:
            self._success_count += 1
            if self._success_count >= self.config.success_threshold:
                self._close()
        elif self._state == CircuitState.CLOSED:
            # Only consecutive failures open the circuit
            self._success_count += 1
            self._failure_count = 0

    def record_failure(self) -> None:
        """Record a failed request."""
        self._failure_count += 1
        self._last_failure_time = self._clock.now()

        if self._state == CircuitState.HALF_OPEN:
            # Any failure in half-open reopens the circuit
            self._open()
        elif self._state == CircuitState.CLOSED:
            if self._failure_count >= self.config.failure_threshold:
                self._open()

    def recovery_window(self) -> timedelta:
        """Time the circuit stays open after the last failure."""
        return self.config.recovery_timeout

    def _should_attempt_reset(self) -> bool:
        if self._last_failure_time is None:
            return True
        elapsed = self._clock.now() - self._last_failure_time
        return elapsed >= self.recovery_window()

    def _open(self) -> None:
        """Transition to OPEN state."""
        self._state = CircuitState.OPEN
        self._success_count = 0
        logger.warning(
            f"Circuit breaker '{self.service_id}' OPENED after {self._failure_count} failures"
        )

    def _half_open(self) -> None:
        """Transition to HALF_OPEN state."""
        self._state = CircuitState.HALF_OPEN
        self._success_count = 0
        self._half_open_requests = 0
        logger.info(f"Circuit breaker '{self.service_id}' transitioned to HALF_OPEN")

    def _close(self) -> None:
        """Transition to CLOSED state."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._half_open_requests = 0
        logger.info(f"Circuit breaker '{self.service_id}' CLOSED (recovered)")

    def trip(self) -> None:
        """Manually open the circuit."""
        self._state = CircuitState.OPEN
        self._last_failure_time = self._clock.now()
        self._success_count = 0
        logger.warning(f"Circuit breaker '{self.service_id}' manually tripped")

    def force_close(self) -> None:
        """Manually reset the circuit breaker."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._half_open_requests = 0
        logger.info(f"Circuit breaker '{self.service_id}' manually reset")

    def get_time_until_reset(self) -> float | None:
        """Get seconds until the next request may reach the service."""
        if self._state != CircuitState.OPEN or not self._last_failure_time:
            return None

        reset_at = self._last_failure_time + self.recovery_window()
        remaining = (reset_at - self._clock.now()).total_seconds()
        return max(0, remaining)

    def get_stats(self) -> CircuitStats:
        return CircuitStats(
            state=self._state,
            failures=self._failure_count,
            successes=self._success_count,
            last_failure_at=self._last_failure_time,
            total_requests=self._total_requests,
        )

    def get_status(self) -> dict[str, Any]:
        """Get current status as dictionary."""
        status = self.get_stats().to_dict()
        status["service_id"] = self.service_id
        status["time_until_reset"] = self.get_time_until_reset()
        return status


class ExponentialBackoffCircuitBreaker(CircuitBreaker):
    """
    Circuit breaker whose open period grows with the failure count.

    The window is recovery_timeout * backoff_multiplier ** min(failures, 10),
    capped at max_backoff. Failed half-open trial calls keep raising the count,
    so a service that keeps failing is retried less and less often.
    """

    def recovery_window(self) -> timedelta:
        exponent = min(self._failure_count, 10)
        window = self.config.recovery_timeout * (self.config.backoff_multiplier**exponent)
        return min(window, self.config.max_backoff)


def create_circuit_breaker(
    service_id: str,
    config: CircuitBreakerConfig | None = None,
    clock: Clock | None = None,
) -> CircuitBreaker:
    """Build the breaker variant selected by the config."""
    config = config or CircuitBreakerConfig()
    if config.use_exponential_backoff:
        return ExponentialBackoffCircuitBreaker(service_id, config, clock)
    return CircuitBreaker(service_id, config, clock)


class CircuitBreakerRegistry:
    """
    Registry for managing multiple circuit breakers.

    Usage:
        registry = CircuitBreakerRegistry()
        cb = registry.get("my_service")
    """

    def __init__(
        self,
        default_config: CircuitBreakerConfig | None = None,
        clock: Clock | None = None,
    ):
        self._breakers: dict[str, CircuitBreaker] = {}
        self._default_config = default_config or CircuitBreakerConfig()
        self._clock = clock or Clock()

    def get(
        self,
        service_id: str,
        config: CircuitBreakerConfig | None = None,
    ) -> CircuitBreaker:
        """Get or create a circuit breaker for a service."""
        if service_id not in self._breakers:
            self._breakers[service_id] = create_circuit_breaker(
                service_id,
                config or self._default_config,
                self._clock,
            )
        return self._breakers[service_id]

    def find(self, service_id: str) -> CircuitBreaker | None:
        """Get an existing breaker without creating one."""
        return self._breakers.get(service_id)

    def remove(self, service_id: str) -> bool:
        return self._breakers.pop(service_id, None) is not None

    def get_all_status(self) -> dict[str, dict[str, Any]]:
        """Get status of all circuit breakers."""
        return {
            service_id: cb.get_status() for service_id, cb in self._breakers.items()
        }

    def reset_all(self) -> None:
        """Reset all circuit breakers."""
        for cb in self._breakers.values():
            cb.force_close()
        logger.info(f"Reset {len(self._breakers)} circuit breakers")

    def reset(self, service_id: str) -> bool:
        """Reset a specific circuit breaker."""
        if service_id in self._breakers:
            self._breakers[service_id].force_close()
            return True
        return False

    def get_open_circuits(self) -> list[str]:
        """Get list of services with open circuits."""
        return [
            service_id
            for service_id, cb in self._breakers.items()
            if cb.state == CircuitState.OPEN
        ]
