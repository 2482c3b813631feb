"""
Circuit breaker guarding a single upstream resource.

CLOSED passes calls through and counts failures; crossing the failure
threshold opens the breaker. OPEN rejects calls until ``reset_timeout_ms``
has elapsed since the last failure, after which the next call moves it to
HALF_OPEN. HALF_OPEN lets calls through and closes again after
``success_threshold`` successes; any failure reopens it.
"""

import threading
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable

from portfolio_sync.core.exceptions import CircuitOpenError
from portfolio_sync.core.models import CircuitBreakerState, CircuitState
from portfolio_sync.observability.logger import get_logger
from portfolio_sync.observability.metrics import record_circuit_transition
from portfolio_sync.utils.clock import epoch_ms, from_epoch_ms

logger = get_logger(__name__)


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """
    Breaker thresholds.

    Attributes:
        failure_threshold: Failures in CLOSED that open the breaker
        success_threshold: Successes in HALF_OPEN that close it
        reset_timeout_ms: Cool-down after the last failure before probing
    """

    failure_threshold: int = 5
    success_threshold: int = 2
    reset_timeout_ms: int = 60000

    def __post_init__(self):
        if self.failure_threshold < 1 or self.success_threshold < 1:
            raise ValueError("Breaker thresholds must be at least 1")
        if self.reset_timeout_ms < 0:
            raise ValueError("reset_timeout_ms must be non-negative")

    @classmethod
    def for_sync_type(cls, sync_type: str) -> "CircuitBreakerConfig":
        """Preset thresholds per investment type; unknown types get the defaults."""
        return SYNC_TYPE_BREAKERS.get(sync_type, cls())


SYNC_TYPE_BREAKERS = {
    "mutual_funds": CircuitBreakerConfig(failure_threshold=3, success_threshold=2, reset_timeout_ms=300000),
    "epf": CircuitBreakerConfig(failure_threshold=2, success_threshold=1, reset_timeout_ms=900000),
    "stocks": CircuitBreakerConfig(failure_threshold=5, success_threshold=3, reset_timeout_ms=180000),
}


class CircuitBreaker:
    """
    Three-state breaker for one resource.

    All reads and mutations happen under a per-instance lock, so a breaker
    may be shared by concurrent sync tasks and worker threads.
    """

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], int] = epoch_ms,
    ):
        """
        Args:
            name: Resource the breaker guards (used in logs and metrics)
            config: Thresholds, defaults to CircuitBreakerConfig()
            clock: Returns the current time in epoch milliseconds
        """
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_ms: int | None = None
        self._last_success_ms: int | None = None

    def _transition(self, new_state: CircuitState) -> None:
        # Caller holds the lock
        if new_state == self._state:
            return
        logger.warning(
            f"Circuit breaker {self.name}: {self._state.value} -> {new_state.value} "
            f"(failures={self._failure_count}, successes={self._success_count})"
        )
        self._state = new_state
        record_circuit_transition(self.name, new_state.value)

    def allow_request(self) -> bool:
        """
        Decide whether a call may proceed.

        An OPEN breaker whose cool-down has elapsed moves to HALF_OPEN here,
        on the call itself, and lets that call through.
        """
        with self._lock:
            if self._state != CircuitState.OPEN:
                return True

            elapsed = self._clock() - (self._last_failure_ms or 0)
            if elapsed >= self.config.reset_timeout_ms:
                self._success_count = 0
                self._transition(CircuitState.HALF_OPEN)
                return True
            return False

    def retry_in_ms(self) -> int:
        """Milliseconds until an OPEN breaker will admit a probe call."""
        with self._lock:
            if self._state != CircuitState.OPEN or self._last_failure_ms is None:
                return 0
            remaining = self.config.reset_timeout_ms - (self._clock() - self._last_failure_ms)
            return max(0, remaining)

    def record_success(self) -> None:
        with self._lock:
            self._last_success_ms = self._clock()

            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.config.success_threshold:
                    self._failure_count = 0
                    self._success_count = 0
                    self._transition(CircuitState.CLOSED)
            elif self._state == CircuitState.CLOSED:
                self._failure_count = max(0, self._failure_count - 1)

    def record_failure(self, error: BaseException | None = None) -> None:
        with self._lock:
            self._failure_count += 1
            self._last_failure_ms = self._clock()

            if self._state == CircuitState.HALF_OPEN:
                self._success_count = 0
                self._transition(CircuitState.OPEN)
            elif self._state == CircuitState.CLOSED and self._failure_count >= self.config.failure_threshold:
                self._transition(CircuitState.OPEN)

            if error is not None:
                logger.debug(f"Circuit breaker {self.name} recorded failure: {error}")

    def reset(self) -> None:
        """Force CLOSED with all counters zeroed."""
        with self._lock:
            self._failure_count = 0
            self._success_count = 0
            self._last_failure_ms = None
            self._last_success_ms = None
            self._transition(CircuitState.CLOSED)

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    def get_state(self) -> CircuitBreakerState:
        """Consistent snapshot of the breaker."""
        with self._lock:
            return CircuitBreakerState(
                name=self.name,
                state=self._state,
                failure_count=self._failure_count,
                success_count=self._success_count,
                last_failure_time=from_epoch_ms(self._last_failure_ms),
                last_success_time=from_epoch_ms(self._last_success_ms),
                config=asdict(self.config),
            )

    async def call(self, operation: Callable[[], Awaitable[Any]]) -> Any:
        """
        Run ``operation`` through the breaker.

        Raises:
            CircuitOpenError: If the breaker rejects the call
        """
        if not self.allow_request():
            raise CircuitOpenError(self.name, self.retry_in_ms())

        try:
            result = await operation()
        except Exception as e:
            self.record_failure(e)
            raise

        self.record_success()
        return result


class CircuitBreakerRegistry:
    """Lazily creates and hands out one breaker per resource key."""

    def __init__(self, default_config: CircuitBreakerConfig | None = None,
                 clock: Callable[[], int] = epoch_ms):
        self.default_config = default_config or CircuitBreakerConfig()
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get(self, name: str, config: CircuitBreakerConfig | None = None) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                breaker = CircuitBreaker(name, config or self.default_config, clock=self._clock)
                self._breakers[name] = breaker
            return breaker

    def get_all_states(self) -> dict[str, CircuitBreakerState]:
        with self._lock:
            breakers = list(self._breakers.items())
        return {name: breaker.get_state() for name, breaker in breakers}

    def reset(self, name: str) -> bool:
        with self._lock:
            breaker = self._breakers.get(name)
        if breaker is None:
            return False
        breaker.reset()
        return True
