"""
Source health registry and fallback resolver.

Tracks liveness per upstream provider, resolves a primary source to the
best usable alternative through a fallback graph, and executes fetches
across sources with retries and a circuit breaker per source.
"""

import asyncio
import functools
import inspect
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable

from portfolio_sync.core.exceptions import AllSourcesFailedError, CircuitOpenError, UnknownSourceError
from portfolio_sync.core.models import CircuitBreakerState, DataSource, SourceHealth
from portfolio_sync.observability.logger import get_logger
from portfolio_sync.observability.metrics import fallbacks_total, increment_counter, set_gauge, source_healthy
from portfolio_sync.utils.clock import epoch_ms, from_epoch_ms

from .circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from .probes import HealthProber, HttpHealthProber
from .retry import RetryConfig, with_retry

logger = get_logger(__name__)

FAILURES_BEFORE_UNHEALTHY = 3

FALLBACK_GRAPH: dict[str, list[str]] = {
    DataSource.AMFI.value: [DataSource.MF_CENTRAL.value],
    DataSource.MF_CENTRAL.value: [DataSource.AMFI.value],
    DataSource.YAHOO_FINANCE.value: [DataSource.NSE.value, DataSource.ALPHA_VANTAGE.value],
    DataSource.NSE.value: [DataSource.YAHOO_FINANCE.value, DataSource.BSE.value],
    DataSource.BSE.value: [DataSource.NSE.value, DataSource.YAHOO_FINANCE.value],
    DataSource.ALPHA_VANTAGE.value: [DataSource.YAHOO_FINANCE.value, DataSource.NSE.value],
    DataSource.EPFO.value: [],
}

SOURCE_BREAKER_CONFIG = CircuitBreakerConfig(failure_threshold=3, success_threshold=2, reset_timeout_ms=300000)


@dataclass
class FallbackResult:
    """Outcome of execute_with_fallback."""

    result: Any
    source: str
    attempted_sources: list[str] = field(default_factory=list)
    fallback_used: bool = False


class SourceHealthRegistry:
    """
    Process-scoped health and breaker state for every known source.

    Construct once at process start and inject it wherever sources are
    resolved. Each source has its own lock and its own breaker.
    """

    def __init__(
        self,
        prober: HealthProber | None = None,
        fallback_graph: dict[str, list[str]] | None = None,
        health_check_interval_s: float = 300.0,
        breaker_config: CircuitBreakerConfig | None = None,
        clock: Callable[[], int] = epoch_ms,
    ):
        """
        Args:
            prober: Liveness probe, defaults to HttpHealthProber()
            fallback_graph: primary -> ordered alternates, defaults to FALLBACK_GRAPH
            health_check_interval_s: Age after which cached health is re-probed
            breaker_config: Thresholds for every per-source breaker
            clock: Returns the current time in epoch milliseconds
        """
        self.prober = prober or HttpHealthProber()
        self.health_check_interval_ms = int(health_check_interval_s * 1000)
        self.breaker_config = breaker_config or SOURCE_BREAKER_CONFIG
        self._clock = clock
        self._graph_lock = threading.Lock()
        self._fallback_graph = {k: list(v) for k, v in (fallback_graph or FALLBACK_GRAPH).items()}
        self._health: dict[str, SourceHealth] = {}
        self._last_check_ms: dict[str, int] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._breakers: dict[str, CircuitBreaker] = {}
        self._monitor_task: asyncio.Task | None = None

        sources = set(self._fallback_graph)
        for alternates in self._fallback_graph.values():
            sources.update(alternates)
        for source in sorted(sources):
            self.register_source(source)

    # ------------------------------------------------------------------
    # Registration and lookups
    # ------------------------------------------------------------------

    def register_source(self, source: str, fallbacks: Iterable[str] | None = None) -> None:
        """Start tracking ``source``; re-registering keeps existing state."""
        with self._graph_lock:
            if source not in self._health:
                self._health[source] = SourceHealth(source=source)
                self._locks[source] = threading.Lock()
                self._breakers[source] = CircuitBreaker(
                    f"source:{source}", self.breaker_config, clock=self._clock
                )
                set_gauge(source_healthy, 1, source=source)
            if fallbacks is not None:
                self._fallback_graph[source] = list(fallbacks)
            else:
                self._fallback_graph.setdefault(source, [])

    @property
    def sources(self) -> list[str]:
        with self._graph_lock:
            return list(self._health)

    def _require(self, source: str) -> threading.Lock:
        lock = self._locks.get(source)
        if lock is None:
            raise UnknownSourceError(source)
        return lock

    def get_source_health(self, source: str) -> SourceHealth:
        with self._require(source):
            return self._health[source].model_copy()

    def get_all_health_status(self) -> dict[str, SourceHealth]:
        return {source: self.get_source_health(source) for source in self.sources}

    def get_fallback_sources(self, source: str) -> list[str]:
        with self._graph_lock:
            return list(self._fallback_graph.get(source, []))

    def set_fallback_mapping(self, source: str, fallbacks: Iterable[str]) -> None:
        fallbacks = list(fallbacks)
        for fallback in fallbacks:
            self.register_source(fallback)
        self.register_source(source, fallbacks)
        logger.info(f"Fallback mapping for {source} set to {fallbacks}")

    def get_circuit_breaker(self, source: str) -> CircuitBreaker:
        self._require(source)
        return self._breakers[source]

    def get_circuit_breaker_state(self, source: str) -> CircuitBreakerState:
        return self.get_circuit_breaker(source).get_state()

    def reset_circuit_breaker(self, source: str) -> None:
        self.get_circuit_breaker(source).reset()
        logger.info(f"Circuit breaker reset for source {source}")

    def healthy_ratio(self) -> float:
        """Fraction of tracked sources currently healthy (1.0 when none tracked)."""
        statuses = list(self.get_all_health_status().values())
        if not statuses:
            return 1.0
        return sum(1 for s in statuses if s.is_healthy) / len(statuses)

    # ------------------------------------------------------------------
    # Health bookkeeping
    # ------------------------------------------------------------------

    def _update(self, source: str, **changes) -> SourceHealth:
        # Caller holds the source lock
        current = self._health[source]
        if "uptime" in changes:
            changes["uptime"] = min(100.0, max(0.0, changes["uptime"]))
        updated = current.model_copy(update=changes)
        self._health[source] = updated
        set_gauge(source_healthy, 1 if updated.is_healthy else 0, source=source)
        if current.is_healthy and not updated.is_healthy:
            logger.warning(
                f"Source {source} marked unhealthy after {updated.consecutive_failures} "
                f"consecutive failures: {updated.last_error}"
            )
        elif not current.is_healthy and updated.is_healthy:
            logger.info(f"Source {source} recovered")
        return updated.model_copy()

    def _apply_success(self, source: str, uptime_delta: float, response_time_ms: int | None) -> SourceHealth:
        now = self._clock()
        with self._require(source):
            current = self._health[source]
            self._last_check_ms[source] = now
            return self._update(
                source,
                is_healthy=True,
                consecutive_failures=0,
                last_check=from_epoch_ms(now),
                response_time_ms=response_time_ms if response_time_ms is not None else current.response_time_ms,
                uptime=current.uptime + uptime_delta,
            )

    def _apply_failure(self, source: str, error: BaseException | str, uptime_delta: float) -> SourceHealth:
        now = self._clock()
        with self._require(source):
            current = self._health[source]
            failures = current.consecutive_failures + 1
            self._last_check_ms[source] = now
            return self._update(
                source,
                is_healthy=failures < FAILURES_BEFORE_UNHEALTHY,
                consecutive_failures=failures,
                last_error=str(error),
                last_check=from_epoch_ms(now),
                uptime=current.uptime - uptime_delta,
            )

    def record_source_success(self, source: str, response_time_ms: int | None = None,
                              update_breaker: bool = True) -> SourceHealth:
        """Record a successful real operation against ``source``."""
        health = self._apply_success(source, 2, response_time_ms)
        if update_breaker:
            self._breakers[source].record_success()
        return health

    def record_source_failure(self, source: str, error: BaseException | str,
                              update_breaker: bool = True) -> SourceHealth:
        """Record a failed real operation against ``source``."""
        health = self._apply_failure(source, error, 3)
        if update_breaker:
            self._breakers[source].record_failure(error if isinstance(error, BaseException) else None)
        return health

    def set_source_health(self, source: str, is_healthy: bool, error: str | None = None) -> SourceHealth:
        """
        Manually override a source's health.

        Marking a source healthy also resets its breaker.
        """
        now = self._clock()
        with self._require(source):
            self._last_check_ms[source] = now
            health = self._update(
                source,
                is_healthy=is_healthy,
                consecutive_failures=0 if is_healthy else FAILURES_BEFORE_UNHEALTHY,
                last_error=None if is_healthy else (error or "Marked unhealthy manually"),
                last_check=from_epoch_ms(now),
            )
        if is_healthy:
            self._breakers[source].reset()
        logger.info(f"Source {source} health manually set to {'healthy' if is_healthy else 'unhealthy'}")
        return health

    async def check_source_health(self, source: str, force: bool = False) -> SourceHealth:
        """
        Return the health of ``source``, probing when the cache is stale.

        Probe failures are recorded, never raised.

        Args:
            source: Source identifier
            force: Probe even when the cached result is fresh
        """
        with self._require(source):
            last_check = self._last_check_ms.get(source)
            fresh = last_check is not None and self._clock() - last_check < self.health_check_interval_ms
            if fresh and not force:
                return self._health[source].model_copy()

        started = time.monotonic()
        try:
            await self.prober(source)
        except Exception as e:
            logger.warning(f"Health probe failed for {source}: {e}")
            return self._apply_failure(source, e, 5)

        elapsed_ms = int((time.monotonic() - started) * 1000)
        return self._apply_success(source, 1, elapsed_ms)

    async def check_all_sources(self, force: bool = True) -> dict[str, SourceHealth]:
        sources = self.sources
        results = await asyncio.gather(*(self.check_source_health(s, force=force) for s in sources))
        return dict(zip(sources, results))

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def _is_usable(self, source: str) -> bool:
        health = await self.check_source_health(source)
        return health.is_healthy and self._breakers[source].retry_in_ms() == 0

    async def get_best_available_source(
        self,
        primary: str,
        exclude_sources: Iterable[str] = (),
        preferred_fallbacks: Iterable[str] | None = None,
    ) -> str:
        """
        Resolve ``primary`` to the best usable source.

        Returns the primary when it is usable and not excluded, otherwise
        the first usable non-excluded fallback (``preferred_fallbacks``
        replaces the configured graph). When nothing is usable the primary
        is returned anyway and the caller deals with the failure.
        """
        self._require(primary)
        excluded = set(exclude_sources)

        if primary not in excluded and await self._is_usable(primary):
            return primary

        fallbacks = list(preferred_fallbacks) if preferred_fallbacks else self.get_fallback_sources(primary)
        for fallback in fallbacks:
            if fallback in excluded or fallback not in self._locks:
                continue
            if await self._is_usable(fallback):
                logger.info(f"Using fallback source {fallback} for {primary}")
                return fallback

        logger.warning(f"No healthy source available for {primary}; returning primary")
        return primary

    async def execute_with_fallback(
        self,
        primary: str,
        operation: Callable[[str], Awaitable[Any]],
        max_fallbacks: int = 3,
        retry_config: RetryConfig | None = None,
        on_fallback: Callable[[str, BaseException, int], Any] | None = None,
        preferred_fallbacks: Iterable[str] | None = None,
    ) -> FallbackResult:
        """
        Run ``operation(source)`` against ``primary`` and its fallbacks.

        Each source is tried once, wrapped in the retry executor and that
        source's breaker. At most ``max_fallbacks + 1`` distinct sources are
        attempted.

        Args:
            primary: Preferred source
            operation: Callable taking the source id and returning an awaitable
            max_fallbacks: Fallback sources allowed after the first
            retry_config: Retry settings applied per source
            on_fallback: Called with (failed_source, error, next_attempt_number)
                before moving on; failures are logged and ignored
            preferred_fallbacks: Overrides the configured fallback list

        Returns:
            FallbackResult with the source that succeeded

        Raises:
            AllSourcesFailedError: Listing every attempted source
        """
        preferred = list(preferred_fallbacks) if preferred_fallbacks else None
        base_config = retry_config or RetryConfig(operation_name="fetch")
        attempted: list[str] = []
        last_error: BaseException | None = None

        for attempt in range(max_fallbacks + 1):
            current = await self.get_best_available_source(primary, attempted, preferred)
            if current in attempted:
                break
            attempted.append(current)

            config = base_config.with_overrides(
                circuit_breaker=self._breakers[current],
                operation_name=f"{base_config.operation_name}:{current}",
            )
            started = time.monotonic()
            try:
                result = await with_retry(functools.partial(operation, current), config)
            except Exception as e:
                last_error = e
                if not isinstance(e, CircuitOpenError):
                    self.record_source_failure(current, e, update_breaker=False)
                logger.warning(f"Source {current} failed for {primary}: {e}")
                if attempt < max_fallbacks:
                    await self._notify_fallback(on_fallback, current, e, attempt + 1)
                continue

            self.record_source_success(
                current, int((time.monotonic() - started) * 1000), update_breaker=False
            )
            if current != primary:
                increment_counter(fallbacks_total, primary=primary, fallback=current)
            return FallbackResult(
                result=result,
                source=current,
                attempted_sources=list(attempted),
                fallback_used=current != primary,
            )

        raise AllSourcesFailedError(primary, attempted, last_error)

    @staticmethod
    async def _notify_fallback(callback, source: str, error: BaseException, attempt: int) -> None:
        if callback is None:
            return
        try:
            outcome = callback(source, error, attempt)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as callback_error:
            logger.warning(f"on_fallback callback failed for {source}: {callback_error}")

    # ------------------------------------------------------------------
    # Background probing
    # ------------------------------------------------------------------

    @property
    def is_monitoring(self) -> bool:
        return self._monitor_task is not None and not self._monitor_task.done()

    async def _monitor_loop(self) -> None:
        while True:
            await self.check_all_sources(force=True)
            await asyncio.sleep(self.health_check_interval_ms / 1000)

    def start_health_monitoring(self) -> None:
        """Start the periodic probe task on the running event loop."""
        if self.is_monitoring:
            return
        self._monitor_task = asyncio.get_running_loop().create_task(
            self._monitor_loop(), name="source-health-monitor"
        )
        logger.info(f"Health monitoring started (interval {self.health_check_interval_ms}ms)")

    async def stop_health_monitoring(self) -> None:
        """Cancel the probe task and wait for it to finish."""
        task, self._monitor_task = self._monitor_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Health monitoring stopped")
