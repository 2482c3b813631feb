"""
Unit tests for the source health registry and fallback execution.
"""

import asyncio

import pytest

from portfolio_sync.core.exceptions import AllSourcesFailedError, UnknownSourceError, UpstreamHTTPError
from portfolio_sync.core.models import CircuitState
from portfolio_sync.resilience.retry import RetryConfig
from portfolio_sync.resilience.source_health import FAILURES_BEFORE_UNHEALTHY, SourceHealthRegistry


class StubProber:
    """Prober whose outcome per source is configurable; counts calls."""

    def __init__(self, failing: set[str] | None = None):
        self.failing = failing or set()
        self.calls: list[str] = []

    async def __call__(self, source: str) -> None:
        self.calls.append(source)
        if source in self.failing:
            raise UpstreamHTTPError(503, f"{source} is down")


def make_registry(clock, prober=None, **kwargs) -> SourceHealthRegistry:
    return SourceHealthRegistry(prober=prober or StubProber(), clock=clock, **kwargs)


def single_attempt(fake_sleep) -> RetryConfig:
    return RetryConfig(max_attempts=1, sleep=fake_sleep)


@pytest.mark.unit
class TestExecuteWithFallback:
    """Tests for execute_with_fallback"""

    def test_primary_success(self, clock, fake_sleep):
        """A healthy primary serves the call without fallback"""
        registry = make_registry(clock)

        async def fetch(source):
            return [source]

        outcome = asyncio.run(registry.execute_with_fallback("amfi", fetch, retry_config=single_attempt(fake_sleep)))

        assert outcome.result == ["amfi"]
        assert outcome.source == "amfi"
        assert outcome.fallback_used is False
        assert outcome.attempted_sources == ["amfi"]

    def test_falls_back_when_primary_fails(self, clock, fake_sleep):
        """A failing primary moves on to the configured fallback"""
        registry = make_registry(clock)
        notified = []

        async def fetch(source):
            if source == "amfi":
                raise ConnectionError("connection refused")
            return [source]

        def on_fallback(source, error, attempt):
            notified.append((source, attempt))

        outcome = asyncio.run(registry.execute_with_fallback(
            "amfi", fetch, retry_config=single_attempt(fake_sleep), on_fallback=on_fallback
        ))

        assert outcome.source == "mf_central"
        assert outcome.fallback_used is True
        assert outcome.attempted_sources == ["amfi", "mf_central"]
        assert notified == [("amfi", 1)]
        assert registry.get_source_health("amfi").consecutive_failures == 1

    def test_all_sources_failed(self, clock, fake_sleep):
        """When every source fails the error lists each attempted source"""
        registry = make_registry(clock)

        async def fetch(source):
            raise UpstreamHTTPError(503, f"{source} unavailable")

        with pytest.raises(AllSourcesFailedError) as exc_info:
            asyncio.run(registry.execute_with_fallback("amfi", fetch, retry_config=single_attempt(fake_sleep)))

        assert exc_info.value.attempted_sources == ["amfi", "mf_central"]
        assert isinstance(exc_info.value.last_error, UpstreamHTTPError)

    def test_max_fallbacks_zero_uses_only_primary(self, clock, fake_sleep):
        """max_fallbacks=0 never touches a fallback source"""
        registry = make_registry(clock)
        seen = []

        async def fetch(source):
            seen.append(source)
            raise ConnectionError("reset")

        with pytest.raises(AllSourcesFailedError):
            asyncio.run(registry.execute_with_fallback(
                "yahoo_finance", fetch, max_fallbacks=0, retry_config=single_attempt(fake_sleep)
            ))

        assert seen == ["yahoo_finance"]

    def test_open_breaker_skips_primary(self, clock, fake_sleep):
        """A primary with an open breaker is not attempted"""
        registry = make_registry(clock)
        breaker = registry.get_circuit_breaker("yahoo_finance")
        for _ in range(breaker.config.failure_threshold):
            breaker.record_failure()
        assert breaker.state == CircuitState.OPEN
        seen = []

        async def fetch(source):
            seen.append(source)
            return []

        outcome = asyncio.run(registry.execute_with_fallback(
            "yahoo_finance", fetch, retry_config=single_attempt(fake_sleep)
        ))

        assert seen == ["nse"]
        assert outcome.fallback_used is True

    def test_preferred_fallbacks_override_graph(self, clock, fake_sleep):
        """preferred_fallbacks replaces the configured fallback order"""
        registry = make_registry(clock)

        async def fetch(source):
            if source == "yahoo_finance":
                raise ConnectionError("down")
            return source

        outcome = asyncio.run(registry.execute_with_fallback(
            "yahoo_finance", fetch, retry_config=single_attempt(fake_sleep), preferred_fallbacks=["bse"]
        ))
        assert outcome.source == "bse"

    def test_unknown_primary_rejected(self, clock, fake_sleep):
        """An unregistered primary raises UnknownSourceError"""
        registry = make_registry(clock)

        async def fetch(source):
            return []

        with pytest.raises(UnknownSourceError):
            asyncio.run(registry.execute_with_fallback("nowhere", fetch))


@pytest.mark.unit
class TestHealthTracking:
    """Tests for probes, caching and manual overrides"""

    def test_probe_failures_mark_unhealthy(self, clock):
        """Repeated probe failures mark a source unhealthy without raising"""
        prober = StubProber(failing={"bse"})
        registry = make_registry(clock, prober=prober)

        for _ in range(FAILURES_BEFORE_UNHEALTHY):
            health = asyncio.run(registry.check_source_health("bse", force=True))

        assert health.is_healthy is False
        assert health.consecutive_failures == FAILURES_BEFORE_UNHEALTHY
        assert "bse is down" in health.last_error

    def test_cached_health_not_reprobed(self, clock):
        """A fresh result is served from cache until the interval passes"""
        prober = StubProber()
        registry = make_registry(clock, prober=prober, health_check_interval_s=300)

        asyncio.run(registry.check_source_health("amfi"))
        asyncio.run(registry.check_source_health("amfi"))
        assert prober.calls == ["amfi"]

        clock.advance(seconds=300)
        asyncio.run(registry.check_source_health("amfi"))
        assert prober.calls == ["amfi", "amfi"]

    def test_uptime_stays_in_bounds(self, clock):
        """Uptime is clamped to [0, 100]"""
        registry = make_registry(clock)
        for _ in range(50):
            registry.record_source_failure("nse", "boom", update_breaker=False)
        assert registry.get_source_health("nse").uptime == 0

        for _ in range(100):
            registry.record_source_success("nse", update_breaker=False)
        assert registry.get_source_health("nse").uptime == 100

    def test_manual_healthy_resets_breaker(self, clock):
        """Marking a source healthy closes its breaker"""
        registry = make_registry(clock)
        for _ in range(5):
            registry.record_source_failure("amfi", ConnectionError("down"))
        assert registry.get_circuit_breaker_state("amfi").state == CircuitState.OPEN

        health = registry.set_source_health("amfi", True)

        assert health.is_healthy is True
        assert registry.get_circuit_breaker_state("amfi").state == CircuitState.CLOSED

    def test_healthy_ratio(self, clock):
        """healthy_ratio reflects the share of healthy sources"""
        registry = make_registry(clock, fallback_graph={"a": ["b"], "b": []})
        assert registry.healthy_ratio() == 1.0

        registry.set_source_health("a", False)
        assert registry.healthy_ratio() == 0.5

    def test_fallback_mapping_registers_sources(self, clock):
        """Runtime fallback edits register the new sources"""
        registry = make_registry(clock)
        registry.set_fallback_mapping("epfo", ["epfo_mirror"])

        assert registry.get_fallback_sources("epfo") == ["epfo_mirror"]
        assert "epfo_mirror" in registry.sources

    def test_fallback_skips_unhealthy_sources(self, clock):
        """get_best_available_source passes over unhealthy fallbacks"""
        registry = make_registry(clock)
        registry.set_source_health("yahoo_finance", False)
        registry.set_source_health("nse", False)

        best = asyncio.run(registry.get_best_available_source("yahoo_finance"))
        assert best == "alpha_vantage"

    def test_reset_circuit_breaker(self, clock):
        """An operator reset closes the breaker but leaves health untouched"""
        registry = make_registry(clock)
        for _ in range(3):
            registry.record_source_failure("bse", ConnectionError("down"))
        assert registry.get_circuit_breaker_state("bse").state == CircuitState.OPEN

        registry.reset_circuit_breaker("bse")

        assert registry.get_circuit_breaker_state("bse").state == CircuitState.CLOSED
        assert registry.get_source_health("bse").consecutive_failures == 3


class SignallingProber(StubProber):
    """Prober that sets an event once every tracked source was probed."""

    def __init__(self, expected: int):
        super().__init__()
        self.expected = expected
        self.done = asyncio.Event()

    async def __call__(self, source: str) -> None:
        await super().__call__(source)
        if len(self.calls) >= self.expected:
            self.done.set()


@pytest.mark.unit
class TestHealthMonitoring:
    """Tests for the background probe task"""

    def test_start_probe_stop(self, clock):
        """The task probes every source and stops deterministically"""
        graph = {"a": ["b"], "b": []}

        async def run():
            prober = SignallingProber(expected=2)
            registry = make_registry(clock, prober=prober, fallback_graph=graph)

            registry.start_health_monitoring()
            task = registry._monitor_task
            registry.start_health_monitoring()
            assert registry._monitor_task is task
            assert registry.is_monitoring

            await asyncio.wait_for(prober.done.wait(), timeout=5)
            await registry.stop_health_monitoring()

            assert registry.is_monitoring is False
            assert task.cancelled()
            return prober.calls

        calls = asyncio.run(run())
        assert sorted(calls[:2]) == ["a", "b"]

    def test_stop_without_start(self, clock):
        """Stopping an idle registry is a no-op"""
        registry = make_registry(clock)
        asyncio.run(registry.stop_health_monitoring())
        assert registry.is_monitoring is False
