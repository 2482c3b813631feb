"""
Unit tests for recovery strategy selection, escalation and the intervention queue.
"""

import asyncio

import pytest

from portfolio_sync.core.exceptions import UpstreamHTTPError
from portfolio_sync.core.models import Intervention, RecoveryActionKind, SyncErrorKind
from portfolio_sync.recovery import (
    ErrorRecoveryService,
    InterventionQueue,
    RecoveryContext,
    RecoveryHistory,
    classify_error,
    get_strategy,
)
from portfolio_sync.resilience.source_health import SourceHealthRegistry


class OkProber:
    async def __call__(self, source: str) -> None:
        return None


def make_service(clock, registry=None, **kwargs) -> ErrorRecoveryService:
    return ErrorRecoveryService(source_registry=registry, clock=clock, **kwargs)


def context(investment_type: str = "mutual_funds", attempt: int = 1, source: str | None = "amfi",
            user_id: str = "user-1") -> RecoveryContext:
    return RecoveryContext(user_id=user_id, investment_type=investment_type, source=source, attempt=attempt)


@pytest.mark.unit
class TestRecoveryDecisions:
    """Tests for handle_sync_error without escalation"""

    def test_rate_limit_waits_retry_after(self, clock):
        """A 429 with retry-after 60 delays by 60000ms"""
        service = make_service(clock)
        error = UpstreamHTTPError(429, retry_after=60)

        action = asyncio.run(service.handle_sync_error(error, context("stocks", source="yahoo_finance")))

        assert action.action == RecoveryActionKind.DELAY
        assert action.delay_ms == 60000
        assert action.max_retries == 1

    def test_rate_limit_without_retry_after_uses_base(self, clock):
        """Without retry-after the strategy base delay is used"""
        service = make_service(clock)
        action = asyncio.run(service.handle_sync_error(UpstreamHTTPError(429), context("stocks")))
        assert action.delay_ms == 60000

    def test_network_error_backs_off(self, clock):
        """Network errors retry with doubling delays"""
        service = make_service(clock)

        first = asyncio.run(service.handle_sync_error(ConnectionError("reset"), context(attempt=1)))
        second = asyncio.run(service.handle_sync_error(ConnectionError("reset"), context(attempt=2)))

        assert first.action == RecoveryActionKind.RETRY
        assert first.delay_ms == 2000
        assert second.delay_ms == 4000
        assert second.max_retries == 1

    def test_authentication_failure_needs_credentials(self, clock):
        """A 401 on the first attempt queues a credential_update intervention"""
        service = make_service(clock)

        action = asyncio.run(service.handle_sync_error(UpstreamHTTPError(401), context("epf", source="epfo")))

        assert action.action == RecoveryActionKind.MANUAL_INTERVENTION
        assert action.max_retries == 0
        assert action.metadata["interventionType"] == "credential_update"
        pending = service.get_pending_interventions("user-1")
        assert len(pending) == 1
        assert pending[0].error_kind == SyncErrorKind.AUTHENTICATION_FAILED
        assert pending[0].id == action.metadata["interventionId"]

    def test_service_unavailable_switches_source(self, clock):
        """An unavailable primary falls back to a healthy alternate"""
        registry = SourceHealthRegistry(prober=OkProber(), clock=clock)
        service = make_service(clock, registry)

        action = asyncio.run(service.handle_sync_error(UpstreamHTTPError(503), context(source="amfi")))

        assert action.action == RecoveryActionKind.FALLBACK_SOURCE
        assert action.source == "mf_central"

    def test_parse_failure_without_alternate_skips(self, clock):
        """Parse failures skip the record when no alternate source exists"""
        service = make_service(clock)
        action = asyncio.run(service.handle_sync_error(ValueError("could not parse"), context()))
        assert action.action == RecoveryActionKind.SKIP_RECORD

    def test_accepts_classified_error(self, clock):
        """A pre-classified SyncError is used as is"""
        service = make_service(clock)
        sync_error = classify_error(ValueError("validation failed"))
        action = asyncio.run(service.handle_sync_error(sync_error, context()))
        assert action.action == RecoveryActionKind.SKIP_RECORD
        assert action.metadata["strategy"] == "skip_and_continue"


@pytest.mark.unit
class TestEscalation:
    """Tests for escalation conditions and their priority"""

    def test_attempt_threshold(self, clock):
        """Attempt 5 of a network error exceeds escalate_after and escalates"""
        service = make_service(clock)
        assert get_strategy(SyncErrorKind.NETWORK_ERROR).escalate_after == 3

        action = asyncio.run(service.handle_sync_error(ConnectionError("refused"), context(attempt=5)))

        assert action.action == RecoveryActionKind.MANUAL_INTERVENTION
        assert action.metadata["escalated"] is True
        assert action.metadata["escalationReasons"][0] == "attempt_threshold"
        intervention = service.get_pending_interventions("user-1")[0]
        assert intervention.priority == "high"
        assert intervention.intervention_type == "escalated_failure"

    def test_escalated_auth_failure_disables_sync(self, clock):
        """Escalated authentication failures disable sync"""
        service = make_service(clock)
        action = asyncio.run(service.handle_sync_error(UpstreamHTTPError(401), context("stocks", attempt=2)))

        assert action.action == RecoveryActionKind.DISABLE_SYNC
        assert action.metadata["escalationReasons"] == ["attempt_threshold"]

    def test_consecutive_failures(self, clock):
        """Three failed syncs in a row escalate the next error"""
        service = make_service(clock)
        for _ in range(3):
            service.record_outcome("user-1", "mutual_funds", success=False)

        action = asyncio.run(service.handle_sync_error(ConnectionError("refused"), context()))
        assert action.metadata["escalationReasons"] == ["consecutive_failures"]

    def test_error_frequency_counts_current_error(self, clock):
        """The fifth error within an hour escalates"""
        service = make_service(clock)
        actions = [
            asyncio.run(service.handle_sync_error(ValueError("validation failed"), context()))
            for _ in range(5)
        ]

        assert all(a.action == RecoveryActionKind.SKIP_RECORD for a in actions[:4])
        assert actions[4].action == RecoveryActionKind.MANUAL_INTERVENTION
        assert actions[4].metadata["escalationReasons"] == ["error_frequency"]

    def test_critical_investment_escalates_on_second_attempt(self, clock):
        """EPF errors escalate from the second attempt"""
        service = make_service(clock)

        action = asyncio.run(service.handle_sync_error(ConnectionError("refused"), context("epf", attempt=2)))

        assert action.action == RecoveryActionKind.MANUAL_INTERVENTION
        assert action.metadata["escalationReasons"] == ["critical_investment"]

    def test_unhealthy_sources_escalate(self, clock):
        """Escalates when fewer than half the sources are healthy"""
        registry = SourceHealthRegistry(
            prober=OkProber(), clock=clock, fallback_graph={"amfi": ["mf_central"], "mf_central": []}
        )
        registry.set_source_health("amfi", False)
        registry.set_source_health("mf_central", False)
        service = make_service(clock, registry)

        action = asyncio.run(service.handle_sync_error(ConnectionError("refused"), context()))
        assert action.metadata["escalationReasons"] == ["data_source_health"]

    def test_reasons_reported_in_priority_order(self, clock):
        """Several conditions holding are reported in priority order"""
        service = make_service(clock)
        for _ in range(3):
            service.record_outcome("user-1", "epf", success=False)

        action = asyncio.run(service.handle_sync_error(ConnectionError("refused"), context("epf", attempt=4)))
        assert action.metadata["escalationReasons"] == [
            "attempt_threshold", "consecutive_failures", "critical_investment"
        ]


@pytest.mark.unit
class TestRecoveryHistory:
    """Tests for RecoveryHistory"""

    def test_error_window_expires(self, clock):
        """Errors older than the window drop out of the frequency count"""
        history = RecoveryHistory(clock=clock)
        history.record_error("user-1", "stocks")
        history.record_error("user-1", "stocks")
        assert history.error_frequency("user-1", "stocks") == 2

        clock.advance(hours=1)
        assert history.error_frequency("user-1", "stocks") == 0

    def test_success_resets_consecutive_failures(self, clock):
        """A successful outcome resets the consecutive failure count"""
        history = RecoveryHistory(clock=clock)
        history.record_outcome("user-1", "epf", False)
        history.record_outcome("user-1", "epf", False)
        history.record_outcome("user-1", "epf", True)

        assert history.consecutive_failures("user-1", "epf") == 0
        assert history.summary("user-1") == {
            "epf": {"attempts": 3, "successes": 1, "consecutiveFailures": 0}
        }


@pytest.mark.unit
class TestInterventionQueue:
    """Tests for the bounded intervention queue"""

    @staticmethod
    def make(message: str) -> Intervention:
        return Intervention(
            user_id="user-1",
            error_kind=SyncErrorKind.NETWORK_ERROR,
            intervention_type="escalated_failure",
            message=message,
        )

    def test_oldest_dropped_beyond_capacity(self):
        """Only the newest max_per_user items are kept"""
        queue = InterventionQueue(max_per_user=2)
        for message in ("first", "second", "third"):
            queue.enqueue(self.make(message))

        assert [i.message for i in queue.get_all("user-1")] == ["second", "third"]

    def test_resolve_and_clear(self):
        """Resolved items leave the pending list; clear empties the queue"""
        queue = InterventionQueue()
        item = queue.enqueue(self.make("first"))

        resolved = queue.resolve("user-1", item.id, "Credentials updated")
        assert resolved.status == "resolved"
        assert resolved.resolution == "Credentials updated"
        assert queue.get_pending("user-1") == []
        assert queue.resolve("user-1", "intervention_missing") is None

        assert queue.clear("user-1") == 1
        assert queue.get_all("user-1") == []

    def test_returned_items_are_copies(self):
        """Mutating a returned item does not change the queue"""
        queue = InterventionQueue()
        queue.enqueue(self.make("first"))

        queue.get_all("user-1")[0].message = "changed"
        assert queue.get_all("user-1")[0].message == "first"


@pytest.mark.unit
class TestOperatorHelpers:
    """Tests for suggestions and statistics"""

    def test_suggestions(self):
        """Known intervention types have tailored suggestions"""
        suggestion = ErrorRecoveryService.get_recovery_suggestions("credential_update")
        assert suggestion["urgency"] == "high"
        assert suggestion["steps"]

        assert ErrorRecoveryService.get_recovery_suggestions("unknown")["urgency"] == "low"

    def test_statistics(self, clock):
        """Statistics summarise interventions and outcomes"""
        service = make_service(clock)
        asyncio.run(service.handle_sync_error(UpstreamHTTPError(401), context("epf")))
        service.record_outcome("user-1", "epf", False)
        service.record_outcome("user-1", "epf", True)

        stats = service.get_recovery_statistics("user-1")

        assert stats["totalInterventions"] == 1
        assert stats["pendingInterventions"] == 1
        assert stats["interventionsByType"] == {"credential_update": 1}
        assert stats["recoveryAttempts"] == 2
        assert stats["successRate"] == 50.0

    def test_service_intervention_lifecycle(self, clock):
        """The service lists, resolves and clears queued interventions"""
        service = make_service(clock)
        asyncio.run(service.handle_sync_error(UpstreamHTTPError(401), context("epf")))

        [item] = service.get_all_interventions("user-1")
        resolved = service.resolve_intervention("user-1", item.id, "Password rotated")

        assert resolved.status == "resolved"
        assert service.get_pending_interventions("user-1") == []
        assert service.clear_interventions("user-1") == 1
        assert service.get_all_interventions("user-1") == []

    def test_should_escalate(self, clock):
        """should_escalate agrees with the attempt threshold"""
        service = make_service(clock)
        error = classify_error(ConnectionError("connection refused"))

        assert service.should_escalate(error, context(attempt=1)) is False
        assert service.should_escalate(error, context(attempt=5)) is True
