"""
Error recovery service: picks a recovery action for a classified sync
error and escalates to the human-review queue when thresholds are crossed.
"""

from dataclasses import dataclass
from typing import Any, Callable, Iterable

from portfolio_sync.core.models import (
    Intervention,
    RecoveryAction,
    RecoveryActionKind,
    SyncError,
)
from portfolio_sync.observability.logger import get_logger
from portfolio_sync.observability.metrics import increment_counter, recovery_actions_total, sync_errors_total
from portfolio_sync.resilience.source_health import SourceHealthRegistry
from portfolio_sync.utils.clock import epoch_ms

from .classifier import classify_error
from .history import RecoveryHistory
from .interventions import InterventionQueue
from .strategies import SYNC_DISABLING_KINDS, RecoveryStrategy, StrategyKind, get_strategy

logger = get_logger(__name__)

CONSECUTIVE_FAILURE_LIMIT = 3
HOURLY_ERROR_LIMIT = 5
CRITICAL_ATTEMPT_THRESHOLD = 2
MIN_HEALTHY_SOURCE_RATIO = 0.5

# Evaluation order doubles as priority when several conditions hold
ESCALATION_ORDER = (
    "attempt_threshold",
    "consecutive_failures",
    "error_frequency",
    "critical_investment",
    "data_source_health",
)

RECOVERY_SUGGESTIONS: dict[str, dict[str, Any]] = {
    "credential_update": {
        "title": "Update credentials",
        "description": "Stored credentials for this account were rejected by the provider.",
        "steps": [
            "Open the account's sync settings",
            "Re-enter the username and password",
            "Run a manual sync to confirm the new credentials",
        ],
        "urgency": "high",
    },
    "permission_check": {
        "title": "Check account permissions",
        "description": "The provider denied access to the requested data.",
        "steps": [
            "Confirm the account still has access on the provider's portal",
            "Re-authorise data sharing if the provider requires it",
        ],
        "urgency": "medium",
    },
    "configuration_fix": {
        "title": "Fix sync configuration",
        "description": "Sync is misconfigured and cannot run until it is corrected.",
        "steps": [
            "Review the identifiers stored for each investment",
            "Check the preferred data source for this investment type",
            "Re-enable sync once the configuration is corrected",
        ],
        "urgency": "high",
    },
    "escalated_failure": {
        "title": "Repeated sync failures",
        "description": "Automatic recovery did not succeed and the failure was escalated.",
        "steps": [
            "Review recent sync errors in the audit trail",
            "Verify the latest values against the provider directly",
            "Retry the sync once the upstream issue is resolved",
        ],
        "urgency": "high",
    },
}

DEFAULT_SUGGESTION = {
    "title": "Review sync issue",
    "description": "A sync problem needs attention.",
    "steps": ["Review the error details", "Retry the sync later"],
    "urgency": "low",
}


@dataclass
class RecoveryContext:
    """Where and how often an error happened."""

    user_id: str
    investment_type: str
    source: str | None = None
    attempt: int = 1
    investment_id: str | None = None


class ErrorRecoveryService:
    """
    Decides retry, delay, fallback, skip, disable or manual intervention.

    Decisions are values; this service never raises for a classified error.
    """

    def __init__(
        self,
        source_registry: SourceHealthRegistry | None = None,
        interventions: InterventionQueue | None = None,
        history: RecoveryHistory | None = None,
        critical_investment_types: Iterable[str] = ("epf",),
        clock: Callable[[], int] = epoch_ms,
    ):
        """
        Args:
            source_registry: Used for fallback resolution and the healthy-ratio check
            interventions: Queue that receives manual and escalated items
            history: Failure history, created if omitted
            critical_investment_types: Types that escalate from the second attempt
            clock: Epoch milliseconds, shared with the history
        """
        self.source_registry = source_registry
        self.interventions = interventions or InterventionQueue()
        self.history = history or RecoveryHistory(clock=clock)
        self.critical_investment_types = frozenset(critical_investment_types)

    async def handle_sync_error(self, error: BaseException | SyncError, context: RecoveryContext) -> RecoveryAction:
        """
        Classify (if needed) and decide how to recover from ``error``.

        Args:
            error: Raw exception or an already classified SyncError
            context: User, investment type, source and attempt number

        Returns:
            RecoveryAction
        """
        sync_error = error if isinstance(error, SyncError) else classify_error(
            error, source=context.source, investment_id=context.investment_id
        )
        increment_counter(sync_errors_total, kind=sync_error.kind.value, component="sync")
        self.history.record_error(context.user_id, context.investment_type)

        strategy = get_strategy(sync_error.kind)
        reasons = self.escalation_reasons(sync_error, strategy, context)

        if reasons:
            action = self.escalate_error(sync_error, context, reasons)
        else:
            action = await self.apply_recovery_strategy(sync_error, strategy, context)

        increment_counter(recovery_actions_total, kind=sync_error.kind.value, action=action.action.value)
        logger.info(
            f"Recovery for {context.investment_type} ({sync_error.kind.value}, attempt {context.attempt}): "
            f"{action.action.value} - {action.reason}"
        )
        return action

    def escalation_reasons(self, sync_error: SyncError, strategy: RecoveryStrategy,
                           context: RecoveryContext) -> list[str]:
        """Every escalation condition that holds, in ESCALATION_ORDER."""
        user, investment_type = context.user_id, context.investment_type
        checks = {
            "attempt_threshold": context.attempt > strategy.escalate_after,
            "consecutive_failures":
                self.history.consecutive_failures(user, investment_type) >= CONSECUTIVE_FAILURE_LIMIT,
            "error_frequency": self.history.error_frequency(user, investment_type) >= HOURLY_ERROR_LIMIT,
            "critical_investment":
                investment_type in self.critical_investment_types and context.attempt >= CRITICAL_ATTEMPT_THRESHOLD,
            "data_source_health":
                self.source_registry is not None
                and self.source_registry.healthy_ratio() < MIN_HEALTHY_SOURCE_RATIO,
        }
        return [name for name in ESCALATION_ORDER if checks[name]]

    def should_escalate(self, sync_error: SyncError, context: RecoveryContext) -> bool:
        return bool(self.escalation_reasons(sync_error, get_strategy(sync_error.kind), context))

    def escalate_error(self, sync_error: SyncError, context: RecoveryContext, reasons: list[str]) -> RecoveryAction:
        """
        Queue an escalated intervention.

        Sync-disabling kinds (authentication, credential, configuration)
        return disable_sync whichever condition fired; everything else
        returns manual_intervention.
        """
        intervention = self._queue_intervention(
            sync_error, context, "escalated_failure", escalated=True, reasons=reasons
        )
        primary_reason = reasons[0]
        logger.warning(
            f"Escalating {sync_error.kind.value} for user {context.user_id} "
            f"({context.investment_type}): {', '.join(reasons)}"
        )

        action = (
            RecoveryActionKind.DISABLE_SYNC if sync_error.kind in SYNC_DISABLING_KINDS
            else RecoveryActionKind.MANUAL_INTERVENTION
        )
        return RecoveryAction(
            action=action,
            reason=f"Escalated ({primary_reason}): {sync_error.message}",
            max_retries=0,
            metadata={
                "escalated": True,
                "escalationReasons": reasons,
                "interventionId": intervention.id,
                "interventionType": intervention.intervention_type,
            },
        )

    async def apply_recovery_strategy(self, sync_error: SyncError, strategy: RecoveryStrategy,
                                      context: RecoveryContext) -> RecoveryAction:
        attempt = context.attempt
        meta = {"strategy": strategy.strategy.value, "attempt": attempt}

        if strategy.strategy == StrategyKind.RETRY_WITH_BACKOFF:
            if attempt <= strategy.max_attempts:
                delay = strategy.backoff_delay_ms(attempt)
                return RecoveryAction(
                    action=RecoveryActionKind.RETRY,
                    delay_ms=delay,
                    reason=f"Retrying after {delay}ms (attempt {attempt}/{strategy.max_attempts})",
                    max_retries=max(0, strategy.max_attempts - attempt),
                    metadata=meta,
                )
            return await self._fallback_action(sync_error, strategy, context, meta)

        if strategy.strategy == StrategyKind.DELAY_AND_RETRY:
            if attempt <= strategy.max_attempts:
                delay = int(sync_error.retry_after * 1000) if sync_error.retry_after else strategy.base_delay_ms
                return RecoveryAction(
                    action=RecoveryActionKind.DELAY,
                    delay_ms=delay,
                    reason=f"Rate limited, waiting {delay}ms before retry",
                    max_retries=max(0, strategy.max_attempts - attempt),
                    metadata=meta,
                )
            return await self._fallback_action(sync_error, strategy, context, meta)

        if strategy.strategy == StrategyKind.FALLBACK_WITH_RETRY:
            alternate = await self._alternate_source(context)
            if alternate is not None:
                return self._fallback_to(alternate, context, meta)
            if attempt <= strategy.max_attempts:
                return RecoveryAction(
                    action=RecoveryActionKind.RETRY,
                    delay_ms=strategy.base_delay_ms,
                    reason=f"No alternate source, retrying after {strategy.base_delay_ms}ms",
                    max_retries=max(0, strategy.max_attempts - attempt),
                    metadata=meta,
                )
            return await self._fallback_action(sync_error, strategy, context, meta)

        if strategy.strategy == StrategyKind.FALLBACK_WITH_SKIP:
            alternate = await self._alternate_source(context)
            if alternate is not None:
                return self._fallback_to(alternate, context, meta)
            return self._skip(f"No alternate source; skipping record: {sync_error.message}", meta)

        if strategy.strategy == StrategyKind.SKIP_AND_CONTINUE:
            return self._skip(f"Skipping record: {sync_error.message}", meta)

        if strategy.strategy == StrategyKind.MANUAL_INTERVENTION:
            intervention = self._queue_intervention(
                sync_error, context, strategy.intervention_type or "escalated_failure"
            )
            return RecoveryAction(
                action=RecoveryActionKind.MANUAL_INTERVENTION,
                reason=f"Manual action required ({intervention.intervention_type}): {sync_error.message}",
                max_retries=0,
                metadata={**meta, "interventionId": intervention.id,
                          "interventionType": intervention.intervention_type},
            )

        return await self._fallback_action(sync_error, strategy, context, meta)

    async def _fallback_action(self, sync_error: SyncError, strategy: RecoveryStrategy,
                               context: RecoveryContext, meta: dict[str, Any]) -> RecoveryAction:
        meta = {**meta, "fallbackAction": strategy.fallback_action.value}
        fallback = strategy.fallback_action

        if fallback == RecoveryActionKind.FALLBACK_SOURCE:
            alternate = await self._alternate_source(context)
            if alternate is not None:
                return self._fallback_to(alternate, context, meta)
            return self._skip(f"Retries exhausted and no alternate source: {sync_error.message}", meta)

        if fallback == RecoveryActionKind.MANUAL_INTERVENTION:
            intervention = self._queue_intervention(
                sync_error, context, strategy.intervention_type or "escalated_failure"
            )
            return RecoveryAction(
                action=RecoveryActionKind.MANUAL_INTERVENTION,
                reason=f"Retries exhausted: {sync_error.message}",
                max_retries=0,
                metadata={**meta, "interventionId": intervention.id},
            )

        if fallback == RecoveryActionKind.SKIP_RECORD:
            return self._skip(sync_error.message, meta)

        return RecoveryAction(action=fallback, reason=sync_error.message, max_retries=0, metadata=meta)

    async def _alternate_source(self, context: RecoveryContext) -> str | None:
        if self.source_registry is None or context.source is None:
            return None
        if context.source not in self.source_registry.sources:
            return None
        alternate = await self.source_registry.get_best_available_source(
            context.source, exclude_sources=[context.source]
        )
        return alternate if alternate != context.source else None

    @staticmethod
    def _fallback_to(source: str, context: RecoveryContext, meta: dict[str, Any]) -> RecoveryAction:
        return RecoveryAction(
            action=RecoveryActionKind.FALLBACK_SOURCE,
            source=source,
            reason=f"Switching from {context.source} to {source}",
            metadata=meta,
        )

    @staticmethod
    def _skip(reason: str, meta: dict[str, Any]) -> RecoveryAction:
        return RecoveryAction(action=RecoveryActionKind.SKIP_RECORD, reason=reason, max_retries=0, metadata=meta)

    def _queue_intervention(self, sync_error: SyncError, context: RecoveryContext, intervention_type: str,
                            escalated: bool = False, reasons: list[str] | None = None) -> Intervention:
        return self.interventions.enqueue(Intervention(
            user_id=context.user_id,
            error_kind=sync_error.kind,
            intervention_type=intervention_type,
            investment_type=context.investment_type,
            investment_id=context.investment_id,
            source=context.source,
            message=sync_error.message,
            priority="high" if escalated else "normal",
            escalated=escalated,
            escalation_reasons=reasons or [],
        ))

    # ------------------------------------------------------------------
    # Operator-facing helpers
    # ------------------------------------------------------------------

    def record_outcome(self, user_id: str, investment_type: str, success: bool) -> None:
        """Feed a sync outcome into the consecutive-failure history."""
        self.history.record_outcome(user_id, investment_type, success)

    def get_pending_interventions(self, user_id: str) -> list[Intervention]:
        return self.interventions.get_pending(user_id)

    def get_all_interventions(self, user_id: str) -> list[Intervention]:
        return self.interventions.get_all(user_id)

    def resolve_intervention(self, user_id: str, intervention_id: str,
                             resolution: str = "Resolved by user") -> Intervention | None:
        return self.interventions.resolve(user_id, intervention_id, resolution)

    def clear_interventions(self, user_id: str) -> int:
        return self.interventions.clear(user_id)

    @staticmethod
    def get_recovery_suggestions(intervention_type: str) -> dict[str, Any]:
        return dict(RECOVERY_SUGGESTIONS.get(intervention_type, DEFAULT_SUGGESTION))

    def get_recovery_statistics(self, user_id: str) -> dict[str, Any]:
        interventions = self.interventions.get_all(user_id)
        by_type: dict[str, int] = {}
        for item in interventions:
            by_type[item.intervention_type] = by_type.get(item.intervention_type, 0) + 1

        outcomes = self.history.summary(user_id)
        attempts = sum(o["attempts"] for o in outcomes.values())
        successes = sum(o["successes"] for o in outcomes.values())

        return {
            "totalInterventions": len(interventions),
            "pendingInterventions": sum(1 for i in interventions if i.status == "pending"),
            "resolvedInterventions": sum(1 for i in interventions if i.status == "resolved"),
            "escalatedInterventions": sum(1 for i in interventions if i.escalated),
            "interventionsByType": by_type,
            "recoveryAttempts": attempts,
            "successfulRecoveries": successes,
            "successRate": (successes / attempts * 100) if attempts else 0.0,
            "byInvestmentType": outcomes,
        }
