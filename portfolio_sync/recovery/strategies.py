"""
Static recovery strategies per sync error kind.
"""

from dataclasses import dataclass
from enum import Enum

from portfolio_sync.core.models import RecoveryActionKind, SyncErrorKind

MAX_BACKOFF_MS = 300000


class StrategyKind(str, Enum):
    RETRY_WITH_BACKOFF = "retry_with_backoff"
    DELAY_AND_RETRY = "delay_and_retry"
    FALLBACK_WITH_RETRY = "fallback_with_retry"
    SKIP_AND_CONTINUE = "skip_and_continue"
    FALLBACK_WITH_SKIP = "fallback_with_skip"
    MANUAL_INTERVENTION = "manual_intervention"


@dataclass(frozen=True)
class RecoveryStrategy:
    """
    How one error kind is recovered.

    Attributes:
        strategy: Primary strategy
        max_attempts: Automatic attempts allowed (0 for manual strategies)
        base_delay_ms: Base delay for retry and delay strategies
        escalate_after: Attempt count above which the error escalates
        fallback_action: Used when the primary strategy cannot resolve
        intervention_type: Queued intervention for manual strategies
    """

    strategy: StrategyKind
    max_attempts: int
    escalate_after: int
    fallback_action: RecoveryActionKind
    base_delay_ms: int = 0
    intervention_type: str | None = None

    def backoff_delay_ms(self, attempt: int) -> int:
        """``min(base * 2^(attempt-1), 300000)``"""
        return int(min(self.base_delay_ms * (2 ** max(0, attempt - 1)), MAX_BACKOFF_MS))


RECOVERY_STRATEGIES: dict[SyncErrorKind, RecoveryStrategy] = {
    SyncErrorKind.NETWORK_ERROR: RecoveryStrategy(
        StrategyKind.RETRY_WITH_BACKOFF, max_attempts=3, base_delay_ms=2000,
        escalate_after=3, fallback_action=RecoveryActionKind.FALLBACK_SOURCE,
    ),
    SyncErrorKind.NETWORK_TIMEOUT: RecoveryStrategy(
        StrategyKind.RETRY_WITH_BACKOFF, max_attempts=2, base_delay_ms=5000,
        escalate_after=2, fallback_action=RecoveryActionKind.FALLBACK_SOURCE,
    ),
    SyncErrorKind.AUTHENTICATION_FAILED: RecoveryStrategy(
        StrategyKind.MANUAL_INTERVENTION, max_attempts=0, escalate_after=1,
        fallback_action=RecoveryActionKind.DISABLE_SYNC, intervention_type="credential_update",
    ),
    SyncErrorKind.AUTHORIZATION_FAILED: RecoveryStrategy(
        StrategyKind.MANUAL_INTERVENTION, max_attempts=0, escalate_after=1,
        fallback_action=RecoveryActionKind.DISABLE_SYNC, intervention_type="permission_check",
    ),
    SyncErrorKind.RATE_LIMIT_EXCEEDED: RecoveryStrategy(
        StrategyKind.DELAY_AND_RETRY, max_attempts=2, base_delay_ms=60000,
        escalate_after=3, fallback_action=RecoveryActionKind.FALLBACK_SOURCE,
    ),
    SyncErrorKind.SERVICE_UNAVAILABLE: RecoveryStrategy(
        StrategyKind.FALLBACK_WITH_RETRY, max_attempts=1, base_delay_ms=10000,
        escalate_after=2, fallback_action=RecoveryActionKind.FALLBACK_SOURCE,
    ),
    SyncErrorKind.DATA_VALIDATION_FAILED: RecoveryStrategy(
        StrategyKind.SKIP_AND_CONTINUE, max_attempts=1, escalate_after=5,
        fallback_action=RecoveryActionKind.SKIP_RECORD,
    ),
    SyncErrorKind.DATA_PARSING_FAILED: RecoveryStrategy(
        StrategyKind.FALLBACK_WITH_SKIP, max_attempts=1, escalate_after=3,
        fallback_action=RecoveryActionKind.FALLBACK_SOURCE,
    ),
    SyncErrorKind.DATABASE_ERROR: RecoveryStrategy(
        StrategyKind.RETRY_WITH_BACKOFF, max_attempts=2, base_delay_ms=1000,
        escalate_after=3, fallback_action=RecoveryActionKind.MANUAL_INTERVENTION,
    ),
    SyncErrorKind.CONFIGURATION_ERROR: RecoveryStrategy(
        StrategyKind.MANUAL_INTERVENTION, max_attempts=0, escalate_after=1,
        fallback_action=RecoveryActionKind.DISABLE_SYNC, intervention_type="configuration_fix",
    ),
    SyncErrorKind.CREDENTIAL_ERROR: RecoveryStrategy(
        StrategyKind.MANUAL_INTERVENTION, max_attempts=0, escalate_after=1,
        fallback_action=RecoveryActionKind.DISABLE_SYNC, intervention_type="credential_update",
    ),
    SyncErrorKind.NOT_FOUND: RecoveryStrategy(
        StrategyKind.SKIP_AND_CONTINUE, max_attempts=0, escalate_after=5,
        fallback_action=RecoveryActionKind.SKIP_RECORD,
    ),
    SyncErrorKind.DATA_NOT_FOUND: RecoveryStrategy(
        StrategyKind.SKIP_AND_CONTINUE, max_attempts=0, escalate_after=5,
        fallback_action=RecoveryActionKind.SKIP_RECORD,
    ),
    SyncErrorKind.UNKNOWN_ERROR: RecoveryStrategy(
        StrategyKind.RETRY_WITH_BACKOFF, max_attempts=1, base_delay_ms=1000,
        escalate_after=2, fallback_action=RecoveryActionKind.MANUAL_INTERVENTION,
    ),
}

# Escalations of these kinds disable sync instead of only queueing review
SYNC_DISABLING_KINDS = frozenset({
    SyncErrorKind.AUTHENTICATION_FAILED,
    SyncErrorKind.CREDENTIAL_ERROR,
    SyncErrorKind.CONFIGURATION_ERROR,
})


def get_strategy(kind: SyncErrorKind) -> RecoveryStrategy:
    return RECOVERY_STRATEGIES.get(kind, RECOVERY_STRATEGIES[SyncErrorKind.UNKNOWN_ERROR])
