"""
Error classification, recovery strategy selection and escalation.
"""

from .classifier import classify_error
from .history import RecoveryHistory
from .interventions import InterventionQueue
from .service import ErrorRecoveryService, RecoveryContext
from .strategies import RECOVERY_STRATEGIES, RecoveryStrategy, StrategyKind, get_strategy

__all__ = [
    "ErrorRecoveryService",
    "InterventionQueue",
    "RECOVERY_STRATEGIES",
    "RecoveryContext",
    "RecoveryHistory",
    "RecoveryStrategy",
    "StrategyKind",
    "classify_error",
    "get_strategy",
]
