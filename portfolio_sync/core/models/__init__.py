"""
Core data models for the portfolio sync core.

All models use Pydantic for runtime validation and type safety.
"""

from .anomaly_result import Anomaly, AnomalyResult, QuarantineReason, Severity
from .audit_entry import AuditEntry, AuditType
from .circuit_state import CircuitBreakerState, CircuitState
from .integrity_result import IntegrityResult
from .intervention import Intervention
from .investment import DataSource, InvestmentType, SyncStatus
from .quarantine_record import QuarantineRecord, QuarantineRelease
from .recovery_action import RecoveryAction, RecoveryActionKind
from .source_health import SourceHealth
from .sync_error import TRANSIENT_ERROR_KINDS, SyncError, SyncErrorKind, SyncWarning
from .sync_result import SyncOptions, SyncResult
from .validation_result import ValidationIssue, ValidationResult

__all__ = [
    "Anomaly",
    "AnomalyResult",
    "AuditEntry",
    "AuditType",
    "CircuitBreakerState",
    "CircuitState",
    "DataSource",
    "IntegrityResult",
    "Intervention",
    "InvestmentType",
    "QuarantineReason",
    "QuarantineRecord",
    "QuarantineRelease",
    "RecoveryAction",
    "RecoveryActionKind",
    "Severity",
    "SourceHealth",
    "SyncError",
    "SyncErrorKind",
    "SyncOptions",
    "SyncResult",
    "SyncStatus",
    "SyncWarning",
    "TRANSIENT_ERROR_KINDS",
    "ValidationIssue",
    "ValidationResult",
]
