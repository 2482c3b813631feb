"""
Append-only audit trail for sync sessions, data changes and operator actions.
"""

from .recorder import (
    EXPORT_HEADERS,
    AuditTrailRecorder,
    calculate_changes,
    calculate_data_hash,
)
from .store import AuditFilters, AuditStore, InMemoryAuditStore

__all__ = [
    "EXPORT_HEADERS",
    "AuditFilters",
    "AuditStore",
    "AuditTrailRecorder",
    "InMemoryAuditStore",
    "calculate_changes",
    "calculate_data_hash",
]
