"""
AuditEntry model for the append-only sync audit trail.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from portfolio_sync.utils.clock import utc_now


class AuditType(str, Enum):
    SYNC_STARTED = "sync_started"
    SYNC_COMPLETED = "sync_completed"
    SYNC_FAILED = "sync_failed"
    DATA_UPDATED = "data_updated"
    DATA_VALIDATED = "data_validated"
    DATA_QUARANTINED = "data_quarantined"
    ANOMALY_DETECTED = "anomaly_detected"
    MANUAL_OVERRIDE = "manual_override"
    CONFIGURATION_CHANGED = "configuration_changed"
    CREDENTIAL_UPDATED = "credential_updated"


class AuditEntry(BaseModel):
    """
    One immutable audit log line.

    Attributes:
        entry_id: Store assigned identifier, None before persistence
        user_id: Actor or owning user
        audit_type: Kind of event
        investment_type: Investment category, if any
        investment_id: Investment, if any
        source: Data source involved, if any
        timestamp: When the event happened
        details: Structured payload
        ip_address: Caller address for operator actions
        user_agent: Caller agent for operator actions
    """

    entry_id: int | None = None
    user_id: str
    audit_type: AuditType
    investment_type: str | None = None
    investment_id: str | None = None
    source: str | None = None
    timestamp: datetime = Field(default_factory=utc_now)
    details: dict[str, Any] = Field(default_factory=dict)
    ip_address: str | None = None
    user_agent: str | None = None

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "user_id": "user-42",
                "audit_type": "data_updated",
                "investment_type": "stocks",
                "investment_id": "stk-7",
                "source": "yahoo_finance",
                "details": {
                    "sessionId": "SYNC_1700000000000_q1w2e3r4t",
                    "changes": {"currentPrice": {"from": 100.0, "to": 104.5, "type": "modified"}},
                },
            }
        }

    def to_record(self) -> dict[str, Any]:
        """Persisted shape: camelCase keys, optional fields omitted when empty."""
        record: dict[str, Any] = {
            "userId": self.user_id,
            "auditType": self.audit_type.value,
            "timestamp": self.timestamp.isoformat(),
            "details": self.details,
        }
        optional = {
            "investmentType": self.investment_type,
            "investmentId": self.investment_id,
            "source": self.source,
            "ipAddress": self.ip_address,
            "userAgent": self.user_agent,
        }
        record.update({k: v for k, v in optional.items() if v is not None})
        return record
