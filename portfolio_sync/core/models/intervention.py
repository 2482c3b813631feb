"""
Intervention model: work queued for a human operator.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from portfolio_sync.utils.clock import make_id, utc_now

from .sync_error import SyncErrorKind


class Intervention(BaseModel):
    """
    A pending or resolved request for manual action.

    Attributes:
        id: ``intervention_<ts>_<rand>``
        user_id: Owner of the queue the item lives in
        status: pending until resolved by an operator
        error_kind: Classified error that caused the intervention
        intervention_type: credential_update, permission_check,
            configuration_fix or escalated_failure
        escalated: True when raised by the escalation engine
        escalation_reasons: Escalation conditions that held, in priority order
    """

    id: str = Field(default_factory=lambda: make_id("intervention"))
    user_id: str
    status: Literal["pending", "resolved"] = "pending"
    error_kind: SyncErrorKind
    intervention_type: str
    investment_type: str | None = None
    investment_id: str | None = None
    source: str | None = None
    message: str = ""
    priority: Literal["normal", "high"] = "normal"
    escalated: bool = False
    escalation_reasons: list[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utc_now)
    resolved_at: datetime | None = None
    resolution: str | None = None

    class Config:
        json_schema_extra = {
            "example": {
                "id": "intervention_1700000000000_a1b2c3d4e",
                "user_id": "user-42",
                "status": "pending",
                "error_kind": "authentication_failed",
                "intervention_type": "credential_update",
                "investment_type": "epf",
                "priority": "normal",
                "escalated": False,
            }
        }
