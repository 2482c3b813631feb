"""
QuarantineRecord model representing a synced value held back for review.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from portfolio_sync.utils.clock import make_id, utc_now

from .anomaly_result import Anomaly, QuarantineReason, Severity


class QuarantineRecord(BaseModel):
    """
    Held-back record pending manual review. Immutable once created.

    Attributes:
        id: ``QTN_<ts>_<rand>``
        user_id: Owner of the investment
        investment_type: Investment category
        investment_id: Investment the data was meant for
        data: Snapshot of the incoming data
        reason: Why it was quarantined
        severity: Maximum anomaly severity
        anomalies: Anomalies that led to quarantine
        review_required: Always True, an operator has to act
        auto_release: Always False
    """

    id: str = Field(default_factory=lambda: make_id("QTN"))
    user_id: str
    investment_type: str
    investment_id: str | None = None
    data: dict[str, Any]
    reason: QuarantineReason
    severity: Severity
    anomalies: list[Anomaly] = Field(default_factory=list)
    review_required: bool = True
    auto_release: bool = False
    timestamp: datetime = Field(default_factory=utc_now)
    metadata: dict[str, Any] = Field(default_factory=dict)

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "id": "QTN_1700000000000_x8k2m1p0z",
                "user_id": "user-42",
                "investment_type": "mutual_funds",
                "investment_id": "mf-001",
                "data": {"nav": 20.0, "date": "2024-01-05"},
                "reason": "extreme_price_change",
                "severity": "high",
                "review_required": True,
                "auto_release": False,
            }
        }


class QuarantineRelease(BaseModel):
    """Operator decision releasing a quarantined record."""

    quarantine_id: str
    released_by: str
    reason: str
    released_at: datetime = Field(default_factory=utc_now)

    class Config:
        frozen = True
