"""
AnomalyResult model: outcome of statistical and rule-based anomaly checks.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def highest(cls, severities) -> "Severity":
        """Return the maximum severity, ``low`` for an empty input."""
        result = cls.LOW
        for severity in severities:
            severity = cls(severity)
            if severity.rank > result.rank:
                result = severity
        return result


_SEVERITY_RANK = {Severity.LOW: 0, Severity.MEDIUM: 1, Severity.HIGH: 2}


class QuarantineReason(str, Enum):
    EXTREME_PRICE_CHANGE = "extreme_price_change"
    DATA_INCONSISTENCY = "data_inconsistency"
    SUSPICIOUS_PATTERN = "suspicious_pattern"
    VALIDATION_FAILURE = "validation_failure"
    CONSECUTIVE_ERRORS = "consecutive_errors"
    STALE_DATA = "stale_data"


class Anomaly(BaseModel):
    """A single detected anomaly."""

    type: str
    severity: Severity
    message: str
    quarantine: bool = False
    details: dict[str, Any] = Field(default_factory=dict)


class AnomalyResult(BaseModel):
    """
    Combined result of all anomaly checks on one record.

    ``severity`` is the maximum across ``anomalies`` and ``quarantine``
    implies ``has_anomalies``.
    """

    has_anomalies: bool = False
    severity: Severity = Severity.LOW
    quarantine: bool = False
    quarantine_reason: QuarantineReason | None = None
    anomalies: list[Anomaly] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_consistency(self):
        if self.quarantine and not self.has_anomalies:
            raise ValueError("quarantine=True requires has_anomalies=True")
        if self.has_anomalies != bool(self.anomalies):
            raise ValueError("has_anomalies must match the anomalies list")
        if self.anomalies and self.severity != Severity.highest(a.severity for a in self.anomalies):
            raise ValueError("severity must be the maximum anomaly severity")
        return self

    class Config:
        json_schema_extra = {
            "example": {
                "has_anomalies": True,
                "severity": "high",
                "quarantine": True,
                "quarantine_reason": "extreme_price_change",
                "anomalies": [
                    {
                        "type": "extreme_nav_change",
                        "severity": "high",
                        "message": "NAV changed by 100.00%, exceeding 25% threshold",
                        "quarantine": True,
                        "details": {"previousValue": 10.0, "newValue": 20.0},
                    }
                ],
                "recommendations": ["Manual verification required before applying NAV update"],
            }
        }
