"""
IntegrityResult model: verdict of the data integrity gate for one record.
"""

from typing import Any

from pydantic import BaseModel, Field, model_validator

from .anomaly_result import AnomalyResult
from .quarantine_record import QuarantineRecord
from .sync_error import SyncError, SyncWarning
from .validation_result import ValidationResult


class IntegrityResult(BaseModel):
    """
    Outcome of ``perform_integrity_check``.

    ``can_proceed`` is true iff the record is valid and not quarantined.
    """

    is_valid: bool
    can_proceed: bool
    quarantine: bool = False
    validation: ValidationResult | None = None
    anomalies: AnomalyResult | None = None
    quarantine_record: QuarantineRecord | None = None
    recommendations: list[str] = Field(default_factory=list)
    errors: list[SyncError] = Field(default_factory=list)
    warnings: list[SyncWarning] = Field(default_factory=list)
    persisted: bool = False
    changes: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def check_gate(self):
        if self.can_proceed != (self.is_valid and not self.quarantine):
            raise ValueError("can_proceed must equal is_valid and not quarantine")
        return self
