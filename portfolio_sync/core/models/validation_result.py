"""
ValidationResult model representing the outcome of validating a synced record (ephemeral).
"""

from typing import Any, List

from pydantic import BaseModel, Field, field_validator


class ValidationIssue(BaseModel):
    """
    One failed rule.

    Issues carry no timestamps so that validating the same input twice
    yields equal results.
    """

    rule_name: str
    field_name: str
    message: str
    flag: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class ValidationResult(BaseModel):
    """
    Outcome of running a rule set against one incoming record.

    Attributes:
        record_id: Investment the record belongs to
        is_valid: False iff at least one hard error is present
        errors: Hard errors, these gate persistence
        warnings: Soft issues, informational
        flags: Tags consumed by anomaly detection (e.g. large_nav_change)
        passed_rules: Rules that succeeded
        failed_rules: Rules that produced a hard error
    """

    record_id: str | None = None
    is_valid: bool
    errors: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[ValidationIssue] = Field(default_factory=list)
    flags: List[str] = Field(default_factory=list)
    passed_rules: List[str] = Field(default_factory=list)
    failed_rules: List[str] = Field(default_factory=list)

    @field_validator("errors")
    @classmethod
    def check_valid_consistency(cls, v, info):
        """Validate that is_valid matches the presence of hard errors."""
        if info.data.get("is_valid") and len(v) > 0:
            raise ValueError("is_valid=True but errors is not empty")
        if info.data.get("is_valid") is False and len(v) == 0:
            raise ValueError("is_valid=False but errors is empty")
        return v

    class Config:
        json_schema_extra = {
            "example": {
                "record_id": "mf-001",
                "is_valid": True,
                "errors": [],
                "warnings": [
                    {
                        "rule_name": "nav_change",
                        "field_name": "nav",
                        "message": "NAV changed by 14.20% since last sync",
                        "flag": "large_nav_change",
                    }
                ],
                "flags": ["large_nav_change"],
                "passed_rules": ["nav_positive", "isin_format"],
                "failed_rules": [],
            }
        }
