"""
Rule engine for orchestrating validation rules on incoming investment data.

The rule engine builds validators from rule configurations, applies them to
a record and splits the outcomes into hard errors, warnings and flags.
"""

from typing import Any

from portfolio_sync.core.models import ValidationIssue, ValidationResult
from portfolio_sync.core.validators import (
    AllowedValuesValidator,
    BalanceGrowthValidator,
    BaseValidator,
    ChangeMagnitudeValidator,
    CircuitLimitValidator,
    ContributionMatchValidator,
    CustomValidator,
    IsinValidator,
    MarketHoursValidator,
    NotFutureValidator,
    RangeValidator,
    RegexValidator,
    RequiredFieldValidator,
    ValidationContext,
    ValidationError,
)

SEVERITIES = ("error", "warning", "flag")


class RuleEngine:
    """
    Orchestrates validation rules on a single record.

    Severity decides what a failed rule does:
    - error: gates the record (is_valid becomes False)
    - warning: recorded as a warning, its flag (if any) is added to flags
    - flag: only adds its flag
    """

    VALIDATOR_REGISTRY = {
        "required_field": RequiredFieldValidator,
        "range": RangeValidator,
        "regex": RegexValidator,
        "custom": CustomValidator,
        "isin": IsinValidator,
        "not_future": NotFutureValidator,
        "change_magnitude": ChangeMagnitudeValidator,
        "circuit_limit": CircuitLimitValidator,
        "allowed_values": AllowedValuesValidator,
        "market_hours": MarketHoursValidator,
        "contribution_match": ContributionMatchValidator,
        "balance_growth": BalanceGrowthValidator,
    }

    def __init__(self, rules: list[dict[str, Any]]):
        """
        Initialize the rule engine with validation rules.

        Args:
            rules: List of rule configurations, each containing:
                   - rule_name: str
                   - rule_type: str (a VALIDATOR_REGISTRY key)
                   - field_name: str
                   - parameters: Dict[str, Any] (optional)
                   - severity: str (error, warning or flag)
                   - flag: str (optional tag for anomaly detection)
                   - message: str (optional override of the validator message)
                   - enabled: bool (default True)
        """
        self.rules = rules
        self.validators: list[tuple[dict[str, Any], BaseValidator]] = []
        self._build_validators()

    def _build_validators(self) -> None:
        """Build validator instances from rule configurations."""
        for rule in self.rules:
            if not rule.get("enabled", True):
                continue

            rule_name = rule["rule_name"]
            rule_type = rule["rule_type"]
            severity = rule.get("severity", "error")

            if severity not in SEVERITIES:
                raise ValueError(f"Invalid severity '{severity}' for rule '{rule_name}'")

            validator_class = self.VALIDATOR_REGISTRY.get(rule_type)
            if not validator_class:
                raise ValueError(f"Unknown rule type: {rule_type}")

            try:
                validator = validator_class(rule["field_name"], rule.get("parameters", {}))
            except Exception as e:
                raise ValueError(f"Failed to create validator for rule '{rule_name}': {e}")

            self.validators.append(({**rule, "severity": severity}, validator))

    def validate_record(self, record: dict[str, Any], record_id: str | None = None,
                        context: ValidationContext | None = None) -> ValidationResult:
        """
        Validate a record against all rules.

        Args:
            record: Incoming record
            record_id: Investment id, carried into the result
            context: Stored record and evaluation time

        Returns:
            ValidationResult with errors, warnings and flags separated
        """
        context = context or ValidationContext()
        passed_rules: list[str] = []
        failed_rules: list[str] = []
        errors: list[ValidationIssue] = []
        warnings: list[ValidationIssue] = []
        flags: list[str] = []

        for rule, validator in self.validators:
            rule_name = rule["rule_name"]
            value = record.get(validator.field_name)

            try:
                validator.validate(value, record, context)
                passed_rules.append(rule_name)
            except ValidationError as e:
                flag = e.flag or rule.get("flag")
                issue = ValidationIssue(
                    rule_name=rule_name,
                    field_name=e.field_name,
                    message=rule.get("message") or e.message,
                    flag=flag,
                    details=e.details,
                )

                if rule["severity"] == "error":
                    failed_rules.append(rule_name)
                    errors.append(issue)
                    continue

                if rule["severity"] == "warning":
                    warnings.append(issue)
                if flag and flag not in flags:
                    flags.append(flag)

        return ValidationResult(
            record_id=record_id,
            is_valid=not errors,
            errors=errors,
            warnings=warnings,
            flags=flags,
            passed_rules=passed_rules,
            failed_rules=failed_rules,
        )

    def validate_batch(self, records: list[dict[str, Any]],
                       context: ValidationContext | None = None) -> list[ValidationResult]:
        """
        Validate a batch of records against the same context.

        Returns:
            List of ValidationResult objects, one per record
        """
        return [self.validate_record(record, context=context) for record in records]

    def get_rule_summary(self) -> dict[str, Any]:
        """
        Get summary of loaded rules.

        Returns:
            Dictionary with rule counts and types
        """
        return {
            "total_rules": len(self.validators),
            "rules_by_type": self._count_by_type(),
            "rules_by_severity": self._count_by_severity(),
        }

    def _count_by_type(self) -> dict[str, int]:
        """Count validators by rule type."""
        counts: dict[str, int] = {}
        for _, validator in self.validators:
            rule_type = validator.rule_type
            counts[rule_type] = counts.get(rule_type, 0) + 1
        return counts

    def _count_by_severity(self) -> dict[str, int]:
        """Count validators by severity."""
        counts: dict[str, int] = {}
        for rule, _ in self.validators:
            severity = rule["severity"]
            counts[severity] = counts.get(severity, 0) + 1
        return counts
