"""
Validation engine: per-investment-type rule sets over incoming records.
"""

from datetime import datetime
from pathlib import Path
from typing import Any, Iterable

from portfolio_sync.core.investments import get_investment_spec
from portfolio_sync.core.models import InvestmentType, ValidationIssue, ValidationResult
from portfolio_sync.core.validators import REFERENCE_FIELD, ValidationContext
from portfolio_sync.observability.logger import get_logger
from portfolio_sync.observability.metrics import (
    increment_counter,
    validation_failures_total,
    validation_warnings_total,
)
from portfolio_sync.utils.clock import utc_now

from .rule_config import RuleConfigLoader, default_rules
from .rule_engine import RuleEngine

logger = get_logger(__name__)


class ValidationEngine:
    """
    Maps each investment type to a RuleEngine and validates records with it.

    Validation is a pure function of (record, stored record, evaluation
    time): the engine keeps no per-record state between calls.
    """

    def __init__(self, rule_sets: dict[str, list[dict[str, Any]]] | None = None,
                 clock=utc_now):
        """
        Args:
            rule_sets: Rule lists keyed by investment type; types missing here
                use the built-in defaults
            clock: Returns the current aware datetime
        """
        self.clock = clock
        self._engines: dict[str, RuleEngine] = {}
        for type_name, rules in (rule_sets or {}).items():
            self._engines[InvestmentType(type_name).value] = RuleEngine(rules)

    @classmethod
    def from_yaml(cls, config_path: str | Path, clock=utc_now) -> "ValidationEngine":
        """Build an engine whose rule sets are overridden by a YAML file."""
        rule_sets = RuleConfigLoader(config_path).load_rules()
        logger.info(f"Loaded validation rules for {', '.join(rule_sets) or 'no types'} from {config_path}")
        return cls(rule_sets, clock=clock)

    def engine_for(self, investment_type: InvestmentType | str) -> RuleEngine:
        """Rule engine for a type, built from the defaults on first use."""
        key = InvestmentType(investment_type).value
        engine = self._engines.get(key)
        if engine is None:
            engine = RuleEngine(default_rules(key))
            self._engines[key] = engine
        return engine

    def validate(
        self,
        investment_type: InvestmentType | str,
        data: dict[str, Any],
        current: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> ValidationResult:
        """
        Validate one fetched record against its type's rule set.

        Runs the structural check (required and unexpected fields) followed
        by the type's rules. Change rules compare against the reference
        value derived from ``current``.

        Args:
            investment_type: Type the record belongs to
            data: Fetched record
            current: Stored holding, None when there is none
            now: Evaluation time, defaults to the engine clock

        Raises:
            ConfigurationError: If the type is not synced
        """
        spec = get_investment_spec(investment_type)
        type_value = spec.investment_type.value

        stored = dict(current or {})
        reference = spec.reference_value(stored)
        if reference is not None:
            stored[REFERENCE_FIELD] = reference

        structure = self.validate_data_structure(data, spec.required_fields, spec.optional_fields)
        record_id = stored.get("id") or data.get(spec.identifier_field)
        rules = self.engine_for(type_value).validate_record(
            data, record_id=record_id, context=ValidationContext(current=stored, now=now or self.clock())
        )

        errors = structure.errors + rules.errors
        result = ValidationResult(
            record_id=record_id,
            is_valid=not errors,
            errors=errors,
            warnings=structure.warnings + rules.warnings,
            flags=rules.flags,
            passed_rules=structure.passed_rules + rules.passed_rules,
            failed_rules=structure.failed_rules + rules.failed_rules,
        )

        for issue in result.errors:
            increment_counter(validation_failures_total, investment_type=type_value, rule_name=issue.rule_name)
        for issue in result.warnings:
            increment_counter(validation_warnings_total, investment_type=type_value, rule_name=issue.rule_name)

        if not result.is_valid:
            logger.info(
                f"Validation failed for {type_value} record {record_id}: "
                f"{'; '.join(issue.message for issue in result.errors)}"
            )
        return result

    def validate_data_structure(
        self,
        data: dict[str, Any],
        required_fields: Iterable[str],
        optional_fields: Iterable[str] = (),
    ) -> ValidationResult:
        """
        Check field presence.

        Missing or null required fields are hard errors; fields that are
        neither required nor optional produce a single warning.
        """
        required = list(required_fields)
        known = set(required) | set(optional_fields)

        errors = [
            ValidationIssue(
                rule_name="required_fields",
                field_name=name,
                message=f"Missing required field: {name}",
            )
            for name in required
            if data.get(name) is None
        ]

        warnings = []
        unexpected = sorted(name for name in data if name not in known)
        if unexpected:
            warnings.append(ValidationIssue(
                rule_name="unexpected_fields",
                field_name=", ".join(unexpected),
                message=f"Unexpected fields found: {', '.join(unexpected)}",
                details={"fields": unexpected},
            ))

        return ValidationResult(
            is_valid=not errors,
            errors=errors,
            warnings=warnings,
            passed_rules=[] if errors else ["required_fields"],
            failed_rules=["required_fields"] if errors else [],
        )

    def get_rule_summary(self, investment_type: InvestmentType | str) -> dict[str, Any]:
        return self.engine_for(investment_type).get_rule_summary()
