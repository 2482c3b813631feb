"""
Base validator interface for all validation rules.

All validators must inherit from BaseValidator and implement the validate() method.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from portfolio_sync.utils.clock import utc_now


class ValidationError(Exception):
    """Raised when a validation rule fails."""

    def __init__(self, rule_name: str, field_name: str, message: str,
                 details: dict[str, Any] | None = None, flag: str | None = None):
        self.rule_name = rule_name
        self.field_name = field_name
        self.message = message
        self.details = details or {}
        # Overrides the flag configured on the rule
        self.flag = flag
        super().__init__(f"[{rule_name}] {field_name}: {message}")


@dataclass
class ValidationContext:
    """
    What a rule may look at besides the incoming record.

    Attributes:
        current: The currently stored record, empty when none exists
        now: Evaluation time; fixed per validation run
    """

    current: dict[str, Any] = field(default_factory=dict)
    now: datetime = field(default_factory=utc_now)


class BaseValidator(ABC):
    """
    Abstract base class for all validators.

    Each validator implements a specific validation rule type
    (required_field, range, regex, not_future, change_magnitude, ...).
    """

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        """
        Initialize validator.

        Args:
            field_name: Name of the field to validate
            parameters: Rule-specific parameters (e.g., min/max for range)
        """
        self.field_name = field_name
        self.parameters = parameters or {}

    @abstractmethod
    def validate(self, value: Any, record: dict[str, Any], context: ValidationContext | None = None) -> None:
        """
        Validate a value against this rule.

        Args:
            value: The field value to validate
            record: The entire incoming record
            context: Stored record and evaluation time

        Raises:
            ValidationError: If validation fails
        """
        pass

    @property
    @abstractmethod
    def rule_type(self) -> str:
        """Return the rule type identifier."""
        pass

    def fail(self, message: str, **details) -> ValidationError:
        """Build a ValidationError for this validator."""
        return ValidationError(rule_name=self.rule_type, field_name=self.field_name, message=message, details=details)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(field={self.field_name}, params={self.parameters})"


def as_number(value: Any) -> float | None:
    """Coerce ints, floats and numeric strings; None for anything else."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def percent_change(new_value: float, reference: float) -> float:
    """Absolute percentage change of ``new_value`` against ``reference``."""
    return abs(new_value - reference) / reference * 100
