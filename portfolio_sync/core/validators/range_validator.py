"""
RangeValidator - validates numeric values (NAV, price, balance, contribution)
are within a specified range.
"""

from typing import Any

from .base_validator import BaseValidator, ValidationContext, as_number


class RangeValidator(BaseValidator):
    """
    Validates that a numeric field is within a specified range.

    Numeric strings are accepted; providers frequently return "123.45".

    Parameters:
    - min / max: inclusive bounds
    - min_exclusive / max_exclusive: exclusive bounds
    """

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)

        self.min_value = self.parameters.get("min")
        self.max_value = self.parameters.get("max")
        self.min_exclusive = self.parameters.get("min_exclusive")
        self.max_exclusive = self.parameters.get("max_exclusive")

        if all(v is None for v in [self.min_value, self.max_value, self.min_exclusive, self.max_exclusive]):
            raise ValueError("RangeValidator requires at least one of: min, max, min_exclusive, max_exclusive")

    def validate(self, value: Any, record: dict[str, Any], context: ValidationContext | None = None) -> None:
        # Presence is the required_field rule's job
        if value is None:
            return

        number = as_number(value)
        if number is None:
            raise self.fail(f"Value must be numeric, got {type(value).__name__}", value=value)

        if self.min_value is not None and number < self.min_value:
            raise self.fail(f"Value {number} is less than minimum {self.min_value}", value=number)

        if self.min_exclusive is not None and number <= self.min_exclusive:
            raise self.fail(f"Value {number} must be greater than {self.min_exclusive}", value=number)

        if self.max_value is not None and number > self.max_value:
            raise self.fail(f"Value {number} exceeds maximum {self.max_value}", value=number)

        if self.max_exclusive is not None and number >= self.max_exclusive:
            raise self.fail(f"Value {number} must be less than {self.max_exclusive}", value=number)

    @property
    def rule_type(self) -> str:
        return "range"
