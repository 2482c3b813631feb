"""
AllowedValuesValidator - restricts a field to a fixed vocabulary.
"""

from typing import Any

from .base_validator import BaseValidator, ValidationContext


class AllowedValuesValidator(BaseValidator):
    """
    Parameters:
    - values: accepted values
    - case_sensitive: compare strings exactly (default False)
    """

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)
        values = self.parameters.get("values")
        if not values:
            raise ValueError("AllowedValuesValidator requires 'values' parameter")
        self.case_sensitive = self.parameters.get("case_sensitive", False)
        self.values = {self._normalize(v) for v in values}

    def _normalize(self, value: Any) -> Any:
        if isinstance(value, str) and not self.case_sensitive:
            return value.upper()
        return value

    def validate(self, value: Any, record: dict[str, Any], context: ValidationContext | None = None) -> None:
        if value is None:
            return
        if self._normalize(value) not in self.values:
            raise self.fail(f"Unexpected value: {value}", value=value, allowed=sorted(map(str, self.values)))

    @property
    def rule_type(self) -> str:
        return "allowed_values"
