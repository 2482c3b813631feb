"""
RegexValidator - validates identifier formats (UAN, ticker symbols) against
a regular expression pattern.
"""

import re
from re import Pattern
from typing import Any

from .base_validator import BaseValidator, ValidationContext


class RegexValidator(BaseValidator):
    """
    Validates that a field value fully matches a regular expression.

    Parameters:
    - pattern: Regular expression pattern (string or compiled Pattern)
    - flags: Optional regex flags (e.g., re.IGNORECASE)
    """

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)

        pattern = self.parameters.get("pattern")
        if not pattern:
            raise ValueError("RegexValidator requires 'pattern' parameter")

        flags = self.parameters.get("flags", 0)

        try:
            if isinstance(pattern, str):
                self.pattern: Pattern = re.compile(pattern, flags)
            elif isinstance(pattern, Pattern):
                self.pattern = pattern
            else:
                raise ValueError(f"Pattern must be string or compiled Pattern, got {type(pattern)}")
        except re.error as e:
            raise ValueError(f"Invalid regex pattern: {e}")

    def validate(self, value: Any, record: dict[str, Any], context: ValidationContext | None = None) -> None:
        if value is None:
            return

        value_str = value if isinstance(value, str) else str(value)

        if not self.pattern.fullmatch(value_str):
            raise self.fail(
                f"Value '{value_str}' does not match pattern '{self.pattern.pattern}'",
                value=value_str,
            )

    @property
    def rule_type(self) -> str:
        return "regex"
