"""
IsinValidator - validates ISIN security identifiers, including the check digit.
"""

import re
from typing import Any

from .base_validator import BaseValidator, ValidationContext

ISIN_PATTERN = re.compile(r"^[A-Z]{2}[A-Z0-9]{9}[0-9]$")


def isin_check_digit_valid(isin: str) -> bool:
    """
    Verify the trailing Luhn check digit of an ISIN.

    Letters expand to two digits (A=10 ... Z=35) before the Luhn sum.
    """
    digits = "".join(str(int(ch, 36)) for ch in isin)
    total = 0
    for position, ch in enumerate(reversed(digits)):
        n = int(ch)
        if position % 2 == 1:
            n *= 2
            if n > 9:
                n -= 9
        total += n
    return total % 10 == 0


class IsinValidator(BaseValidator):
    """
    Validates a 12-character ISIN (e.g. INE002A01018).

    Parameters:
    - check_digit: verify the Luhn check digit (default True)
    """

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)
        self.check_digit = self.parameters.get("check_digit", True)

    def validate(self, value: Any, record: dict[str, Any], context: ValidationContext | None = None) -> None:
        if value is None:
            return

        if not isinstance(value, str) or not ISIN_PATTERN.match(value):
            raise self.fail("Invalid ISIN format", value=value)

        if self.check_digit and not isin_check_digit_valid(value):
            raise self.fail("Invalid ISIN check digit", value=value)

    @property
    def rule_type(self) -> str:
        return "isin"
