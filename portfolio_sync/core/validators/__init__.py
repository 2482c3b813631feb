"""
Validators package - field-level rules for incoming investment data.
"""

from .allowed_values_validator import AllowedValuesValidator
from .base_validator import BaseValidator, ValidationContext, ValidationError
from .change_validators import REFERENCE_FIELD, ChangeMagnitudeValidator, CircuitLimitValidator
from .contribution_validators import BalanceGrowthValidator, ContributionMatchValidator
from .custom_validator import CustomValidator
from .isin_validator import IsinValidator, isin_check_digit_valid
from .range_validator import RangeValidator
from .regex_validator import RegexValidator
from .required_field_validator import RequiredFieldValidator
from .temporal_validators import MarketHoursValidator, NotFutureValidator

__all__ = [
    "AllowedValuesValidator",
    "BalanceGrowthValidator",
    "BaseValidator",
    "ChangeMagnitudeValidator",
    "CircuitLimitValidator",
    "ContributionMatchValidator",
    "CustomValidator",
    "IsinValidator",
    "MarketHoursValidator",
    "NotFutureValidator",
    "REFERENCE_FIELD",
    "RangeValidator",
    "RegexValidator",
    "RequiredFieldValidator",
    "ValidationContext",
    "ValidationError",
    "isin_check_digit_valid",
]
