"""
CustomValidator - validates using a custom Python function.
"""

from typing import Any

from .base_validator import BaseValidator, ValidationContext, ValidationError


class CustomValidator(BaseValidator):
    """
    Validates using a custom validation function.

    Parameters:
    - validator_func: callable taking (value, record, context) that returns
      None on success or raises an exception on failure
    - error_message: Optional message prefix
    """

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)

        self.validator_func = self.parameters.get("validator_func")
        if not self.validator_func:
            raise ValueError("CustomValidator requires 'validator_func' parameter")

        if not callable(self.validator_func):
            raise ValueError("validator_func must be callable")

        self.error_message = self.parameters.get("error_message", "Custom validation failed")

    def validate(self, value: Any, record: dict[str, Any], context: ValidationContext | None = None) -> None:
        try:
            self.validator_func(value, record, context or ValidationContext())
        except ValidationError:
            raise
        except Exception as e:
            raise ValidationError(
                rule_name="custom",
                field_name=self.field_name,
                message=f"{self.error_message}: {str(e)}"
            )

    @property
    def rule_type(self) -> str:
        return "custom"
