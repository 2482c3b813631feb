"""
Validators comparing the incoming value against the stored reference value.

The reference is read from the stored record under ``reference_field``
(default ``referenceValue``); the validation engine derives it per
investment type before the rules run.
"""

from typing import Any

from .base_validator import BaseValidator, ValidationContext, ValidationError, as_number, percent_change

REFERENCE_FIELD = "referenceValue"


def _reference(validator: BaseValidator, context: ValidationContext | None) -> float | None:
    if context is None:
        return None
    reference = as_number(context.current.get(validator.parameters.get("reference_field", REFERENCE_FIELD)))
    if reference is None or reference <= 0:
        return None
    return reference


class ChangeMagnitudeValidator(BaseValidator):
    """
    Fails when the value moved more than ``max_change_percent`` against the
    stored reference. Skipped when there is no usable reference.
    """

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)
        self.max_change_percent = self.parameters.get("max_change_percent")
        if self.max_change_percent is None:
            raise ValueError("ChangeMagnitudeValidator requires 'max_change_percent' parameter")

    def validate(self, value: Any, record: dict[str, Any], context: ValidationContext | None = None) -> None:
        number = as_number(value)
        reference = _reference(self, context)
        if number is None or reference is None:
            return

        change = percent_change(number, reference)
        if change > self.max_change_percent:
            raise self.fail(
                f"Value changed by {change:.2f}%, more than {self.max_change_percent}%",
                previousValue=reference,
                newValue=number,
                changePercent=round(change, 2),
            )

    @property
    def rule_type(self) -> str:
        return "change_magnitude"


class CircuitLimitValidator(BaseValidator):
    """
    Tags moves that reach an exchange circuit band.

    The failure carries a flag naming the widest band reached, e.g.
    ``circuit_breaker_10`` for a 12% move with bands (5, 10, 20).
    """

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)
        self.limits = sorted(self.parameters.get("limits", (5, 10, 20)), reverse=True)

    def validate(self, value: Any, record: dict[str, Any], context: ValidationContext | None = None) -> None:
        number = as_number(value)
        reference = _reference(self, context)
        if number is None or reference is None:
            return

        change = percent_change(number, reference)
        for limit in self.limits:
            if change >= limit:
                raise ValidationError(
                    rule_name=self.rule_type,
                    field_name=self.field_name,
                    message=f"Price move of {change:.2f}% reached the {limit}% circuit band",
                    details={"limit": limit, "changePercent": round(change, 2)},
                    flag=f"circuit_breaker_{limit}",
                )

    @property
    def rule_type(self) -> str:
        return "circuit_limit"
