"""
Retirement-account checks: matched contributions and plausible balance growth.
"""

from typing import Any

from .base_validator import BaseValidator, ValidationContext, as_number


class ContributionMatchValidator(BaseValidator):
    """
    Fails when this field differs from ``other_field`` by more than
    ``tolerance_percent`` of this field's value.
    """

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)
        self.other_field = self.parameters.get("other_field")
        if not self.other_field:
            raise ValueError("ContributionMatchValidator requires 'other_field' parameter")
        self.tolerance_percent = self.parameters.get("tolerance_percent", 5)

    def validate(self, value: Any, record: dict[str, Any], context: ValidationContext | None = None) -> None:
        own = as_number(value)
        other = as_number(record.get(self.other_field))
        if own is None or other is None:
            return

        difference = abs(other - own)
        if difference > own * self.tolerance_percent / 100:
            raise self.fail(
                f"{self.other_field} does not match {self.field_name} within {self.tolerance_percent}%",
                **{self.field_name: own, self.other_field: other, "difference": difference},
            )

    @property
    def rule_type(self) -> str:
        return "contribution_match"


class BalanceGrowthValidator(BaseValidator):
    """
    Fails when the balance grew by more than the period's contributions allow.

    The allowed increase is ``sum(contribution_fields) * periods * (1 + margin)``;
    the default (two periods, 10% margin) admits a missed month plus interest.
    """

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)
        self.contribution_fields = self.parameters.get(
            "contribution_fields", ("employeeContribution", "employerContribution")
        )
        self.periods = self.parameters.get("periods", 2)
        self.margin = self.parameters.get("margin", 0.1)

    def validate(self, value: Any, record: dict[str, Any], context: ValidationContext | None = None) -> None:
        balance = as_number(value)
        previous = as_number((context.current if context else {}).get(self.field_name))
        if balance is None or previous is None:
            return

        contributions = sum(as_number(record.get(f)) or 0 for f in self.contribution_fields)
        increase = balance - previous
        allowed = contributions * self.periods * (1 + self.margin)
        if increase > allowed:
            raise self.fail(
                "Balance increase exceeds expected contributions",
                previousBalance=previous,
                newBalance=balance,
                increase=increase,
                expectedMax=allowed,
            )

    @property
    def rule_type(self) -> str:
        return "balance_growth"
