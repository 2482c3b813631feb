"""
Rule configuration management.

Loads per-investment-type validation rules from YAML files and provides the
built-in rule sets used when no file is configured.
"""

from pathlib import Path
from typing import Any

import yaml

from portfolio_sync.core.models import InvestmentType

from .rule_engine import SEVERITIES


class RuleConfigLoader:
    """
    Loads validation rules from YAML configuration files.

    Expected YAML format:
    ```yaml
    rules:
      mutual_funds:
        nav:
          - type: range
            name: nav_positive
            params:
              min_exclusive: 0
          - type: change_magnitude
            name: nav_change
            severity: warning
            flag: large_nav_change
            params:
              max_change_percent: 10
      epf:
        uan:
          - type: regex
            params:
              pattern: "^\\d{12}$"
    ```
    """

    def __init__(self, config_path: str | Path):
        """
        Initialize the rule config loader.

        Args:
            config_path: Path to the YAML configuration file
        """
        self.config_path = Path(config_path)
        if not self.config_path.exists():
            raise FileNotFoundError(f"Rule configuration file not found: {config_path}")

    def load_rules(self) -> dict[str, list[dict[str, Any]]]:
        """
        Load and parse validation rules from YAML file.

        Returns:
            Rule lists keyed by investment type value

        Raises:
            ValueError: If YAML is invalid or missing required fields
        """
        with open(self.config_path) as f:
            config = yaml.safe_load(f)

        if not config or "rules" not in config:
            raise ValueError("Configuration file must contain 'rules' section")

        rule_sets: dict[str, list[dict[str, Any]]] = {}

        for type_name, field_rules in config["rules"].items():
            try:
                investment_type = InvestmentType(type_name).value
            except ValueError:
                raise ValueError(f"Unknown investment type '{type_name}' in rule configuration")

            if not isinstance(field_rules, dict):
                raise ValueError(f"Rules for '{type_name}' must be a mapping of field names")

            rules = []
            for field_name, field_rule_list in field_rules.items():
                if not isinstance(field_rule_list, list):
                    raise ValueError(f"Rules for field '{field_name}' must be a list")

                for idx, rule_def in enumerate(field_rule_list):
                    rules.append(self._parse_rule(field_name, rule_def, idx))

            rule_sets[investment_type] = rules

        return rule_sets

    def _parse_rule(self, field_name: str, rule_def: dict[str, Any], idx: int) -> dict[str, Any]:
        """
        Parse a single rule definition.

        Args:
            field_name: The field this rule applies to
            rule_def: The rule definition from YAML
            idx: Index of this rule for the field (for naming)

        Returns:
            Parsed rule dictionary

        Raises:
            ValueError: If rule definition is invalid
        """
        if "type" not in rule_def:
            raise ValueError(f"Rule for field '{field_name}' is missing 'type'")

        rule_type = rule_def["type"]
        rule_name = rule_def.get("name", f"{field_name}_{rule_type}_{idx}")
        parameters = rule_def.get("params", rule_def.get("parameters", {}))

        severity = rule_def.get("severity", "error")
        if severity not in SEVERITIES:
            raise ValueError(
                f"Invalid severity '{severity}' for rule '{rule_name}'. Must be one of {', '.join(SEVERITIES)}"
            )

        rule = {
            "rule_name": rule_name,
            "rule_type": rule_type,
            "field_name": field_name,
            "parameters": parameters,
            "severity": severity,
            "enabled": rule_def.get("enabled", True),
        }
        if rule_def.get("flag"):
            rule["flag"] = rule_def["flag"]
        if rule_def.get("message"):
            rule["message"] = rule_def["message"]
        return rule


class RuleConfigBuilder:
    """
    Programmatically build rule configurations (built-in presets and tests).
    """

    def __init__(self):
        """Initialize empty rule configuration."""
        self.rules: list[dict[str, Any]] = []

    def add_rule(
        self,
        rule_type: str,
        field_name: str,
        parameters: dict[str, Any] | None = None,
        severity: str = "error",
        rule_name: str | None = None,
        flag: str | None = None,
        message: str | None = None,
    ) -> "RuleConfigBuilder":
        """Add a rule of any registered type."""
        rule = {
            "rule_name": rule_name or f"{field_name}_{rule_type}",
            "rule_type": rule_type,
            "field_name": field_name,
            "parameters": parameters or {},
            "severity": severity,
            "enabled": True,
        }
        if flag:
            rule["flag"] = flag
        if message:
            rule["message"] = message
        self.rules.append(rule)
        return self

    def add_required_field(self, field_name: str, allow_empty_string: bool = False) -> "RuleConfigBuilder":
        """Add a required field rule."""
        return self.add_rule(
            "required_field", field_name, {"allow_empty_string": allow_empty_string},
            rule_name=f"{field_name}_required",
        )

    def add_positive(self, field_name: str, rule_name: str | None = None,
                     message: str | None = None) -> "RuleConfigBuilder":
        """Add a strictly-positive rule (hard error)."""
        return self.add_rule(
            "range", field_name, {"min_exclusive": 0},
            rule_name=rule_name or f"{field_name}_positive", message=message,
        )

    def add_range(
        self,
        field_name: str,
        min_value: float | None = None,
        max_value: float | None = None,
        severity: str = "error",
        rule_name: str | None = None,
        flag: str | None = None,
    ) -> "RuleConfigBuilder":
        """Add a range validation rule."""
        params = {}
        if min_value is not None:
            params["min"] = min_value
        if max_value is not None:
            params["max"] = max_value

        return self.add_rule(
            "range", field_name, params, severity=severity,
            rule_name=rule_name or f"{field_name}_range", flag=flag,
        )

    def add_regex(self, field_name: str, pattern: str, rule_name: str | None = None,
                  message: str | None = None) -> "RuleConfigBuilder":
        """Add a regex validation rule."""
        return self.add_rule(
            "regex", field_name, {"pattern": pattern},
            rule_name=rule_name or f"{field_name}_regex", message=message,
        )

    def add_not_future(self, field_name: str, timezone: str = "UTC") -> "RuleConfigBuilder":
        """Add a not-in-the-future date rule."""
        return self.add_rule(
            "not_future", field_name, {"timezone": timezone}, rule_name=f"{field_name}_not_future",
        )

    def add_change_limit(self, field_name: str, max_change_percent: float, flag: str,
                         rule_name: str | None = None) -> "RuleConfigBuilder":
        """Add a change-magnitude warning tagged with ``flag``."""
        return self.add_rule(
            "change_magnitude", field_name, {"max_change_percent": max_change_percent},
            severity="warning", rule_name=rule_name or f"{field_name}_change", flag=flag,
        )

    def build(self) -> list[dict[str, Any]]:
        """Build and return the rule configuration."""
        return self.rules


MARKET_TIMEZONE = "Asia/Kolkata"
UAN_PATTERN = r"^\d{12}$"
SYMBOL_PATTERN = r"^[A-Z0-9][A-Z0-9&._-]{0,19}$"
EPF_MONTHLY_WAGE_CEILING_CONTRIBUTION = 15000


def _mutual_fund_rules() -> list[dict[str, Any]]:
    return (
        RuleConfigBuilder()
        .add_positive("nav", rule_name="nav_positive", message="NAV must be positive")
        .add_not_future("date", timezone=MARKET_TIMEZONE)
        .add_rule("isin", "isin", rule_name="isin_format")
        .add_change_limit("nav", 10, flag="large_nav_change", rule_name="nav_change")
        .add_range("nav", 1, 10000, severity="warning", rule_name="nav_range", flag="unusual_nav_range")
        .build()
    )


def _stock_rules() -> list[dict[str, Any]]:
    return (
        RuleConfigBuilder()
        .add_positive("price", rule_name="price_positive", message="Stock price must be positive")
        .add_not_future("timestamp", timezone=MARKET_TIMEZONE)
        .add_regex("symbol", SYMBOL_PATTERN, rule_name="symbol_format", message="Invalid ticker symbol")
        .add_change_limit("price", 20, flag="large_price_change", rule_name="price_change")
        .add_rule(
            "market_hours", "price", {"timezone": MARKET_TIMEZONE},
            severity="warning", rule_name="market_hours", flag="outside_market_hours",
        )
        .add_rule(
            "allowed_values", "tradingStatus", {"values": ["ACTIVE", "SUSPENDED", "DELISTED"]},
            severity="warning", rule_name="trading_status", flag="invalid_trading_status",
        )
        .add_rule("circuit_limit", "price", {"limits": [5, 10, 20]}, severity="flag", rule_name="circuit_limit")
        .build()
    )


def _epf_rules() -> list[dict[str, Any]]:
    return (
        RuleConfigBuilder()
        .add_positive("totalBalance", rule_name="balance_positive", message="EPF balance must be positive")
        .add_range("employeeContribution", min_value=0, rule_name="employee_contribution_non_negative")
        .add_range("employerContribution", min_value=0, rule_name="employer_contribution_non_negative")
        .add_regex("uan", UAN_PATTERN, rule_name="uan_format", message="UAN must be exactly 12 digits")
        .add_not_future("date", timezone=MARKET_TIMEZONE)
        .add_range(
            "employeeContribution", max_value=EPF_MONTHLY_WAGE_CEILING_CONTRIBUTION, severity="warning",
            rule_name="contribution_limit", flag="exceeds_contribution_limit",
        )
        .add_rule(
            "contribution_match", "employeeContribution",
            {"other_field": "employerContribution", "tolerance_percent": 5},
            severity="warning", rule_name="contribution_match", flag="contribution_mismatch",
        )
        .add_rule(
            "balance_growth", "totalBalance", {"periods": 2, "margin": 0.1},
            severity="warning", rule_name="balance_growth", flag="unusual_balance_increase",
        )
        .build()
    )


DEFAULT_RULE_BUILDERS = {
    InvestmentType.MUTUAL_FUNDS: _mutual_fund_rules,
    InvestmentType.STOCKS: _stock_rules,
    InvestmentType.EPF: _epf_rules,
}


def default_rules(investment_type: InvestmentType | str) -> list[dict[str, Any]]:
    """
    Built-in rule set for an investment type.

    Returns:
        A fresh list of rule dictionaries, empty for types without rules
    """
    builder = DEFAULT_RULE_BUILDERS.get(InvestmentType(investment_type))
    return builder() if builder else []
