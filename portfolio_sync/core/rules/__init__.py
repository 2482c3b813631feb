"""
Validation rule engine and configuration management.
"""

from .rule_config import RuleConfigBuilder, RuleConfigLoader, default_rules
from .rule_engine import RuleEngine
from .validation_engine import ValidationEngine

__all__ = [
    "RuleEngine",
    "RuleConfigLoader",
    "RuleConfigBuilder",
    "ValidationEngine",
    "default_rules",
]
