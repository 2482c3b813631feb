"""
Data provider contract and the source-to-provider registry.
"""

from .base import DataProvider, HttpJsonProvider, RateLimits
from .registry import ProviderRegistry

__all__ = ["DataProvider", "HttpJsonProvider", "ProviderRegistry", "RateLimits"]
