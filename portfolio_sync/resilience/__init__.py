"""
Upstream resilience: circuit breakers, retries and source fallback.
"""

from .circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitBreakerRegistry
from .probes import HttpHealthProber
from .retry import (
    RetryConfig,
    batch_retry,
    compute_delay,
    create_retry_condition,
    is_retryable_error,
    with_retry,
)
from .source_health import FALLBACK_GRAPH, FallbackResult, SourceHealthRegistry

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "FALLBACK_GRAPH",
    "FallbackResult",
    "HttpHealthProber",
    "RetryConfig",
    "SourceHealthRegistry",
    "batch_retry",
    "compute_delay",
    "create_retry_condition",
    "is_retryable_error",
    "with_retry",
]
