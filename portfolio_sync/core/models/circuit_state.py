"""
CircuitBreakerState model: a point-in-time snapshot of one breaker.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerState(BaseModel):
    """
    Snapshot returned by ``CircuitBreaker.get_state``.

    Attributes:
        name: Resource the breaker guards
        state: Current state
        failure_count: Bounded failure counter
        success_count: Successes accumulated while half-open
        last_failure_time: Last recorded failure
        last_success_time: Last recorded success
        config: Thresholds the breaker was built with
    """

    name: str
    state: CircuitState
    failure_count: int = Field(0, ge=0)
    success_count: int = Field(0, ge=0)
    last_failure_time: datetime | None = None
    last_success_time: datetime | None = None
    config: dict[str, Any] = Field(default_factory=dict)

    class Config:
        frozen = True
