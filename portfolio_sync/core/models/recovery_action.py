"""
RecoveryAction model: the decision returned for a classified sync error.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class RecoveryActionKind(str, Enum):
    RETRY = "retry"
    DELAY = "delay"
    FALLBACK_SOURCE = "fallback_source"
    SKIP_RECORD = "skip_record"
    DISABLE_SYNC = "disable_sync"
    MANUAL_INTERVENTION = "manual_intervention"
    IGNORE = "ignore"


class RecoveryAction(BaseModel):
    """
    Decision produced by the recovery strategy selector.

    Attributes:
        action: Exactly one action kind
        delay_ms: Wait before acting (retry/delay), never negative
        source: Replacement source for fallback_source
        reason: Free-text explanation
        max_retries: Remaining retry budget hint
        metadata: Extra context (strategy, escalation, intervention id)
    """

    action: RecoveryActionKind
    delay_ms: int | None = Field(None, ge=0)
    source: str | None = None
    reason: str = ""
    max_retries: int = Field(3, ge=0)
    metadata: dict[str, Any] = Field(default_factory=dict)

    class Config:
        json_schema_extra = {
            "example": {
                "action": "delay",
                "delay_ms": 60000,
                "reason": "Rate limited, waiting 60000ms before retry",
                "max_retries": 2,
                "metadata": {"strategy": "delay_and_retry"},
            }
        }
