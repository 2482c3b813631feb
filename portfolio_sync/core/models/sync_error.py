"""
SyncError and SyncWarning models: classified failures and soft issues
raised while syncing a single investment or a whole batch.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from portfolio_sync.utils.clock import utc_now


class SyncErrorKind(str, Enum):
    """Closed taxonomy of sync failure kinds."""

    NETWORK_ERROR = "network_error"
    NETWORK_TIMEOUT = "network_timeout"
    AUTHENTICATION_FAILED = "authentication_failed"
    AUTHORIZATION_FAILED = "authorization_failed"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    SERVICE_UNAVAILABLE = "service_unavailable"
    DATABASE_ERROR = "database_error"
    DATA_VALIDATION_FAILED = "data_validation_failed"
    DATA_PARSING_FAILED = "data_parsing_failed"
    CONFIGURATION_ERROR = "configuration_error"
    CREDENTIAL_ERROR = "credential_error"
    NOT_FOUND = "not_found"
    DATA_NOT_FOUND = "data_not_found"
    UNKNOWN_ERROR = "unknown_error"


TRANSIENT_ERROR_KINDS = frozenset({
    SyncErrorKind.NETWORK_ERROR,
    SyncErrorKind.NETWORK_TIMEOUT,
    SyncErrorKind.RATE_LIMIT_EXCEEDED,
    SyncErrorKind.SERVICE_UNAVAILABLE,
})


class SyncError(BaseModel):
    """
    A classified sync failure.

    Attributes:
        kind: Taxonomy value
        message: Human readable message
        code: Upstream code (errno name or HTTP status) when known
        details: Structured context
        investment_id: Investment the error relates to, if any
        source: Data source the error came from, if any
        timestamp: When the error was classified
        recoverable: Whether automatic recovery is meaningful
        retry_after: Provider supplied retry-after in seconds
    """

    kind: SyncErrorKind
    message: str
    code: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    investment_id: str | None = None
    source: str | None = None
    timestamp: datetime = Field(default_factory=utc_now)
    recoverable: bool = True
    retry_after: float | None = Field(None, ge=0)

    class Config:
        json_schema_extra = {
            "example": {
                "kind": "rate_limit_exceeded",
                "message": "Rate limit exceeded",
                "code": "429",
                "details": {"status": 429},
                "source": "yahoo_finance",
                "recoverable": True,
                "retry_after": 60,
            }
        }


class SyncWarning(BaseModel):
    """A non-fatal issue surfaced in a SyncResult."""

    type: str
    message: str
    investment_id: str | None = None
    source: str | None = None
    timestamp: datetime = Field(default_factory=utc_now)
    details: dict[str, Any] = Field(default_factory=dict)
