"""
SyncOptions and SyncResult: the caller-facing contract of one sync call.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from portfolio_sync.utils.clock import utc_now

from .sync_error import SyncError, SyncWarning


class SyncOptions(BaseModel):
    """
    Options recognised by ``sync`` and ``sync_single``.

    Attributes:
        force: Sync even when disabled or manually overridden
        dry_run: Run every check but never persist
        source: Preferred primary source
        no_fallback: Only use the resolved primary source
        timeout_ms: Per upstream call timeout
        retry_attempts: Maximum attempts per source
    """

    force: bool = False
    dry_run: bool = False
    source: str | None = None
    no_fallback: bool = False
    timeout_ms: int = Field(30000, gt=0)
    retry_attempts: int = Field(3, ge=1)
    skip_validation: bool = False
    batch_size: int = Field(100, gt=0)
    parallel_requests: int = Field(5, gt=0)
    metadata: dict[str, Any] = Field(default_factory=dict)


class SyncResult(BaseModel):
    """
    Outcome of one sync invocation.

    ``success`` is true iff ``errors`` is empty; ``finalize`` stamps the
    end time and duration.
    """

    success: bool = True
    records_processed: int = Field(0, ge=0)
    records_updated: int = Field(0, ge=0)
    records_skipped: int = Field(0, ge=0)
    errors: list[SyncError] = Field(default_factory=list)
    warnings: list[SyncWarning] = Field(default_factory=list)
    duration_ms: int = Field(0, ge=0)
    source: str | None = None
    start_time: datetime = Field(default_factory=utc_now)
    end_time: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("errors")
    @classmethod
    def check_success_consistency(cls, v, info):
        """Validate that success=True implies no errors were recorded."""
        if info.data.get("success") and len(v) > 0:
            raise ValueError("success=True but errors is not empty")
        return v

    def add_error(self, error: SyncError) -> None:
        self.errors.append(error)
        self.success = False

    def add_warning(self, warning: SyncWarning) -> None:
        self.warnings.append(warning)

    def finalize(self, end_time: datetime | None = None) -> "SyncResult":
        """Stamp end time and duration; success reflects the error list."""
        self.end_time = end_time or utc_now()
        elapsed = (self.end_time - self.start_time).total_seconds() * 1000
        self.duration_ms = max(0, int(elapsed))
        self.success = len(self.errors) == 0
        return self

    def summary(self) -> dict[str, Any]:
        """Compact dictionary used for audit details and notifications."""
        return {
            "success": self.success,
            "recordsProcessed": self.records_processed,
            "recordsUpdated": self.records_updated,
            "recordsSkipped": self.records_skipped,
            "errorCount": len(self.errors),
            "warningCount": len(self.warnings),
            "duration": self.duration_ms,
            "source": self.source,
        }
