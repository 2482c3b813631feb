"""
SourceHealth model: liveness bookkeeping for one upstream provider.
"""

from datetime import datetime

from pydantic import BaseModel, Field


class SourceHealth(BaseModel):
    """
    Health record for a data source.

    A source turns unhealthy only after three consecutive failures and
    is healthy again after a single success.

    Attributes:
        source: Source identifier
        is_healthy: Current verdict
        consecutive_failures: Failures since the last success
        last_error: Text of the last failure
        last_check: When the source was last probed or used
        response_time_ms: Latency of the last probe
        uptime: Rolling score between 0 and 100
    """

    source: str
    is_healthy: bool = True
    consecutive_failures: int = Field(0, ge=0)
    last_error: str | None = None
    last_check: datetime | None = None
    response_time_ms: int | None = Field(None, ge=0)
    uptime: float = Field(100.0, ge=0.0, le=100.0)
