"""
Exception hierarchy raised at sync invocation boundaries.

Classification and recovery never raise; these exceptions exist for the
network call, store operations and setup failures, and carry enough
context (status code, errno name, retry-after) for the error classifier.
"""

from typing import Any


class SyncFailure(Exception):
    """
    Base class for failures raised by the sync core.

    Attributes:
        code: Upstream or errno-style code (e.g. ECONNREFUSED)
        status_code: HTTP status when the failure came from an HTTP call
        retry_after: Provider supplied retry-after in seconds
        details: Structured context
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        status_code: int | None = None,
        retry_after: float | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.retry_after = retry_after
        self.details = details or {}
        super().__init__(message)


class UpstreamHTTPError(SyncFailure):
    """A provider answered with a non-success HTTP status."""

    def __init__(self, status_code: int, message: str | None = None, retry_after: float | None = None,
                 details: dict[str, Any] | None = None):
        super().__init__(
            message or f"Upstream responded with HTTP {status_code}",
            code=str(status_code),
            status_code=status_code,
            retry_after=retry_after,
            details=details,
        )


class CircuitOpenError(SyncFailure):
    """Raised when a breaker rejects a call without executing it."""

    def __init__(self, resource: str, retry_in_ms: int = 0):
        self.resource = resource
        self.retry_in_ms = retry_in_ms
        super().__init__(
            f"Circuit breaker is open for {resource}; retry in {retry_in_ms}ms",
            code="circuit_breaker_open",
            details={"resource": resource, "retryInMs": retry_in_ms},
        )


class AllSourcesFailedError(SyncFailure):
    """Raised by execute_with_fallback when every attempted source failed."""

    def __init__(self, primary: str, attempted_sources: list[str], last_error: BaseException | None = None):
        self.primary = primary
        self.attempted_sources = list(attempted_sources)
        self.last_error = last_error
        super().__init__(
            f"All data sources failed for {primary}. Attempted: {', '.join(self.attempted_sources)}",
            code="all_sources_failed",
            details={
                "primary": primary,
                "attemptedSources": self.attempted_sources,
                "lastError": str(last_error) if last_error else None,
            },
        )


class ConfigurationError(SyncFailure):
    """Sync is misconfigured (unknown source, missing provider, bad rules)."""


class UnknownSourceError(ConfigurationError):
    def __init__(self, source: str):
        self.source = source
        super().__init__(f"Unknown data source: {source}", details={"source": source})


class CredentialError(SyncFailure):
    """Stored credentials are missing, expired or rejected."""


class DataNotFoundError(SyncFailure):
    """Requested data does not exist (empty provider response, unknown quarantine record)."""


class InvestmentNotFoundError(SyncFailure):
    """The requested investment does not exist for the user."""

    def __init__(self, investment_id: str, investment_type: str | None = None):
        self.investment_id = investment_id
        label = (investment_type or "investment").replace("_", " ")
        super().__init__(
            f"{label.capitalize()} not found: {investment_id}",
            code="not_found",
            details={"investmentId": investment_id},
        )
