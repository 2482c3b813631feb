"""
Error classifier: maps a raw failure onto the closed SyncErrorKind taxonomy.
"""

import asyncio
import socket
from typing import Any

import httpx

from portfolio_sync.core.exceptions import (
    AllSourcesFailedError,
    CircuitOpenError,
    ConfigurationError,
    CredentialError,
    DataNotFoundError,
    InvestmentNotFoundError,
)
from portfolio_sync.core.models import TRANSIENT_ERROR_KINDS, SyncError, SyncErrorKind
from portfolio_sync.resilience.retry import error_code, error_status_code

NETWORK_ERROR_CODES = frozenset({"ENOTFOUND", "ECONNREFUSED", "EHOSTUNREACH", "ENETUNREACH", "ECONNRESET", "EPIPE"})
TIMEOUT_CODES = frozenset({"ETIMEDOUT", "ESOCKETTIMEDOUT"})


def _retry_after(error: BaseException) -> float | None:
    value = getattr(error, "retry_after", None)
    if value is None and isinstance(error, httpx.HTTPStatusError):
        value = error.response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except (TypeError, ValueError):
        return None


def _kind_and_message(error: BaseException) -> tuple[SyncErrorKind, str]:
    message = str(error) or error.__class__.__name__
    lowered = message.lower()

    # Typed failures raised by this package
    if isinstance(error, CredentialError):
        return SyncErrorKind.CREDENTIAL_ERROR, message
    if isinstance(error, ConfigurationError):
        return SyncErrorKind.CONFIGURATION_ERROR, message
    if isinstance(error, DataNotFoundError):
        return SyncErrorKind.DATA_NOT_FOUND, message
    if isinstance(error, InvestmentNotFoundError):
        return SyncErrorKind.NOT_FOUND, message
    if isinstance(error, (CircuitOpenError, AllSourcesFailedError)):
        return SyncErrorKind.SERVICE_UNAVAILABLE, message

    code = error_code(error)
    if code in NETWORK_ERROR_CODES or isinstance(error, (ConnectionError, socket.gaierror, httpx.ConnectError)):
        return SyncErrorKind.NETWORK_ERROR, f"Network error: {message}"
    if (
        code in TIMEOUT_CODES
        or isinstance(error, (TimeoutError, asyncio.TimeoutError, httpx.TimeoutException))
        or "timeout" in lowered
        or "timed out" in lowered
    ):
        return SyncErrorKind.NETWORK_TIMEOUT, f"Request timeout: {message}"

    status = error_status_code(error)
    if status == 401:
        return SyncErrorKind.AUTHENTICATION_FAILED, "Authentication failed"
    if status == 403:
        return SyncErrorKind.AUTHORIZATION_FAILED, "Access denied"
    if status == 404:
        return SyncErrorKind.NOT_FOUND, message
    if status == 429:
        return SyncErrorKind.RATE_LIMIT_EXCEEDED, "Rate limit exceeded"
    if status is not None and status >= 500:
        return SyncErrorKind.SERVICE_UNAVAILABLE, "Service temporarily unavailable"

    if "database" in lowered or "connection" in lowered:
        return SyncErrorKind.DATABASE_ERROR, message
    if "validation" in lowered or "invalid" in lowered:
        return SyncErrorKind.DATA_VALIDATION_FAILED, message
    if "parse" in lowered or "format" in lowered:
        return SyncErrorKind.DATA_PARSING_FAILED, message

    return SyncErrorKind.UNKNOWN_ERROR, message


def classify_error(
    error: BaseException,
    source: str | None = None,
    investment_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> SyncError:
    """
    Classify a raw failure.

    Order: typed package errors, network codes, timeouts, HTTP status,
    then message patterns (database, validation before parse).

    Args:
        error: The raised exception
        source: Data source involved, if known
        investment_id: Investment involved, if known
        details: Extra context merged into the error details

    Returns:
        SyncError with a taxonomy kind; never raises
    """
    kind, message = _kind_and_message(error)

    code = error_code(error)
    status = error_status_code(error)
    error_details: dict[str, Any] = {"errorType": error.__class__.__name__}
    if status is not None:
        error_details["status"] = status
    extra = getattr(error, "details", None)
    if isinstance(extra, dict):
        error_details.update(extra)
    error_details.update(details or {})

    return SyncError(
        kind=kind,
        message=message,
        code=code or (str(status) if status is not None else None),
        details=error_details,
        investment_id=investment_id,
        source=source,
        recoverable=kind in TRANSIENT_ERROR_KINDS,
        retry_after=_retry_after(error) if kind == SyncErrorKind.RATE_LIMIT_EXCEEDED else None,
    )
