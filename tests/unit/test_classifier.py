"""
Unit tests for the error classifier.

Includes a property test that classification is total.
"""

import errno

import httpx
import pytest
from hypothesis import given
from hypothesis import strategies as st

from portfolio_sync.core.exceptions import (
    AllSourcesFailedError,
    CircuitOpenError,
    ConfigurationError,
    CredentialError,
    DataNotFoundError,
    InvestmentNotFoundError,
    UpstreamHTTPError,
)
from portfolio_sync.core.models import SyncErrorKind
from portfolio_sync.recovery.classifier import classify_error


def http_status_error(status: int, headers: dict[str, str] | None = None) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://example.invalid/nav")
    response = httpx.Response(status, headers=headers or {}, request=request)
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)


@pytest.mark.unit
class TestClassifyError:
    """Tests for classify_error"""

    @pytest.mark.parametrize("error,kind", [
        (OSError(errno.ECONNREFUSED, "Connection refused"), SyncErrorKind.NETWORK_ERROR),
        (ConnectionResetError("reset by peer"), SyncErrorKind.NETWORK_ERROR),
        (httpx.ConnectError("dns failure"), SyncErrorKind.NETWORK_ERROR),
        (TimeoutError("read timed out"), SyncErrorKind.NETWORK_TIMEOUT),
        (httpx.ReadTimeout("slow upstream"), SyncErrorKind.NETWORK_TIMEOUT),
        (UpstreamHTTPError(401), SyncErrorKind.AUTHENTICATION_FAILED),
        (UpstreamHTTPError(403), SyncErrorKind.AUTHORIZATION_FAILED),
        (UpstreamHTTPError(404), SyncErrorKind.NOT_FOUND),
        (UpstreamHTTPError(429), SyncErrorKind.RATE_LIMIT_EXCEEDED),
        (UpstreamHTTPError(502), SyncErrorKind.SERVICE_UNAVAILABLE),
        (http_status_error(503), SyncErrorKind.SERVICE_UNAVAILABLE),
        (RuntimeError("database is locked"), SyncErrorKind.DATABASE_ERROR),
        (ValueError("validation failed for nav"), SyncErrorKind.DATA_VALIDATION_FAILED),
        (ValueError("could not parse response body"), SyncErrorKind.DATA_PARSING_FAILED),
        (CredentialError("EPFO password expired"), SyncErrorKind.CREDENTIAL_ERROR),
        (ConfigurationError("no provider for amfi"), SyncErrorKind.CONFIGURATION_ERROR),
        (DataNotFoundError("empty response"), SyncErrorKind.DATA_NOT_FOUND),
        (InvestmentNotFoundError("mf-9"), SyncErrorKind.NOT_FOUND),
        (CircuitOpenError("source:nse", 1000), SyncErrorKind.SERVICE_UNAVAILABLE),
        (AllSourcesFailedError("amfi", ["amfi", "mf_central"]), SyncErrorKind.SERVICE_UNAVAILABLE),
        (RuntimeError("something unexpected"), SyncErrorKind.UNKNOWN_ERROR),
    ])
    def test_kinds(self, error, kind):
        """Each failure shape maps to its taxonomy kind"""
        assert classify_error(error).kind == kind

    def test_rate_limit_carries_retry_after(self):
        """429 errors keep the provider supplied retry-after"""
        error = classify_error(UpstreamHTTPError(429, retry_after=60), source="yahoo_finance")

        assert error.retry_after == 60
        assert error.source == "yahoo_finance"
        assert error.code == "429"
        assert error.details["status"] == 429
        assert error.recoverable is True

    def test_retry_after_header_from_httpx(self):
        """The Retry-After header of an httpx error is read"""
        error = classify_error(http_status_error(429, {"retry-after": "30"}))
        assert error.kind == SyncErrorKind.RATE_LIMIT_EXCEEDED
        assert error.retry_after == 30

    def test_errno_code_recorded(self):
        """Network errno names end up in the error code"""
        error = classify_error(OSError(errno.ECONNREFUSED, "Connection refused"), investment_id="mf-1")
        assert error.code == "ECONNREFUSED"
        assert error.investment_id == "mf-1"

    def test_authentication_not_recoverable(self):
        """Only transient kinds are marked recoverable"""
        assert classify_error(UpstreamHTTPError(401)).recoverable is False
        assert classify_error(UpstreamHTTPError(401)).message == "Authentication failed"

    def test_extra_details_merged(self):
        """Caller details and error details are merged"""
        error = classify_error(
            AllSourcesFailedError("amfi", ["amfi"]), details={"userId": "user-1"}
        )
        assert error.details["attemptedSources"] == ["amfi"]
        assert error.details["userId"] == "user-1"
        assert error.details["errorType"] == "AllSourcesFailedError"

    @given(
        exc_type=st.sampled_from([Exception, RuntimeError, ValueError, KeyError, OSError, TypeError]),
        message=st.text(max_size=80),
    )
    def test_property_classification_is_total(self, exc_type, message):
        """Property test: any exception classifies to a taxonomy kind without raising"""
        error = classify_error(exc_type(message))
        assert error.kind in set(SyncErrorKind)
        assert error.message
