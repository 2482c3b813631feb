"""
Unit tests for structured logging, metrics and input validation helpers.
"""

import json

import pytest

from portfolio_sync.observability.logger import log_operation, setup_logger
from portfolio_sync.observability.metrics import (
    REGISTRY,
    generate_metrics,
    record_circuit_transition,
    record_sync_run,
)
from portfolio_sync.utils.validation import (
    InputValidationError,
    validate_export_format,
    validate_file_path,
    validate_identifier,
    validate_limit,
    validate_offset,
    validate_quarantine_id,
    validate_retention_days,
)


@pytest.mark.unit
class TestJsonLogging:
    """Tests for the JSON formatter and log_operation"""

    def test_json_fields(self, capsys):
        """Records are one JSON object with level, logger and extra fields"""
        logger = setup_logger("portfolio-sync.test-json", level="INFO", format_type="json")

        logger.info("Fallback used", extra={"source": "mf_central"})

        record = json.loads(capsys.readouterr().out.strip())
        assert record["message"] == "Fallback used"
        assert record["level"] == "INFO"
        assert record["logger"] == "portfolio-sync.test-json"
        assert record["source"] == "mf_central"

    def test_level_filtering(self, capsys):
        """Records below the configured level are dropped"""
        logger = setup_logger("portfolio-sync.test-level", level="WARNING", format_type="text")

        logger.info("hidden")
        logger.warning("shown")

        out = capsys.readouterr().out
        assert "hidden" not in out
        assert "shown" in out

    def test_log_operation_failure(self, capsys):
        """A failing block is logged with its error and re-raised"""
        logger = setup_logger("portfolio-sync.test-operation", level="INFO", format_type="json")

        with pytest.raises(RuntimeError):
            with log_operation("epf sync", logger=logger, user_id="user-1"):
                raise RuntimeError("boom")

        lines = [json.loads(line) for line in capsys.readouterr().out.strip().splitlines()]
        assert lines[0]["message"] == "Starting: epf sync"
        assert lines[1]["status"] == "error"
        assert lines[1]["error_type"] == "RuntimeError"
        assert lines[1]["user_id"] == "user-1"

    def test_credentials_masked(self, capsys):
        """Credential-named fields are masked, nested ones included"""
        logger = setup_logger("portfolio-sync.test-redact", level="INFO", format_type="json")

        logger.info("Storing credentials", extra={
            "password": "hunter2",
            "credentials": {"uan": "100200300400", "password": "hunter2"},
            "provider": {"name": "epfo", "otp": "123456"},
        })

        out = capsys.readouterr().out
        record = json.loads(out.strip())
        assert "hunter2" not in out
        assert record["password"] == "[REDACTED]"
        assert record["credentials"] == "[REDACTED]"
        assert record["provider"] == {"name": "epfo", "otp": "[REDACTED]"}
        assert record["service"] == "portfolio-sync"

    def test_log_operation_bind(self, capsys):
        """Fields bound mid-operation appear on the completion record"""
        logger = setup_logger("portfolio-sync.test-bind", level="INFO", format_type="json")

        with log_operation("stocks sync", logger=logger, user_id="user-1") as op:
            op.bind(session_id="SYNC_1_abc")

        start, end = [json.loads(line) for line in capsys.readouterr().out.strip().splitlines()]
        assert "session_id" not in start
        assert end["session_id"] == "SYNC_1_abc"
        assert end["status"] == "success"
        assert end["duration_ms"] >= 0


@pytest.mark.unit
class TestMetrics:
    """Tests for the metric helpers"""

    def test_record_sync_run(self):
        """Sync runs update the run counter and record outcomes"""
        before = REGISTRY.get_sample_value(
            "sync_runs_total", {"investment_type": "epf", "status": "partial"}
        ) or 0

        record_sync_run("epf", "partial", 1.5, updated=2, failed=1)

        assert REGISTRY.get_sample_value(
            "sync_runs_total", {"investment_type": "epf", "status": "partial"}
        ) == before + 1
        assert REGISTRY.get_sample_value(
            "sync_records_total", {"investment_type": "epf", "outcome": "failed"}
        ) >= 1

    def test_circuit_gauge(self):
        """The gauge follows the latest transition"""
        record_circuit_transition("metrics-test", "open")
        assert REGISTRY.get_sample_value("sync_circuit_breaker_state", {"resource": "metrics-test"}) == 2

        record_circuit_transition("metrics-test", "half_open")
        assert REGISTRY.get_sample_value("sync_circuit_breaker_state", {"resource": "metrics-test"}) == 1

    def test_exposition(self):
        """The registry renders in Prometheus text format"""
        record_sync_run("stocks", "success", 0.2)
        assert b"sync_runs_total" in generate_metrics()


@pytest.mark.unit
class TestInputValidation:
    """Tests for the query parameter guards"""

    def test_identifiers(self):
        """Identifiers are stripped and restricted to a safe alphabet"""
        assert validate_identifier("  user-42  ") == "user-42"
        assert validate_identifier("ops@example.com") == "ops@example.com"

        with pytest.raises(InputValidationError, match="non-empty"):
            validate_identifier("")
        with pytest.raises(InputValidationError, match="cannot be empty"):
            validate_identifier("   ")
        with pytest.raises(InputValidationError, match="invalid characters"):
            validate_identifier("user'; DROP TABLE--")
        with pytest.raises(InputValidationError, match="maximum length"):
            validate_identifier("u" * 256)

    def test_quarantine_ids(self):
        """Quarantine ids must look like QTN_<timestamp>_<suffix>"""
        assert validate_quarantine_id("QTN_1700000000000_x8k2m1p0z") == "QTN_1700000000000_x8k2m1p0z"

        for bad in ("QTN_abc_x", "qtn_1_a", "QTN_1_a/../b", 42):
            with pytest.raises(InputValidationError):
                validate_quarantine_id(bad)

    def test_paging(self):
        """Limits are bounded and offsets are non-negative"""
        assert validate_limit(10000) == 10000
        assert validate_offset(0) == 0

        with pytest.raises(InputValidationError, match="positive"):
            validate_limit(0)
        with pytest.raises(InputValidationError, match="exceeds maximum"):
            validate_limit(20000)
        with pytest.raises(InputValidationError, match="integer"):
            validate_limit(True)
        with pytest.raises(InputValidationError, match="non-negative"):
            validate_offset(-1)

    def test_retention_and_format(self):
        """Retention is 1-3650 days and export formats are json or csv"""
        assert validate_retention_days(365) == 365
        assert validate_export_format(" CSV ") == "csv"

        with pytest.raises(InputValidationError):
            validate_retention_days(3651)
        with pytest.raises(InputValidationError, match="format"):
            validate_export_format("xlsx")

    def test_file_paths(self):
        """Traversal, null bytes and wildcards are refused"""
        assert validate_file_path("/tmp/audit.csv") == "/tmp/audit.csv"

        with pytest.raises(InputValidationError, match="path traversal"):
            validate_file_path("../../../etc/passwd")
        with pytest.raises(InputValidationError, match="null bytes"):
            validate_file_path("/tmp/audit\x00.csv")
        with pytest.raises(InputValidationError, match="wildcards"):
            validate_file_path("/tmp/*.csv")

    def test_is_a_value_error(self):
        """Callers catching ValueError also catch input errors"""
        assert issubclass(InputValidationError, ValueError)
