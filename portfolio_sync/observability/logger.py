"""
Structured JSON logging for portfolio-sync

Every sync component logs through here so that one sync session, with its
retries, fallbacks, quarantines and escalations, can be followed as JSON
lines keyed by user, investment type and session id. Provider credentials
pass through some of the same call paths, so the formatter masks
credential fields before a record is written.
"""
import logging
import os
import sys
import time
from typing import Any

from pythonjsonlogger import jsonlogger

DEFAULT_LOGGER_NAME = "portfolio-sync"

# Log level mapping
LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# Extra fields whose values never reach the log output
SENSITIVE_FIELDS = frozenset({"password", "pin", "otp", "token", "api_key", "secret", "credentials"})
REDACTED = "[REDACTED]"


def _redact(value: Any) -> Any:
    """Mask sensitive keys inside nested dicts and lists"""
    if isinstance(value, dict):
        return {k: REDACTED if str(k).lower() in SENSITIVE_FIELDS else _redact(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_redact(item) for item in value]
    return value


class SyncJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter for sync records

    Adds timestamp, level, logger and call-site fields, tags every record
    with the service name and masks credential values in extra fields.
    """

    def __init__(self, *args, service: str = DEFAULT_LOGGER_NAME, **kwargs):
        super().__init__(*args, **kwargs)
        self.service = service

    def add_fields(self, log_record: dict, record: logging.LogRecord, message_dict: dict) -> None:
        """
        Add sync context fields to a log record

        Args:
            log_record: Dictionary that becomes the JSON line
            record: Source LogRecord
            message_dict: Fields parsed from a dict message
        """
        super().add_fields(log_record, record, message_dict)

        if not log_record.get("timestamp"):
            log_record["timestamp"] = self.formatTime(record, self.datefmt)

        if log_record.get("level"):
            log_record["level"] = log_record["level"].upper()
        else:
            log_record["level"] = record.levelname

        log_record["service"] = self.service
        log_record["logger"] = record.name
        log_record["module"] = record.module
        log_record["function"] = record.funcName

        for key in list(log_record):
            if key.lower() in SENSITIVE_FIELDS:
                log_record[key] = REDACTED
            elif isinstance(log_record[key], (dict, list)):
                log_record[key] = _redact(log_record[key])


def setup_logger(
    name: str = DEFAULT_LOGGER_NAME,
    level: str | None = None,
    format_type: str | None = None,
) -> logging.Logger:
    """
    Setup and configure a logger

    Args:
        name: Logger name; sync components use "portfolio-sync" or a child of it
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL), defaults to LOG_LEVEL
        format_type: "json" or "text", defaults to LOG_FORMAT

    Returns:
        Configured logger instance
    """
    log_level_str = level or os.getenv("LOG_LEVEL", "INFO")
    log_level = LOG_LEVELS.get(log_level_str.upper(), logging.INFO)
    format_type = format_type or os.getenv("LOG_FORMAT", "json")

    logger = logging.getLogger(name)
    logger.setLevel(log_level)

    # Remove existing handlers to avoid duplicates
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)

    if format_type == "json":
        formatter = SyncJsonFormatter(
            fmt="%(timestamp)s %(level)s %(logger)s %(module)s %(function)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
            service=name.split(".")[0],
        )
    else:
        # Text format for a local terminal
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(module)s:%(funcName)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.propagate = False

    return logger


def get_logger(name: str = DEFAULT_LOGGER_NAME) -> logging.Logger:
    """
    Get a logger instance, configuring it on first use

    Args:
        name: Logger name

    Returns:
        Logger instance
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        return setup_logger(name)

    return logger


class log_operation:
    """
    Context manager that logs the start and end of a sync operation

    Fields given up front, plus any added with ``bind`` once they are known
    (a session id, a record count), are attached to the completion record.

    Usage:
        with log_operation("mutual_funds sync", logger=logger, user_id="u1") as op:
            session_id = await audit.log_sync_start(...)
            op.bind(session_id=session_id)
    """

    def __init__(self, operation_name: str, logger: logging.Logger | None = None, **extra_fields):
        """
        Initialize operation logger

        Args:
            operation_name: Name of the operation, e.g. "epf sync"
            logger: Logger instance (uses the portfolio-sync logger if None)
            **extra_fields: Context fields such as user_id or investment_id
        """
        self.operation_name = operation_name
        self.logger = logger or get_logger()
        self.extra_fields = extra_fields
        self.start_time: float | None = None

    def bind(self, **fields) -> "log_operation":
        """Attach more context fields to the records still to be written"""
        self.extra_fields.update(fields)
        return self

    @property
    def elapsed_ms(self) -> int:
        if self.start_time is None:
            return 0
        return int((time.monotonic() - self.start_time) * 1000)

    def __enter__(self):
        self.start_time = time.monotonic()
        self.logger.info(
            f"Starting: {self.operation_name}",
            extra={"operation": self.operation_name, **self.extra_fields}
        )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        fields = {"operation": self.operation_name, "duration_ms": self.elapsed_ms, **self.extra_fields}

        if exc_type is None:
            self.logger.info(f"Completed: {self.operation_name}", extra={**fields, "status": "success"})
        else:
            self.logger.error(
                f"Failed: {self.operation_name}",
                extra={
                    **fields,
                    "status": "error",
                    "error_type": exc_type.__name__,
                    "error_message": str(exc_val),
                },
                exc_info=True
            )
        return False
