"""
Input validation for audit and quarantine query parameters.

Guards the read paths and the admin CLI against malformed identifiers,
unbounded result sets and path traversal.
"""

import re

QUARANTINE_ID_PATTERN = re.compile(r"^QTN_\d+_[a-z0-9]+$")
EXPORT_FORMATS = ("json", "csv")


class InputValidationError(ValueError):
    """Raised when a caller-supplied parameter is invalid."""
    pass


def validate_identifier(value: str, field_name: str = "identifier") -> str:
    """
    Validate a user or investment identifier.

    Identifiers must be non-empty strings of alphanumerics, hyphens,
    underscores, dots or @.

    Returns:
        The identifier stripped of whitespace

    Raises:
        InputValidationError: If validation fails

    Examples:
        >>> validate_identifier("user-42", "user_id")
        'user-42'
        >>> validate_identifier("bad id!")  # doctest: +SKIP
        InputValidationError: identifier contains invalid characters
    """
    if not value or not isinstance(value, str):
        raise InputValidationError(f"{field_name} must be a non-empty string")

    value = value.strip()

    if not value:
        raise InputValidationError(f"{field_name} cannot be empty or whitespace-only")

    if not re.match(r'^[a-zA-Z0-9_\-\.@]+$', value):
        raise InputValidationError(
            f"{field_name} contains invalid characters. "
            "Only alphanumeric, hyphens, underscores, dots and @ are allowed."
        )

    if len(value) > 255:
        raise InputValidationError(f"{field_name} exceeds maximum length of 255 characters")

    return value


def validate_quarantine_id(quarantine_id: str, field_name: str = "quarantine_id") -> str:
    """
    Validate a quarantine record id such as ``QTN_1700000000000_x8k2m1p0z``.

    Raises:
        InputValidationError: If validation fails
    """
    if not isinstance(quarantine_id, str) or not QUARANTINE_ID_PATTERN.match(quarantine_id.strip()):
        raise InputValidationError(f"{field_name} must look like QTN_<timestamp>_<suffix>, got {quarantine_id!r}")
    return quarantine_id.strip()


def validate_limit(limit: int, field_name: str = "limit", max_limit: int = 10000) -> int:
    """
    Validate a limit parameter for queries.

    Examples:
        >>> validate_limit(100)
        100
        >>> validate_limit(20000)  # doctest: +SKIP
        InputValidationError: limit exceeds maximum of 10000
    """
    if isinstance(limit, bool) or not isinstance(limit, int):
        raise InputValidationError(f"{field_name} must be an integer, got {type(limit).__name__}")

    if limit <= 0:
        raise InputValidationError(f"{field_name} must be a positive integer, got {limit}")

    if limit > max_limit:
        raise InputValidationError(f"{field_name} exceeds maximum of {max_limit}")

    return limit


def validate_offset(offset: int, field_name: str = "offset") -> int:
    """Validate a non-negative offset parameter for queries."""
    if isinstance(offset, bool) or not isinstance(offset, int):
        raise InputValidationError(f"{field_name} must be an integer, got {type(offset).__name__}")

    if offset < 0:
        raise InputValidationError(f"{field_name} must be a non-negative integer, got {offset}")

    return offset


def validate_retention_days(days: int, field_name: str = "retention_days") -> int:
    """Retention horizons run from one day up to ten years."""
    if isinstance(days, bool) or not isinstance(days, int):
        raise InputValidationError(f"{field_name} must be an integer, got {type(days).__name__}")

    if not 1 <= days <= 3650:
        raise InputValidationError(f"{field_name} must be between 1 and 3650, got {days}")

    return days


def validate_export_format(export_format: str) -> str:
    """Accept ``json`` or ``csv`` (case-insensitive)."""
    normalized = (export_format or "").strip().lower()
    if normalized not in EXPORT_FORMATS:
        raise InputValidationError(f"format must be one of {', '.join(EXPORT_FORMATS)}, got {export_format!r}")
    return normalized


def validate_file_path(file_path: str, field_name: str = "file_path") -> str:
    """
    Validate an output file path.

    Rejects path traversal, null bytes and wildcards.

    Examples:
        >>> validate_file_path("/tmp/audit.csv")
        '/tmp/audit.csv'
        >>> validate_file_path("../../../etc/passwd")  # doctest: +SKIP
        InputValidationError: file_path contains path traversal characters
    """
    if not file_path or not isinstance(file_path, str):
        raise InputValidationError(f"{field_name} must be a non-empty string")

    file_path = file_path.strip()

    if ".." in file_path:
        raise InputValidationError(f"{field_name} contains path traversal characters (..)")

    if "\x00" in file_path:
        raise InputValidationError(f"{field_name} contains null bytes")

    if "*" in file_path or "?" in file_path:
        raise InputValidationError(f"{field_name} contains wildcards (* or ?)")

    if len(file_path) > 4096:
        raise InputValidationError(f"{field_name} exceeds maximum length of 4096 characters")

    return file_path
