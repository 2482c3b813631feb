"""
Time helpers shared by the sync core.

Wall-clock values are always timezone-aware UTC; elapsed-time math uses
epoch milliseconds so that clocks can be injected in tests.
"""

import random
import time
from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def epoch_ms() -> int:
    """Return the current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def from_epoch_ms(value: int | float | None) -> datetime | None:
    """Convert epoch milliseconds to an aware UTC datetime."""
    if value is None:
        return None
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def make_id(prefix: str, now_ms: int | None = None) -> str:
    """
    Build a time-ordered identifier such as ``SYNC_1700000000000_k3j9x2a1q``.

    Args:
        prefix: Identifier prefix (SYNC, QTN, intervention)
        now_ms: Timestamp to embed, defaults to now

    Returns:
        Identifier string
    """
    stamp = now_ms if now_ms is not None else epoch_ms()
    suffix = "".join(random.choices("abcdefghijklmnopqrstuvwxyz0123456789", k=9))
    return f"{prefix}_{stamp}_{suffix}"


def parse_datetime(value) -> datetime | None:
    """
    Parse a datetime, ISO string or epoch milliseconds into aware UTC.

    Naive datetimes are assumed to be UTC.

    Returns:
        Parsed datetime or None when the value is empty or unparseable
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        return from_epoch_ms(value)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
