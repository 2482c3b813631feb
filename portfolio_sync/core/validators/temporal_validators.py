"""
Time-aware validators: dates must not be in the future, real-time quotes
must fall inside market hours.
"""

from datetime import time
from typing import Any
from zoneinfo import ZoneInfo

from portfolio_sync.utils.clock import parse_datetime

from .base_validator import BaseValidator, ValidationContext

DEFAULT_MARKET_TIMEZONE = "Asia/Kolkata"


class NotFutureValidator(BaseValidator):
    """
    Fails when a date lies after the end of the current day.

    The calendar day is taken in ``timezone`` (default UTC), so a NAV dated
    "today" in India is accepted even while it is still yesterday in UTC.
    """

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)
        self.timezone = ZoneInfo(self.parameters.get("timezone", "UTC"))

    def validate(self, value: Any, record: dict[str, Any], context: ValidationContext | None = None) -> None:
        if value is None:
            return

        parsed = parse_datetime(value)
        if parsed is None:
            raise self.fail(f"Unparseable date: {value!r}", value=value)

        context = context or ValidationContext()
        today = context.now.astimezone(self.timezone).date()
        if parsed.astimezone(self.timezone).date() > today:
            raise self.fail("Date cannot be in the future", value=str(value))

    @property
    def rule_type(self) -> str:
        return "not_future"


class MarketHoursValidator(BaseValidator):
    """
    Flags real-time quotes received outside the trading session.

    Only applies when the record's ``realtime_field`` (default isRealTime)
    is truthy.

    Parameters:
    - open / close: session bounds as "HH:MM" (default 09:15 / 15:30)
    - timezone: exchange timezone (default Asia/Kolkata)
    - realtime_field: name of the real-time marker field
    """

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)
        self.timezone = ZoneInfo(self.parameters.get("timezone", DEFAULT_MARKET_TIMEZONE))
        self.open = time.fromisoformat(self.parameters.get("open", "09:15"))
        self.close = time.fromisoformat(self.parameters.get("close", "15:30"))
        self.realtime_field = self.parameters.get("realtime_field", "isRealTime")

    def validate(self, value: Any, record: dict[str, Any], context: ValidationContext | None = None) -> None:
        if not record.get(self.realtime_field):
            return

        context = context or ValidationContext()
        local = context.now.astimezone(self.timezone)
        if local.weekday() >= 5 or not (self.open <= local.time() <= self.close):
            raise self.fail(
                "Real-time data received outside market hours",
                localTime=local.strftime("%Y-%m-%d %H:%M"),
                marketOpen=self.open.strftime("%H:%M"),
                marketClose=self.close.strftime("%H:%M"),
            )

    @property
    def rule_type(self) -> str:
        return "market_hours"
