"""
Unit tests for validation rules.

Includes property-based testing with hypothesis for validators.
"""

from datetime import datetime, timezone

import pytest
from hypothesis import given
from hypothesis import strategies as st

from portfolio_sync.core.validators import (
    AllowedValuesValidator,
    BalanceGrowthValidator,
    ChangeMagnitudeValidator,
    CircuitLimitValidator,
    ContributionMatchValidator,
    CustomValidator,
    IsinValidator,
    MarketHoursValidator,
    NotFutureValidator,
    RangeValidator,
    RegexValidator,
    RequiredFieldValidator,
    ValidationContext,
    ValidationError,
    isin_check_digit_valid,
)

# 13:00 IST on a Wednesday
NOW = datetime(2024, 6, 12, 7, 30, tzinfo=timezone.utc)


def at(now: datetime = NOW, **current) -> ValidationContext:
    return ValidationContext(current=current, now=now)


class TestRequiredFieldValidator:
    """Tests for RequiredFieldValidator"""

    def test_valid_required_field(self):
        """Test validation passes for present field"""
        validator = RequiredFieldValidator("isin")
        record = {"isin": "INE002A01018"}
        validator.validate(record["isin"], record)  # Should not raise

    def test_missing_field_raises_error(self):
        """Test validation fails for missing field"""
        validator = RequiredFieldValidator("nav")

        with pytest.raises(ValidationError) as exc_info:
            validator.validate(None, {"date": "2024-06-11"})

        assert "missing" in str(exc_info.value).lower()
        assert exc_info.value.field_name == "nav"

    def test_null_and_blank_rejected(self):
        """Null values and blank strings fail"""
        validator = RequiredFieldValidator("symbol")

        with pytest.raises(ValidationError, match="null"):
            validator.validate(None, {"symbol": None})
        with pytest.raises(ValidationError, match="empty"):
            validator.validate("  ", {"symbol": "  "})

    @given(st.text(min_size=1).filter(lambda s: s.strip() != ""))
    def test_property_any_nonempty_string_passes(self, value):
        """Property test: any non-empty, non-whitespace string should pass"""
        validator = RequiredFieldValidator("field")
        record = {"field": value}
        validator.validate(record["field"], record)  # Should not raise


class TestRangeValidator:
    """Tests for RangeValidator"""

    def test_exclusive_minimum(self):
        """min_exclusive rejects zero and accepts positives"""
        validator = RangeValidator("nav", {"min_exclusive": 0})
        validator.validate(0.01, {})

        with pytest.raises(ValidationError, match="greater than 0"):
            validator.validate(0, {})

    def test_numeric_strings_accepted(self):
        """Providers sending "123.45" are treated as numbers"""
        validator = RangeValidator("price", {"min": 1, "max": 100000})
        validator.validate("2534.65", {})

        with pytest.raises(ValidationError, match="numeric"):
            validator.validate("N.A.", {})

    def test_booleans_are_not_numbers(self):
        """True is not accepted as the number 1"""
        with pytest.raises(ValidationError):
            RangeValidator("nav", {"min": 0}).validate(True, {})

    def test_missing_value_skipped(self):
        """None is left to the required field rule"""
        RangeValidator("nav", {"min": 1}).validate(None, {})

    def test_requires_a_bound(self):
        """A range without bounds is a configuration error"""
        with pytest.raises(ValueError):
            RangeValidator("nav", {})

    @given(st.floats(min_value=1, max_value=10000, allow_nan=False))
    def test_property_values_inside_range_pass(self, value):
        """Property test: values within [min, max] never fail"""
        RangeValidator("nav", {"min": 1, "max": 10000}).validate(value, {})


class TestIsinValidator:
    """Tests for IsinValidator"""

    @pytest.mark.parametrize("isin", ["INE002A01018", "INF109K01VQ1", "US0378331005"])
    def test_valid_isins(self, isin):
        """Well-formed ISINs with correct check digits pass"""
        assert isin_check_digit_valid(isin)
        IsinValidator("isin").validate(isin, {})

    def test_bad_check_digit(self):
        """A wrong trailing digit fails the Luhn check"""
        with pytest.raises(ValidationError, match="check digit"):
            IsinValidator("isin").validate("INE002A01019", {})

    def test_check_digit_can_be_disabled(self):
        """check_digit=False only checks the format"""
        IsinValidator("isin", {"check_digit": False}).validate("INE002A01019", {})

    @pytest.mark.parametrize("value", ["ine002a01018", "INE002A0101", "12E002A01018", 12345])
    def test_bad_format(self, value):
        """Lowercase, short, digit-prefixed and non-string values fail"""
        with pytest.raises(ValidationError, match="format"):
            IsinValidator("isin").validate(value, {})


class TestRegexAndAllowedValues:
    """Tests for RegexValidator and AllowedValuesValidator"""

    def test_uan_must_be_twelve_digits(self):
        """The pattern must match the whole value"""
        validator = RegexValidator("uan", {"pattern": r"^\d{12}$"})
        validator.validate("100200300400", {})

        with pytest.raises(ValidationError):
            validator.validate("1002003004001", {})

    def test_invalid_pattern(self):
        """Broken regexes are rejected at construction"""
        with pytest.raises(ValueError, match="Invalid regex"):
            RegexValidator("uan", {"pattern": "[0-9"})

    def test_allowed_values_case_insensitive(self):
        """Allowed values compare case-insensitively by default"""
        validator = AllowedValuesValidator("tradingStatus", {"values": ["ACTIVE", "SUSPENDED"]})
        validator.validate("active", {})

        with pytest.raises(ValidationError):
            validator.validate("HALTED", {})


class TestTemporalValidators:
    """Tests for NotFutureValidator and MarketHoursValidator"""

    def test_future_date_rejected(self):
        """A date after today fails"""
        validator = NotFutureValidator("date", {"timezone": "Asia/Kolkata"})
        validator.validate("2024-06-12", {}, at())

        with pytest.raises(ValidationError, match="future"):
            validator.validate("2024-06-13", {}, at())

    def test_local_day_used(self):
        """Today's date in India passes while UTC is still on the previous day"""
        late_utc = datetime(2024, 6, 11, 20, 0, tzinfo=timezone.utc)
        NotFutureValidator("date", {"timezone": "Asia/Kolkata"}).validate("2024-06-12", {}, at(late_utc))

        with pytest.raises(ValidationError):
            NotFutureValidator("date").validate("2024-06-12", {}, at(late_utc))

    def test_unparseable_date(self):
        """Garbage dates fail instead of passing silently"""
        with pytest.raises(ValidationError, match="Unparseable"):
            NotFutureValidator("date").validate("11/06/2024", {}, at())

    def test_realtime_quote_inside_session(self):
        """Real-time quotes during the session pass"""
        MarketHoursValidator("price").validate(2500, {"isRealTime": True}, at())

    @pytest.mark.parametrize("now", [
        datetime(2024, 6, 12, 11, 0, tzinfo=timezone.utc),   # 16:30 IST
        datetime(2024, 6, 15, 7, 30, tzinfo=timezone.utc),   # Saturday
    ])
    def test_realtime_quote_outside_session(self, now):
        """Real-time quotes after close or at the weekend fail"""
        with pytest.raises(ValidationError, match="outside market hours"):
            MarketHoursValidator("price").validate(2500, {"isRealTime": True}, at(now))

    def test_non_realtime_quotes_ignored(self):
        """Closing prices are accepted at any time"""
        MarketHoursValidator("price").validate(2500, {}, at(datetime(2024, 6, 15, tzinfo=timezone.utc)))


class TestChangeValidators:
    """Tests for ChangeMagnitudeValidator and CircuitLimitValidator"""

    def test_change_within_limit(self):
        """Moves up to the limit pass"""
        ChangeMagnitudeValidator("nav", {"max_change_percent": 10}).validate(10.9, {}, at(referenceValue=10))

    def test_change_over_limit(self):
        """Moves beyond the limit fail with details"""
        validator = ChangeMagnitudeValidator("nav", {"max_change_percent": 10})

        with pytest.raises(ValidationError) as exc_info:
            validator.validate(12, {}, at(referenceValue=10))

        assert exc_info.value.details == {"previousValue": 10.0, "newValue": 12.0, "changePercent": 20.0}

    @pytest.mark.parametrize("current", [{}, {"referenceValue": 0}, {"referenceValue": None}])
    def test_no_reference_skips(self, current):
        """Without a positive reference there is nothing to compare"""
        ChangeMagnitudeValidator("nav", {"max_change_percent": 1}).validate(500, {}, at(**current))

    @pytest.mark.parametrize("price,flag", [
        (2600, None),
        (2650, "circuit_breaker_5"),
        (2800, "circuit_breaker_10"),
        (2000, "circuit_breaker_20"),
    ])
    def test_circuit_bands(self, price, flag):
        """The widest band reached names the flag"""
        validator = CircuitLimitValidator("price", {"limits": [5, 10, 20]})
        if flag is None:
            validator.validate(price, {}, at(referenceValue=2500))
            return

        with pytest.raises(ValidationError) as exc_info:
            validator.validate(price, {}, at(referenceValue=2500))
        assert exc_info.value.flag == flag


class TestContributionValidators:
    """Tests for EPF contribution and balance checks"""

    def test_matching_contributions(self):
        """Employer contribution within tolerance passes"""
        validator = ContributionMatchValidator(
            "employeeContribution", {"other_field": "employerContribution", "tolerance_percent": 5}
        )
        validator.validate(1800, {"employerContribution": 1850})

        with pytest.raises(ValidationError):
            validator.validate(1800, {"employerContribution": 1500})

    def test_balance_growth(self):
        """Balance may grow by at most two periods of contributions plus margin"""
        validator = BalanceGrowthValidator("totalBalance")
        record = {"employeeContribution": 1800, "employerContribution": 1800}

        validator.validate(257000, record, at(totalBalance=250000))
        with pytest.raises(ValidationError) as exc_info:
            validator.validate(260000, record, at(totalBalance=250000))

        assert exc_info.value.details["increase"] == 10000
        assert exc_info.value.details["expectedMax"] == pytest.approx(7920)

    def test_balance_growth_without_history(self):
        """A first sync has nothing to compare against"""
        BalanceGrowthValidator("totalBalance").validate(1_000_000, {}, at())


class TestCustomValidator:
    """Tests for CustomValidator"""

    def test_exception_becomes_validation_error(self):
        """Arbitrary exceptions are wrapped with the configured message"""
        def check(value, record, context):
            if value % 2:
                raise ValueError("odd quantity")

        validator = CustomValidator("quantity", {"validator_func": check, "error_message": "Lot size"})
        validator.validate(10, {})

        with pytest.raises(ValidationError, match="Lot size: odd quantity"):
            validator.validate(3, {})

    def test_requires_callable(self):
        """Non-callables are rejected"""
        with pytest.raises(ValueError):
            CustomValidator("quantity", {"validator_func": "nope"})
