"""Tests for shared provider value parsing utilities."""

from datetime import date, datetime, timezone, timedelta
from decimal import Decimal

import pytest

from integrations.parsing_utils import (
    ensure_utc,
    parse_bool,
    parse_date,
    parse_decimal,
    parse_iso_datetime,
)


class TestParseDecimal:
    """Tests for parse_decimal."""

    def test_none_returns_none(self):
        assert parse_decimal(None) is None

    def test_decimal_passthrough(self):
        value = Decimal("1.23")
        assert parse_decimal(value) is value

    def test_float_goes_through_str(self):
        assert parse_decimal(0.1) == Decimal("0.1")

    def test_int(self):
        assert parse_decimal(42) == Decimal("42")

    def test_string_with_thousands_separator(self):
        assert parse_decimal(" 1,234.50 ") == Decimal("1234.50")

    def test_bool_is_not_a_number(self):
        assert parse_decimal(True) is None

    @pytest.mark.parametrize("value", ["", "   ", "abc", "1.2.3"])
    def test_unparseable_returns_none(self, value):
        assert parse_decimal(value) is None


class TestParseIsoDatetime:
    """Tests for parse_iso_datetime."""

    def test_none_returns_none(self):
        assert parse_iso_datetime(None) is None

    def test_naive_datetime_gets_utc(self):
        dt = datetime(2024, 6, 28, 12, 0, 0)
        result = parse_iso_datetime(dt)
        assert result == datetime(2024, 6, 28, 12, 0, 0, tzinfo=timezone.utc)

    def test_aware_datetime_passthrough(self):
        dt = datetime(2024, 6, 28, 12, 0, 0, tzinfo=timezone.utc)
        assert parse_iso_datetime(dt) is dt

    def test_date_object(self):
        result = parse_iso_datetime(date(2024, 6, 28))
        assert result == datetime(2024, 6, 28, 0, 0, 0, tzinfo=timezone.utc)

    def test_z_suffix(self):
        result = parse_iso_datetime("2024-01-15T10:30:00Z")
        assert result == datetime(2024, 1, 15, 10, 30, 0, tzinfo=timezone.utc)

    def test_no_colon_tz_negative(self):
        result = parse_iso_datetime("2024-01-15T10:30:00-0500")
        expected_tz = timezone(timedelta(hours=-5))
        assert result == datetime(2024, 1, 15, 10, 30, 0, tzinfo=expected_tz)

    def test_date_only_string(self):
        result = parse_iso_datetime("2024-06-28")
        assert result == datetime(2024, 6, 28, 0, 0, 0, tzinfo=timezone.utc)

    def test_garbage_returns_none(self):
        assert parse_iso_datetime("not-a-date") is None


class TestParseDate:
    """Tests for parse_date."""

    def test_date_passthrough(self):
        assert parse_date(date(2024, 3, 1)) == date(2024, 3, 1)

    def test_datetime_truncated(self):
        assert parse_date(datetime(2024, 3, 1, 23, 59)) == date(2024, 3, 1)

    def test_iso_string(self):
        assert parse_date("2024-03-01") == date(2024, 3, 1)

    def test_unix_seconds(self):
        # SimpleFIN reports posted/transacted_at as epoch seconds
        assert parse_date(1709251200) == date(2024, 3, 1)

    def test_invalid(self):
        assert parse_date("yesterday") is None
        assert parse_date(None) is None


class TestParseBool:
    """Tests for parse_bool."""

    @pytest.mark.parametrize("value", [True, "true", "TRUE", "1", "yes", "t", 1])
    def test_truthy(self, value):
        assert parse_bool(value) is True

    @pytest.mark.parametrize("value", [False, None, "false", "0", "no", "", 0, "pending"])
    def test_falsy(self, value):
        assert parse_bool(value) is False


class TestEnsureUtc:
    """Tests for ensure_utc."""

    def test_naive_gets_utc(self):
        assert ensure_utc(datetime(2024, 1, 1)).tzinfo == timezone.utc

    def test_aware_unchanged(self):
        tz = timezone(timedelta(hours=2))
        dt = datetime(2024, 1, 1, tzinfo=tz)
        assert ensure_utc(dt) is dt
