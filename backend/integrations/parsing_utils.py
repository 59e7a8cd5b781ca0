"""Shared value parsing utilities for provider payloads.

Centralises the decimal/date/boolean parsing that every normalizer needs:
numeric strings, ISO 8601 strings, date/datetime objects, loose booleans.
"""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation

logger = logging.getLogger(__name__)

_TRUTHY = {"true", "1", "yes", "y", "t"}


def parse_decimal(value) -> Decimal | None:
    """Parse a provider number into a Decimal.

    Floats go through ``str`` first so 0.1 stays 0.1 rather than its binary
    expansion.

    Args:
        value: A Decimal, int, float, numeric string, or None.

    Returns:
        A Decimal, or None if the value is missing or unparseable.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    text = str(value).strip().replace(",", "")
    if not text:
        return None
    try:
        return Decimal(text)
    except InvalidOperation:
        logger.warning("Failed to parse decimal value: %r", value)
        return None


def parse_iso_datetime(value) -> datetime | None:
    """Parse an ISO 8601 string (or date/datetime object) to a UTC-aware datetime.

    Handles a ``Z`` suffix, ``+0000`` offsets without a colon, standard ISO
    offsets and date-only strings.

    Args:
        value: A string, date, datetime, or None.

    Returns:
        A timezone-aware UTC datetime, or None if the value cannot be parsed.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)

    value_str = str(value).strip()

    # Handle Z suffix: "2024-01-15T10:30:00Z" -> "2024-01-15T10:30:00+00:00"
    if value_str.endswith("Z"):
        value_str = value_str[:-1] + "+00:00"

    # Handle "+0000" no-colon tz: "...+0000" -> "...+00:00"
    if (
        len(value_str) >= 5
        and value_str[-5] in ("+", "-")
        and value_str[-4:].isdigit()
        and "T" in value_str
    ):
        value_str = value_str[:-2] + ":" + value_str[-2:]

    try:
        return ensure_utc(datetime.fromisoformat(value_str))
    except (ValueError, TypeError):
        pass

    try:
        d = date.fromisoformat(str(value).strip())
        return datetime(d.year, d.month, d.day, tzinfo=timezone.utc)
    except (ValueError, TypeError):
        return None


def parse_date(value) -> date | None:
    """Parse a provider date (string, date, datetime, Unix seconds) to a date."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(int(value), tz=timezone.utc).date()
        except (ValueError, OverflowError, OSError):
            return None
    dt = parse_iso_datetime(value)
    return dt.date() if dt else None


def parse_bool(value) -> bool:
    """Loose boolean cast: True, "true", "1", "yes" are truthy; everything else is not."""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, (int, float)):
        return value != 0
    return str(value).strip().lower() in _TRUTHY


def ensure_utc(dt: datetime) -> datetime:
    """Ensure a datetime is timezone-aware (UTC).

    If the datetime is naive, attach UTC; otherwise return as-is.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt
