"""Shared date parsing utilities for upstream records."""

from datetime import date, datetime


def parse_iso_date(value) -> date | None:
    """Parse an ISO 8601 date (or date/datetime object) to a ``date``.

    Handles the shapes the Plaid SDK produces:
    - ``date`` objects (deserialized ``date`` fields)
    - ``datetime`` objects (``datetime`` / ``authorized_datetime`` fields)
    - Date-only strings ("2024-06-28")
    - Full timestamps, with or without a Z suffix ("2024-06-28T10:30:00Z")

    Args:
        value: A string, date, datetime, or None.

    Returns:
        The calendar date, or None if the value cannot be parsed.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    value_str = str(value).strip()
    if not value_str:
        return None

    try:
        return date.fromisoformat(value_str)
    except ValueError:
        pass

    # Handle Z suffix: "2024-01-15T10:30:00Z" -> "2024-01-15T10:30:00+00:00"
    if value_str.endswith("Z"):
        value_str = value_str[:-1] + "+00:00"

    try:
        return datetime.fromisoformat(value_str).date()
    except ValueError:
        return None
