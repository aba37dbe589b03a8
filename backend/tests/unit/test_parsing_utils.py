"""Unit tests for integrations.parsing_utils."""

from datetime import date, datetime, timezone

import pytest

from integrations.parsing_utils import parse_iso_date


@pytest.mark.parametrize(
    "value, expected",
    [
        ("2024-06-28", date(2024, 6, 28)),
        (" 2024-06-28 ", date(2024, 6, 28)),
        ("2024-06-28T10:30:00Z", date(2024, 6, 28)),
        ("2024-06-28T23:30:00-04:00", date(2024, 6, 28)),
        (date(2024, 6, 28), date(2024, 6, 28)),
        (datetime(2024, 6, 28, 10, 30, tzinfo=timezone.utc), date(2024, 6, 28)),
    ],
)
def test_parses_supported_shapes(value, expected):
    assert parse_iso_date(value) == expected


@pytest.mark.parametrize("value", [None, "", "   ", "28/06/2024", "not a date"])
def test_unparseable_returns_none(value):
    assert parse_iso_date(value) is None
