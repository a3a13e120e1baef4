"""Tests for locale-variant timestamp parsing."""

from __future__ import annotations

from datetime import datetime

import pytest

from chatvault.ingestion.timestamps import (
    normalize_digits,
    parse_timestamp,
    strip_direction_marks,
    try_parse_timestamp,
)
from chatvault.pipeline_config import DateOrder

LRM = chr(0x200E)
RLM = chr(0x200F)


def _never() -> datetime:
    raise AssertionError("fallback clock must not be used for a valid timestamp")


class TestNormalization:
    def test_strips_direction_marks(self) -> None:
        assert strip_direction_marks(f"{LRM}12/5/23{RLM} ") == "12/5/23"

    def test_arabic_indic_digits(self) -> None:
        assert normalize_digits("١٢/٥/٢٣") == "12/5/23"

    def test_persian_digits(self) -> None:
        assert normalize_digits("۱۲:۳۰") == "12:30"


class TestMeridiem:
    @pytest.mark.parametrize(
        ("token", "hour"),
        [
            ("1/1/23, 12:00 AM", 0),
            ("1/1/23, 12:00 PM", 12),
            ("1/1/23, 1:30 PM", 13),
            ("1/1/23, 11:59 AM", 11),
            ("1/1/23, 1:30 pm", 13),
        ],
    )
    def test_twelve_hour_conversion(self, token: str, hour: int) -> None:
        assert try_parse_timestamp(token).hour == hour

    def test_arabic_meridiem(self) -> None:
        parsed = try_parse_timestamp("١٢/٥/٢٣، ٣:٤١ م")
        assert parsed == datetime(2023, 12, 5, 15, 41)

    def test_arabic_morning_midnight(self) -> None:
        assert try_parse_timestamp("1/2/23، 12:05 ص").hour == 0

    def test_no_meridiem_is_24_hour(self) -> None:
        assert try_parse_timestamp("1/2/23, 15:07").hour == 15


class TestDateForms:
    def test_month_first_default(self) -> None:
        assert try_parse_timestamp("12/5/23, 3:41 PM") == datetime(2023, 12, 5, 15, 41)

    def test_day_first(self) -> None:
        parsed = try_parse_timestamp("12/5/23, 3:41 PM", DateOrder.DAY_FIRST)
        assert parsed == datetime(2023, 5, 12, 15, 41)

    def test_impossible_reading_is_swapped(self) -> None:
        assert try_parse_timestamp("13/5/23, 10:00") == datetime(2023, 5, 13, 10, 0)
        parsed = try_parse_timestamp("5/13/23, 10:00", DateOrder.DAY_FIRST)
        assert parsed == datetime(2023, 5, 13, 10, 0)

    def test_bracketed_dotted_with_seconds(self) -> None:
        parsed = try_parse_timestamp("[05.12.2023, 15:41:07]", DateOrder.DAY_FIRST)
        assert parsed == datetime(2023, 12, 5, 15, 41, 7)

    def test_four_digit_year_without_comma(self) -> None:
        assert try_parse_timestamp("12/05/2023 08:15") == datetime(2023, 12, 5, 8, 15)

    @pytest.mark.parametrize(("year", "expected"), [("49", 2049), ("50", 1950), ("99", 1999)])
    def test_two_digit_years(self, year: str, expected: int) -> None:
        assert try_parse_timestamp(f"1/1/{year}, 10:00").year == expected


class TestFallback:
    def test_unrecognised_token_uses_clock(self) -> None:
        sentinel = datetime(2001, 1, 1)
        assert try_parse_timestamp("yesterday at noon") is None
        assert parse_timestamp("yesterday at noon", now=lambda: sentinel) is sentinel

    def test_impossible_date_uses_clock(self) -> None:
        sentinel = datetime(2001, 1, 1)
        assert parse_timestamp("31/31/23, 10:00", now=lambda: sentinel) is sentinel

    def test_valid_token_never_uses_clock(self) -> None:
        assert parse_timestamp("12/5/23, 3:41 PM", now=_never) == datetime(2023, 12, 5, 15, 41)
