"""
Unit tests for booking date parsing and year inference.
"""
from datetime import date

import pytest

from src.booking_parser.dates import (
    infer_check_out, infer_year, normalize_date_text, parse_full_date, parse_month_day
)


class TestParseDates:

    @pytest.mark.parametrize("text, expected", [
        ("01/15/2026", date(2026, 1, 15)),
        ("January 20, 2026", date(2026, 1, 20)),
        ("Jan 20 2026", date(2026, 1, 20)),
        ("Monday, 25 January 2026", date(2026, 1, 25)),
        ("Sept. 4, 2026", date(2026, 9, 4)),
    ])
    def test_parse_full_date(self, text, expected):
        assert parse_full_date(text) == expected

    def test_parse_full_date_rejects_garbage(self):
        assert parse_full_date("sometime soon") is None
        assert parse_full_date("13/45/2026") is None

    def test_parse_month_day(self):
        assert parse_month_day("Wed, Dec 3") == (12, 3)
        assert parse_month_day("February 29") == (2, 29)
        assert parse_month_day("Smarch 3") is None

    def test_normalize_strips_weekday_and_dots(self):
        assert normalize_date_text("  Thu.,  Dec. 3 ") == "Dec 3"


class TestInferYear:

    def test_past_guess_more_than_a_horizon_ahead_is_last_year(self):
        assert infer_year(12, 3, today=date(2026, 3, 1)) == date(2025, 12, 3)

    def test_near_future_keeps_current_year(self):
        assert infer_year(12, 3, today=date(2025, 11, 20)) == date(2025, 12, 3)

    def test_recent_past_keeps_current_year(self):
        assert infer_year(3, 1, today=date(2026, 3, 20)) == date(2026, 3, 1)

    def test_older_than_tolerance_rolls_to_next_year(self):
        assert infer_year(1, 5, today=date(2026, 4, 1)) == date(2027, 1, 5)

    def test_feb_29_in_common_year(self):
        assert infer_year(2, 29, today=date(2026, 2, 1)) is None


class TestInferCheckOut:

    def test_uses_check_in_year(self):
        assert infer_check_out(12, 6, date(2025, 12, 3), today=date(2026, 3, 1)) == date(2025, 12, 6)

    def test_rolls_over_new_year(self):
        assert infer_check_out(1, 2, date(2025, 12, 30), today=date(2025, 12, 1)) == date(2026, 1, 2)

    def test_without_check_in_infers_from_today(self):
        assert infer_check_out(12, 6, None, today=date(2025, 11, 20)) == date(2025, 12, 6)
