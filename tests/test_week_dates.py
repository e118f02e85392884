"""Tests for src.core.week_dates — week and time-of-day helpers."""

from datetime import date, timedelta

import pytest

from src.core.week_dates import (
    calendar_day_of_week,
    format_time_remaining,
    hhmm_to_minutes,
    is_in_week,
    is_valid_hhmm,
    iso_week_number,
    minutes_to_hhmm,
    monday_of,
    parse_week_start,
    trailing_weeks,
    week_dates,
)


class TestParseWeekStart:
    def test_accepts_monday_string(self):
        assert parse_week_start("2024-06-03") == date(2024, 6, 3)

    def test_accepts_date(self):
        assert parse_week_start(date(2024, 6, 3)) == date(2024, 6, 3)

    def test_rejects_non_monday(self):
        with pytest.raises(ValueError, match="Monday"):
            parse_week_start("2024-06-04")

    def test_rejects_malformed(self):
        with pytest.raises(ValueError, match="YYYY-MM-DD"):
            parse_week_start("June 3rd")


class TestWeekArithmetic:
    def test_monday_of_sunday_is_previous_monday(self):
        assert monday_of(date(2024, 6, 9)) == date(2024, 6, 3)

    def test_week_dates_are_monday_to_sunday(self):
        days = week_dates(date(2024, 6, 3))
        assert len(days) == 7
        assert days[0] == date(2024, 6, 3)
        assert days[-1] == date(2024, 6, 9)

    def test_is_in_week_bounds(self):
        monday = date(2024, 6, 3)
        assert is_in_week(monday, monday)
        assert is_in_week(monday + timedelta(days=6), monday)
        assert not is_in_week(monday + timedelta(days=7), monday)
        assert not is_in_week(monday - timedelta(days=1), monday)

    def test_calendar_day_of_week_is_sunday_zero(self):
        assert calendar_day_of_week(date(2024, 6, 9)) == 0   # Sunday
        assert calendar_day_of_week(date(2024, 6, 3)) == 1   # Monday
        assert calendar_day_of_week(date(2024, 6, 8)) == 6   # Saturday

    def test_iso_week_number(self):
        assert iso_week_number(date(2024, 6, 3)) == 23
        assert iso_week_number(date(2024, 6, 10)) == 24

    def test_trailing_weeks_oldest_first(self):
        weeks = trailing_weeks(date(2024, 6, 24), 4)
        assert weeks == [date(2024, 6, 3), date(2024, 6, 10), date(2024, 6, 17), date(2024, 6, 24)]


class TestTimeOfDay:
    def test_valid_hhmm(self):
        assert is_valid_hhmm("07:05")
        assert is_valid_hhmm("23:59")
        assert not is_valid_hhmm("24:00")
        assert not is_valid_hhmm("7pm")
        assert not is_valid_hhmm("")

    def test_round_trip_minutes(self):
        assert hhmm_to_minutes("18:30") == 1110
        assert minutes_to_hhmm(1110) == "18:30"

    def test_minutes_wrap_past_midnight(self):
        assert minutes_to_hhmm(24 * 60 + 15) == "00:15"


class TestFormatTimeRemaining:
    def test_days_and_hours(self):
        assert format_time_remaining(timedelta(days=2, hours=3, minutes=10)) == "2d 3h"

    def test_hours_and_minutes(self):
        assert format_time_remaining(timedelta(hours=1, minutes=5)) == "1h 5m"

    def test_minutes_only(self):
        assert format_time_remaining(timedelta(minutes=45)) == "45m"

    def test_negative_is_zero(self):
        assert format_time_remaining(timedelta(minutes=-5)) == "0m"

    def test_whole_units_drop_zero_remainder(self):
        assert format_time_remaining(timedelta(days=2)) == "2d"
        assert format_time_remaining(timedelta(hours=1)) == "1h"
