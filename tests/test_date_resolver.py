"""Tests for free-text date resolution."""

from datetime import date, datetime, timedelta

import pytest

from date_resolver import (
    WEEKDAY_NAMES,
    canonical,
    format_display_date,
    format_short_date,
    is_past,
    minutes_of_day,
    resolve_date,
    resolve_date_or_raise,
)
from errors import ParseFailure

# A Monday
MONDAY = date(2025, 1, 6)


def test_relative_keywords():
    reference = datetime(2025, 1, 10, 18, 45)
    assert resolve_date("today", reference) == date(2025, 1, 10)
    assert resolve_date("Tomorrow", reference) == date(2025, 1, 11)
    assert resolve_date("day after tomorrow", reference) == date(2025, 1, 12)


def test_relative_keywords_cross_month_and_year():
    assert resolve_date("tomorrow", date(2024, 12, 31)) == date(2025, 1, 1)
    assert resolve_date("day after tomorrow", date(2024, 2, 28)) == date(2024, 3, 1)


def test_today_is_stable_for_the_same_instant():
    reference = datetime(2025, 1, 10, 9, 30)
    first = resolve_date("today", reference)
    assert resolve_date("today", reference) == first
    assert format_display_date(first) == format_display_date(resolve_date("today", reference))


@pytest.mark.parametrize("index,name", list(enumerate(WEEKDAY_NAMES)))
def test_next_weekday_on_same_weekday_is_a_week_later(index, name):
    reference = MONDAY + timedelta(days=index)
    assert reference.weekday() == index
    assert resolve_date(f"next {name}", reference) == reference + timedelta(days=7)


@pytest.mark.parametrize("index,name", list(enumerate(WEEKDAY_NAMES)))
def test_this_weekday_on_same_weekday_is_today(index, name):
    reference = MONDAY + timedelta(days=index)
    assert resolve_date(f"this {name}", reference) == reference
    assert resolve_date(name.capitalize(), reference) == reference


def test_weekday_offsets():
    # Friday 2025-01-10
    friday = date(2025, 1, 10)
    assert resolve_date("next monday", friday) == date(2025, 1, 13)
    assert resolve_date("this thursday", friday) == date(2025, 1, 16)
    assert resolve_date("next Saturday", friday) == date(2025, 1, 11)


def test_iso_literals():
    reference = date(2025, 1, 10)
    assert resolve_date("2025-05-15", reference) == date(2025, 5, 15)
    assert resolve_date("2025-05-15T10:00", reference) == date(2025, 5, 15)


def test_day_month_names():
    reference = date(2025, 1, 10)
    assert resolve_date("15th May", reference) == date(2025, 5, 15)
    assert resolve_date("2nd may", reference) == date(2025, 5, 2)
    assert resolve_date("1st Sept", reference) == date(2025, 9, 1)
    assert resolve_date("15th of May", reference) == date(2025, 5, 15)
    assert resolve_date("15 May 2026", reference) == date(2026, 5, 15)


def test_month_day_names():
    reference = date(2025, 1, 10)
    assert resolve_date("May 2", reference) == date(2025, 5, 2)
    assert resolve_date("DEC 25th", reference) == date(2025, 12, 25)
    assert resolve_date("March 3, 2026", reference) == date(2026, 3, 3)


def test_numeric_dates_are_day_first():
    reference = date(2025, 1, 10)
    assert resolve_date("2/5", reference) == date(2025, 5, 2)
    assert resolve_date("15-05", reference) == date(2025, 5, 15)
    assert resolve_date("2/5/25", reference) == date(2025, 5, 2)
    assert resolve_date("2/5/2026", reference) == date(2026, 5, 2)


def test_unparseable_and_impossible_dates():
    reference = date(2025, 1, 10)
    assert resolve_date("someday", reference) is None
    assert resolve_date("", reference) is None
    assert resolve_date("31/02", reference) is None
    assert resolve_date("30th Febtember", reference) is None


def test_resolve_or_raise():
    assert resolve_date_or_raise("tomorrow", date(2025, 1, 10)) == date(2025, 1, 11)
    with pytest.raises(ParseFailure):
        resolve_date_or_raise("whenever", date(2025, 1, 10))


def test_formatting():
    assert canonical(date(2025, 5, 15)) == "2025-05-15"
    assert format_display_date("2025-05-15") == "Thursday, May 15, 2025"
    assert format_short_date(date(2025, 5, 15)) == "Thu, May 15"


def test_is_past_ignores_time_of_day():
    reference = datetime(2025, 1, 10, 23, 59)
    assert is_past(date(2025, 1, 9), reference)
    assert not is_past(date(2025, 1, 10), reference)
    assert not is_past(date(2025, 1, 11), reference)


@pytest.mark.parametrize(
    "text, minutes",
    [
        ("3 PM", 15 * 60),
        ("3:00 PM", 15 * 60),
        ("4pm", 16 * 60),
        ("15:00", 15 * 60),
        ("9 AM", 9 * 60),
        ("10:30 am", 10 * 60 + 30),
        ("12 PM", 12 * 60),
        ("12 AM", 0),
        ("3 p.m.", 15 * 60),
    ],
)
def test_minutes_of_day(text, minutes):
    assert minutes_of_day(text) == minutes


@pytest.mark.parametrize("text", ["", "noon", "25:00", "13 PM", "9:75", "2025"])
def test_minutes_of_day_rejects_non_times(text):
    assert minutes_of_day(text) is None
