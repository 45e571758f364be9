"""
Turn free-text date expressions from WhatsApp messages into calendar dates.

Resolution order, first match wins:

1. today / tomorrow / day after tomorrow
2. next <weekday>      (always in the future: said on a Monday, "next monday" is 7 days away)
3. this <weekday>      (today counts; a bare weekday name behaves the same)
4. ISO literals        (2025-05-15, 2025-05-15T10:00)
5. 15th May / May 15   (year defaults to the reference year)
6. D/M, D-M, D/M/Y     (day first; two-digit years are 20YY)

Anything else is unparseable and resolves to None.
"""

import re
from datetime import date, datetime, timedelta
from typing import Optional, Union

from errors import ParseFailure

WEEKDAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

MONTHS = {
    "january": 1, "jan": 1,
    "february": 2, "feb": 2,
    "march": 3, "mar": 3,
    "april": 4, "apr": 4,
    "may": 5,
    "june": 6, "jun": 6,
    "july": 7, "jul": 7,
    "august": 8, "aug": 8,
    "september": 9, "sep": 9, "sept": 9,
    "october": 10, "oct": 10,
    "november": 11, "nov": 11,
    "december": 12, "dec": 12,
}

RELATIVE_DAYS = {
    "today": 0,
    "tomorrow": 1,
    "day after tomorrow": 2,
}

_ORDINAL = r"(?:st|nd|rd|th)?"
_WEEKDAY_PATTERN = re.compile(r"^(?:(next|this)\s+)?(" + "|".join(WEEKDAY_NAMES) + r")$")
_DAY_MONTH_PATTERN = re.compile(r"^(\d{1,2})" + _ORDINAL + r"\s+(?:of\s+)?([a-z]+)\.?(?:,?\s+(\d{4}))?$")
_MONTH_DAY_PATTERN = re.compile(r"^([a-z]+)\.?\s+(\d{1,2})" + _ORDINAL + r"(?:,?\s+(\d{4}))?$")
_NUMERIC_PATTERN = re.compile(r"^(\d{1,2})[/-](\d{1,2})(?:[/-](\d{2}|\d{4}))?$")


def _normalize(text: str) -> str:
    text = re.sub(r"\s+", " ", text.strip().lower())
    return text.rstrip(".,!?")


def _reference_date(reference: Union[date, datetime]) -> date:
    return reference.date() if isinstance(reference, datetime) else reference


def _weekday_offset(target: int, today: int, strictly_future: bool) -> int:
    offset = (target - today) % 7
    if strictly_future and offset == 0:
        offset = 7
    return offset


def _build_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def resolve_date(text: str, reference: Union[date, datetime]) -> Optional[date]:
    """
    Resolve a date expression relative to a reference instant.

    Args:
        text: Date expression as typed by the customer
        reference: "Now" in the business' local time

    Returns:
        The calendar date, or None when the expression is unparseable
    """
    if not text or not text.strip():
        return None

    today = _reference_date(reference)
    expr = _normalize(text)

    if expr in RELATIVE_DAYS:
        return today + timedelta(days=RELATIVE_DAYS[expr])

    match = _WEEKDAY_PATTERN.match(expr)
    if match:
        qualifier, weekday = match.groups()
        offset = _weekday_offset(WEEKDAY_NAMES.index(weekday), today.weekday(), qualifier == "next")
        return today + timedelta(days=offset)

    try:
        return date.fromisoformat(expr)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(expr).date()
    except ValueError:
        pass

    match = _DAY_MONTH_PATTERN.match(expr)
    if match and match.group(2) in MONTHS:
        day, month_name, year = match.groups()
        return _build_date(int(year) if year else today.year, MONTHS[month_name], int(day))

    match = _MONTH_DAY_PATTERN.match(expr)
    if match and match.group(1) in MONTHS:
        month_name, day, year = match.groups()
        return _build_date(int(year) if year else today.year, MONTHS[month_name], int(day))

    match = _NUMERIC_PATTERN.match(expr)
    if match:
        day, month, year = match.groups()
        if year is None:
            full_year = today.year
        elif len(year) == 2:
            full_year = 2000 + int(year)
        else:
            full_year = int(year)
        return _build_date(full_year, int(month), int(day))

    return None


def resolve_date_or_raise(text: str, reference: Union[date, datetime]) -> date:
    resolved = resolve_date(text, reference)
    if resolved is None:
        raise ParseFailure(f"Could not understand the date '{text}'")
    return resolved


def canonical(value: date) -> str:
    """Canonical storage form: ISO calendar date, no time, no timezone."""
    return value.isoformat()


def format_display_date(value: Union[str, date]) -> str:
    """Thursday, May 15, 2025"""
    if isinstance(value, str):
        try:
            value = date.fromisoformat(value[:10])
        except ValueError:
            return value
    return f"{value:%A}, {value:%B} {value.day}, {value.year}"


def format_short_date(value: Union[str, date]) -> str:
    """Thu, May 15"""
    if isinstance(value, str):
        try:
            value = date.fromisoformat(value[:10])
        except ValueError:
            return value
    return f"{value:%a}, {value:%b} {value.day}"


def is_past(value: date, reference: Union[date, datetime]) -> bool:
    """Date-only comparison: anything before the reference day is in the past."""
    return value < _reference_date(reference)


_CLOCK_PATTERN = re.compile(r"^(\d{1,2})(?:[:.](\d{2}))?\s*(?:([ap])\.?m\.?)?$")


def minutes_of_day(text: str) -> Optional[int]:
    """
    Minutes since midnight for a free-text time such as "3 PM", "3:00 PM",
    "4pm" or "15:00". Returns None when the text is not a time of day.
    """
    match = _CLOCK_PATTERN.match(_normalize(text or ""))
    if not match:
        return None
    hour, minute, meridiem = int(match.group(1)), int(match.group(2) or 0), match.group(3)
    if minute > 59:
        return None
    if meridiem:
        if not 1 <= hour <= 12:
            return None
        hour = hour % 12 + (12 if meridiem == "p" else 0)
    elif hour > 23:
        return None
    return hour * 60 + minute
