"""
Date parsing helpers for booking emails.

Platforms print stay dates in several shapes: ``01/15/2026``,
``January 20, 2026``, ``Monday, 25 January 2026`` and, for Airbnb, a bare
``Wed, Dec 3`` without a year. Bare dates get their year inferred relative
to "today".
"""
import re
from datetime import date, datetime, timedelta
from typing import Optional, Tuple

# A bare date further in the past than this belongs to next year.
PAST_TOLERANCE = timedelta(days=30)
# A bare date further in the future than this was last year's date.
FUTURE_HORIZON = timedelta(days=183)

FULL_DATE_FORMATS = (
    '%m/%d/%Y',     # 01/15/2026
    '%Y-%m-%d',     # 2026-01-15
    '%B %d, %Y',    # January 15, 2026
    '%B %d %Y',     # January 15 2026
    '%b %d, %Y',    # Jan 15, 2026
    '%b %d %Y',     # Jan 15 2026
    '%d %B %Y',     # 25 January 2026
    '%d %b %Y',     # 25 Jan 2026
)

MONTH_DAY_FORMATS = ('%B %d', '%b %d')

_WEEKDAY_PREFIX = re.compile(
    r'^(?:mon|tue|tues|wed|thu|thur|thurs|fri|sat|sun)[a-z]*\.?,?\s+',
    re.IGNORECASE,
)


def normalize_date_text(text: str) -> str:
    """Collapse whitespace, drop a leading weekday and abbreviation dots."""
    text = re.sub(r'\s+', ' ', text or '').strip().rstrip('.,;')
    text = _WEEKDAY_PREFIX.sub('', text)
    text = re.sub(r'\b([A-Za-z]{3,4})\.', r'\1', text)
    return re.sub(r'\bSept\b', 'Sep', text, flags=re.IGNORECASE)


def parse_full_date(text: str) -> Optional[date]:
    """Parse a date that carries its own year."""
    cleaned = normalize_date_text(text)
    for fmt in FULL_DATE_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt).date()
        except ValueError:
            continue
    return None


def parse_month_day(text: str) -> Optional[Tuple[int, int]]:
    """Parse ``Dec 3`` / ``December 3`` into (month, day)."""
    cleaned = normalize_date_text(text)
    for fmt in MONTH_DAY_FORMATS:
        try:
            # 2000 is a leap year so Feb 29 survives until a real year is chosen
            parsed = datetime.strptime(f"{cleaned} 2000", f"{fmt} %Y")
            return parsed.month, parsed.day
        except ValueError:
            continue
    return None


def _with_year(month: int, day: int, year: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def infer_year(month: int, day: int, today: date) -> Optional[date]:
    """
    Place a year-less date on the calendar.

    The current year is used unless the result lies more than
    ``PAST_TOLERANCE`` in the past (then next year). A current-year guess
    more than ``FUTURE_HORIZON`` ahead is read as last year's date, so a
    "Dec 3" seen on 2026-03-01 resolves to 2025-12-03.

    The horizon is a trade-off: a genuine year-less booking more than six
    months out (a "Check-in: Oct 1" sent on 2026-03-01) also lands in the
    previous year. Platforms that omit the year only do so for near-term
    stays, and callers pass the email's sent date as ``today`` to keep the
    window anchored to when the message was written.

    Args:
        month: Month number
        day: Day of month
        today: Reference date

    Returns:
        Resolved date, or None when the day does not exist in that year
    """
    guess = _with_year(month, day, today.year)
    if guess is None:
        return None
    if guess < today - PAST_TOLERANCE:
        return _with_year(month, day, today.year + 1)
    if guess - today > FUTURE_HORIZON:
        return _with_year(month, day, today.year - 1)
    return guess


def infer_check_out(month: int, day: int, check_in: Optional[date], today: date) -> Optional[date]:
    """Check-out takes the check-in year, rolling over when it would precede check-in."""
    if check_in is None:
        return infer_year(month, day, today)
    candidate = _with_year(month, day, check_in.year)
    if candidate is not None and candidate < check_in:
        candidate = _with_year(month, day, check_in.year + 1)
    return candidate
