"""Free-text shipping promise parsing.

Turns fragments such as "Arrives Fri, Oct 4", "Get it by 10/12",
"Ships in 3-5 days" or "Delivery tomorrow" into an absolute date. The rules
are a table of (pattern, resolver) pairs tried in order. Text that matches
no rule yields None, which callers treat as "no signal".
"""

import re
from datetime import datetime, timedelta
from typing import Callable, Optional

from dropwatch.utils.timeutil import utcnow

SHIPPING_CUE = re.compile(
    r"arrives|get it by|get it on|ships by|ships|shipping|delivery|delivers",
    re.IGNORECASE,
)

_MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

_WEEKDAYS = {"mon": 0, "tue": 1, "wed": 2, "thu": 3, "fri": 4, "sat": 5, "sun": 6}

# Dates further in the past than this are assumed to mean next year
_ROLLOVER_DAYS = 30


def _midnight(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def _safe_date(year: int, month: int, day: int) -> Optional[datetime]:
    try:
        return datetime(year, month, day)
    except ValueError:
        return None


def _with_rollover(now: datetime, month: int, day: int, year: Optional[int] = None) -> Optional[datetime]:
    if year is not None:
        if year < 100:
            year += 2000
        return _safe_date(year, month, day)
    candidate = _safe_date(now.year, month, day)
    if candidate is None:
        return None
    if candidate < _midnight(now) - timedelta(days=_ROLLOVER_DAYS):
        candidate = _safe_date(now.year + 1, month, day)
    return candidate


def _today(match: re.Match, now: datetime) -> Optional[datetime]:
    return _midnight(now)


def _tomorrow(match: re.Match, now: datetime) -> Optional[datetime]:
    return _midnight(now) + timedelta(days=1)


def _numeric(match: re.Match, now: datetime) -> Optional[datetime]:
    month, day = int(match.group(1)), int(match.group(2))
    year = int(match.group(3)) if match.group(3) else None
    return _with_rollover(now, month, day, year)


def _month_name(match: re.Match, now: datetime) -> Optional[datetime]:
    month = _MONTHS[match.group(1).lower()[:3]]
    year = int(match.group(3)) if match.group(3) else None
    return _with_rollover(now, month, int(match.group(2)), year)


def _relative_days(match: re.Match, now: datetime) -> Optional[datetime]:
    return _midnight(now) + timedelta(days=int(match.group(1)))


def _weekday(match: re.Match, now: datetime) -> Optional[datetime]:
    target = _WEEKDAYS[match.group(1).lower()[:3]]
    days_ahead = (target - now.weekday()) % 7 or 7
    return _midnight(now) + timedelta(days=days_ahead)


_RULES: list[tuple[re.Pattern, Callable[[re.Match, datetime], Optional[datetime]]]] = [
    (re.compile(r"\btoday\b", re.IGNORECASE), _today),
    (re.compile(r"\btomorrow\b", re.IGNORECASE), _tomorrow),
    (re.compile(r"\b(\d{1,2})/(\d{1,2})(?:/(\d{2}|\d{4}))?\b"), _numeric),
    (
        re.compile(
            r"\b(jan|feb|mar|apr|may|jun|jul|aug|sep|sept|oct|nov|dec)[a-z]*\.?\s+(\d{1,2})(?:st|nd|rd|th)?"
            r"(?:,?\s+(\d{4}))?\b",
            re.IGNORECASE,
        ),
        _month_name,
    ),
    (re.compile(r"\bin\s+(\d{1,2})(?:\s*-\s*\d{1,2})?\s+(?:business\s+)?days?\b", re.IGNORECASE), _relative_days),
    (
        re.compile(r"\b(mon|tue|wed|thu|fri|sat|sun)(?:day|sday|nesday|rsday|urday)?\b\.?", re.IGNORECASE),
        _weekday,
    ),
]


def parse_ship_date(text: Optional[str], now: Optional[datetime] = None) -> Optional[datetime]:
    """
    Resolve a shipping/arrival phrase to an absolute (naive UTC) date.

    Args:
        text: Shipping text scraped from a page
        now: Reference time (defaults to the current UTC time)

    Returns:
        Midnight of the promised date, or None if no rule matched
    """
    if not text:
        return None
    now = now or utcnow()
    for pattern, resolve in _RULES:
        match = pattern.search(text)
        if match:
            result = resolve(match, now)
            if result is not None:
                return result
    return None


def has_shipping_cue(text: Optional[str]) -> bool:
    """True when the text reads like a shipping or delivery promise."""
    return bool(text) and SHIPPING_CUE.search(text) is not None
