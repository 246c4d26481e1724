"""Relative post-time normalization.

The search page renders post times as Japanese relative strings ("3分前",
"2時間前", "17:22", "1月5日"). These are resolved against the instant the
page was captured. Every computation runs on a fixed +09:00 offset so the
result never depends on the host timezone.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Callable

JST = timezone(timedelta(hours=9), "JST")

_FULLWIDTH_DIGITS = str.maketrans("０１２３４５６７８９：", "0123456789:")

_SECONDS_AGO_RE = re.compile(r"(\d+)\s*秒前")
_MINUTES_AGO_RE = re.compile(r"(\d+)\s*分前")
_HOURS_AGO_RE = re.compile(r"(\d+)\s*時間前")
_DAYS_AGO_RE = re.compile(r"(\d+)\s*日前")
_CLOCK_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
_FULL_DATE_RE = re.compile(r"(\d{4})年\s*(\d{1,2})月\s*(\d{1,2})日(?:\s*(\d{1,2}):(\d{2}))?")
_MONTH_DAY_RE = re.compile(r"(\d{1,2})月\s*(\d{1,2})日(?:\s*(\d{1,2}):(\d{2}))?")


def to_jst(value: datetime) -> datetime:
    """Shift an instant onto the +09:00 offset; naive values are read as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(JST)


def to_jst_iso(value: datetime) -> str:
    return to_jst(value).isoformat(timespec="milliseconds")


def normalize_relative_time(raw_time_text: str | None, captured_at: datetime) -> datetime:
    """Resolve `raw_time_text` against `captured_at`.

    Unrecognized or impossible values fall back to `captured_at`; this never
    raises.
    """
    captured = to_jst(captured_at)
    if not raw_time_text:
        return captured
    text = raw_time_text.strip().translate(_FULLWIDTH_DIGITS)
    if not text:
        return captured

    for parser in _PARSERS:
        try:
            resolved = parser(text, captured)
        except (ValueError, OverflowError):
            return captured
        if resolved is not None:
            return resolved
    return captured


def _seconds_ago(text: str, captured: datetime) -> datetime | None:
    match = _SECONDS_AGO_RE.search(text)
    if match is None:
        return None
    return captured - timedelta(seconds=int(match.group(1)))


def _minutes_ago(text: str, captured: datetime) -> datetime | None:
    match = _MINUTES_AGO_RE.search(text)
    if match is None:
        return None
    return captured - timedelta(minutes=int(match.group(1)))


def _hours_ago(text: str, captured: datetime) -> datetime | None:
    match = _HOURS_AGO_RE.search(text)
    if match is None:
        return None
    return captured - timedelta(hours=int(match.group(1)))


def _days_ago(text: str, captured: datetime) -> datetime | None:
    match = _DAYS_AGO_RE.search(text)
    if match is None:
        return None
    return captured - timedelta(days=int(match.group(1)))


def _clock_time(text: str, captured: datetime) -> datetime | None:
    match = _CLOCK_RE.match(text)
    if match is None:
        return None
    resolved = captured.replace(
        hour=int(match.group(1)),
        minute=int(match.group(2)),
        second=0,
        microsecond=0,
    )
    if resolved > captured:
        resolved -= timedelta(days=1)
    return resolved


def _full_date(text: str, captured: datetime) -> datetime | None:
    match = _FULL_DATE_RE.search(text)
    if match is None:
        return None
    year, month, day, hour, minute = match.groups()
    return datetime(
        int(year),
        int(month),
        int(day),
        int(hour or 0),
        int(minute or 0),
        tzinfo=JST,
    )


def _month_day(text: str, captured: datetime) -> datetime | None:
    match = _MONTH_DAY_RE.search(text)
    if match is None:
        return None
    month, day, hour, minute = match.groups()
    resolved = datetime(
        captured.year,
        int(month),
        int(day),
        int(hour or 0),
        int(minute or 0),
        tzinfo=JST,
    )
    if resolved > captured:
        # raises ValueError for 2月29日 when the previous year is not a leap year
        resolved = resolved.replace(year=resolved.year - 1)
    return resolved


_PARSERS: tuple[Callable[[str, datetime], datetime | None], ...] = (
    _seconds_ago,
    _minutes_ago,
    _hours_ago,
    _days_ago,
    _clock_time,
    _full_date,
    _month_day,
)
