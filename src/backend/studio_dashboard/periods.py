from __future__ import annotations

import calendar
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Optional, Tuple

GRANULARITIES = ("day", "week", "month", "year")

MONTH_NAMES = tuple(calendar.month_name[1:])


@dataclass(frozen=True)
class DateRange:
    """
    Inclusive ``[start, end]`` window expressed as ISO ``YYYY-MM-DD`` strings.

    Either bound may be ``None`` which leaves that side of the window open.
    """

    start: Optional[str] = None
    end: Optional[str] = None

    @property
    def is_bounded(self) -> bool:
        return self.start is not None or self.end is not None


def parse_date(value: Any) -> Optional[date]:
    """
    Best-effort conversion of a record date into a ``date``.

    Accepts ``date``/``datetime`` objects and ISO strings (``2024-03-15``,
    ``2024-03-15T08:30:00Z``). Anything else yields ``None``.
    """

    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        return None


def to_period_key(value: Any, granularity: str) -> Optional[str]:
    """
    Map a date onto the period bucket used by trend charts.

    Week buckets are calendar based (``ceil(day / 7)`` within the month), not
    ISO weeks, so ``2024-03-15`` lands in ``2024-03-W3``.
    """

    if granularity not in GRANULARITIES:
        raise ValueError(f"Unsupported granularity: {granularity!r}")

    parsed = parse_date(value)
    if parsed is None:
        return None
    if granularity == "year":
        return f"{parsed.year:04d}"
    if granularity == "month":
        return f"{parsed.year:04d}-{parsed.month:02d}"
    if granularity == "week":
        week = math.ceil(parsed.day / 7)
        return f"{parsed.year:04d}-{parsed.month:02d}-W{week}"
    return parsed.isoformat()


def _shift_month(year: int, month: int, offset: int) -> Tuple[int, int]:
    index = year * 12 + (month - 1) + offset
    return index // 12, index % 12 + 1


def _month_bounds(year: int, month: int) -> Tuple[date, date]:
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def previous_month_date_range(today: Optional[date] = None) -> DateRange:
    today = today or date.today()
    year, month = _shift_month(today.year, today.month, -1)
    start, end = _month_bounds(year, month)
    return DateRange(start=start.isoformat(), end=end.isoformat())


def current_month_date_range(today: Optional[date] = None) -> DateRange:
    today = today or date.today()
    start, end = _month_bounds(today.year, today.month)
    return DateRange(start=start.isoformat(), end=end.isoformat())


def date_range_for_months(months_back: int, today: Optional[date] = None) -> DateRange:
    """
    Window starting on the first day ``months_back`` months ago and ending on
    the last day of the current month.
    """

    today = today or date.today()
    year, month = _shift_month(today.year, today.month, -months_back)
    start, _ = _month_bounds(year, month)
    _, end = _month_bounds(today.year, today.month)
    return DateRange(start=start.isoformat(), end=end.isoformat())


def preceding_range(date_range: DateRange) -> Optional[DateRange]:
    """
    Window of equal length that ends the day before ``date_range`` starts.

    Returns ``None`` when either bound is missing or unparsable because an
    open-ended window has no well-defined predecessor.
    """

    start = parse_date(date_range.start)
    end = parse_date(date_range.end)
    if start is None or end is None or end < start:
        return None
    length = end - start
    previous_end = start - timedelta(days=1)
    return DateRange(start=(previous_end - length).isoformat(), end=previous_end.isoformat())
