from __future__ import annotations

from typing import Dict, FrozenSet, Iterable, List, Optional

from .models import CATEGORY_FIELDS, FilterSet, LeadRecord
from .periods import DateRange, parse_date


def _matches_date_range(record: LeadRecord, date_range: DateRange) -> bool:
    if not date_range.is_bounded:
        return True

    record_date = parse_date(record.created_at)
    if record_date is None:
        return False

    if date_range.start is not None:
        start = parse_date(date_range.start)
        if start is None or record_date < start:
            return False
    if date_range.end is not None:
        end = parse_date(date_range.end)
        if end is None or record_date > end:
            return False
    return True


def _matches_categories(record: LeadRecord, category_filters: Dict[str, FrozenSet[str]]) -> bool:
    for attribute, allowed in category_filters.items():
        if getattr(record, attribute) not in allowed:
            return False
    return True


def _within(value: float, lower: Optional[float], upper: Optional[float]) -> bool:
    if lower is not None and value < lower:
        return False
    if upper is not None and value > upper:
        return False
    return True


def matches(record: LeadRecord, filters: FilterSet) -> bool:
    """
    Decide whether ``record`` survives ``filters``.

    Empty category sets and ``None`` bounds never exclude. A record whose date
    cannot be parsed only fails when the window is bounded, and a missing
    category value never satisfies an active category filter.
    """

    if not _matches_date_range(record, filters.date_range):
        return False
    if not _matches_categories(record, filters.as_category_filters()):
        return False
    if not _within(record.ltv, filters.min_ltv, filters.max_ltv):
        return False
    return _within(record.visits_post_trial, filters.min_visits_post_trial, filters.max_visits_post_trial)


def filter_records(records: Iterable[LeadRecord], filters: FilterSet) -> List[LeadRecord]:
    return [record for record in records if matches(record, filters)]


def filter_options(records: Iterable[LeadRecord]) -> Dict[str, List[str]]:
    """
    Distinct non-empty values per category dimension, sorted for dropdowns.
    """

    values: Dict[str, set] = {name: set() for name in CATEGORY_FIELDS}
    for record in records:
        for name, attribute in CATEGORY_FIELDS.items():
            value = getattr(record, attribute)
            if value:
                values[name].add(value)
    return {name: sorted(options) for name, options in values.items()}
