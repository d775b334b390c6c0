from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence

from .filters import filter_records, matches
from .metrics import derive
from .models import CATEGORY_FIELDS, Aggregate, DerivedMetrics, FilterSet, LeadRecord, PeriodMetrics
from .periods import GRANULARITIES, to_period_key

logger = logging.getLogger(__name__)

UNKNOWN_LABEL = "Unknown"

GroupKeyFn = Callable[[LeadRecord], Optional[str]]


def categorical_key(attribute: str) -> GroupKeyFn:
    """Group by a record attribute; missing or empty values land in ``Unknown``."""

    def _key(record: LeadRecord) -> Optional[str]:
        return getattr(record, attribute) or UNKNOWN_LABEL

    return _key


def period_key(granularity: str) -> GroupKeyFn:
    """Group by date bucket; records without a usable date yield ``None``."""

    if granularity not in GRANULARITIES:
        raise ValueError(f"Unsupported granularity: {granularity!r}")

    def _key(record: LeadRecord) -> Optional[str]:
        return to_period_key(record.created_at, granularity)

    return _key


def key_function(dimension: str) -> GroupKeyFn:
    if dimension in CATEGORY_FIELDS:
        return categorical_key(CATEGORY_FIELDS[dimension])
    if dimension in GRANULARITIES:
        return period_key(dimension)
    raise ValueError(f"Unsupported dimension: {dimension!r}")


def aggregate(records: Iterable[LeadRecord], group_key_fn: GroupKeyFn) -> Dict[str, Aggregate]:
    """
    Accumulate ``records`` into one :class:`Aggregate` per group key.

    Records whose key is ``None`` are skipped; only time buckets produce
    ``None`` so categorical groupings always account for every record.
    """

    groups: Dict[str, Aggregate] = defaultdict(Aggregate)
    skipped = 0
    for record in records:
        key = group_key_fn(record)
        if key is None:
            skipped += 1
            continue
        groups[key].add(record)

    if skipped:
        logger.debug("Skipped %d records without a usable group key", skipped)
    return dict(groups)


def aggregate_by(records: Iterable[LeadRecord], dimension: str) -> Dict[str, DerivedMetrics]:
    groups = aggregate(records, key_function(dimension))
    return {key: derive(totals, group=key) for key, totals in groups.items()}


def compute_period_series(records: Iterable[LeadRecord], granularity: str) -> List[PeriodMetrics]:
    """
    Per-period metrics ordered by ascending period key.

    Keys are zero-padded so lexical order matches chronological order.
    """

    groups = aggregate(records, period_key(granularity))
    return [
        PeriodMetrics(period=key, metrics=derive(groups[key], group=key))
        for key in sorted(groups)
    ]


def total_aggregate(records: Iterable[LeadRecord]) -> Aggregate:
    totals = Aggregate()
    for record in records:
        totals.add(record)
    return totals


@dataclass
class LeadDataset:
    records: Sequence[LeadRecord]

    def __post_init__(self) -> None:
        self.records = tuple(self.records)

    def iter_records(self, filters: FilterSet) -> Iterator[LeadRecord]:
        for record in self.records:
            if matches(record, filters):
                yield record

    def filtered(self, filters: FilterSet) -> List[LeadRecord]:
        return filter_records(self.records, filters)

    def totals(self, filters: FilterSet) -> DerivedMetrics:
        return derive(total_aggregate(self.iter_records(filters)), group="all")

    def aggregate_by(self, filters: FilterSet, dimension: str) -> Dict[str, DerivedMetrics]:
        return aggregate_by(self.iter_records(filters), dimension)

    def period_series(self, filters: FilterSet, granularity: str) -> List[PeriodMetrics]:
        return compute_period_series(self.iter_records(filters), granularity)
