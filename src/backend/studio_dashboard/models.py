from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence

from .periods import DateRange, previous_month_date_range

logger = logging.getLogger(__name__)

# FilterSet field -> LeadRecord attribute
CATEGORY_FIELDS: Dict[str, str] = {
    "location": "location",
    "source": "source",
    "stage": "stage",
    "status": "status",
    "associate": "associate",
    "channel": "channel",
    "trial_status": "trial_status",
    "conversion_status": "conversion_status",
    "retention_status": "retention_status",
    "is_new": "is_new",
    "first_visit_type": "first_visit_type",
    "home_location": "home_location",
    "trainer": "trainer",
    "payment_method": "payment_method",
}

_CAMEL_ALIASES: Dict[str, str] = {
    "trialStatus": "trial_status",
    "conversionStatus": "conversion_status",
    "retentionStatus": "retention_status",
    "isNew": "is_new",
    "firstVisitType": "first_visit_type",
    "homeLocation": "home_location",
    "paymentMethod": "payment_method",
    "createdAt": "created_at",
    "firstVisitDate": "created_at",
    "visitsPostTrial": "visits_post_trial",
    "conversionSpan": "conversion_span",
    "memberId": "id",
    "firstVisitLocation": "location",
    "center": "location",
    "trainerName": "trainer",
    "minLTV": "min_ltv",
    "maxLTV": "max_ltv",
    "minVisitsPostTrial": "min_visits_post_trial",
    "maxVisitsPostTrial": "max_visits_post_trial",
    "dateRange": "date_range",
}


def normalize_keys(payload: Mapping[str, Any]) -> Dict[str, Any]:
    """Map camelCase payload keys onto record and filter field names."""
    normalized: Dict[str, Any] = {}
    for key, value in payload.items():
        target = _CAMEL_ALIASES.get(key, key)
        # Explicit snake_case keys win over aliases that map onto the same field.
        if target in normalized and key != target:
            continue
        normalized[target] = value
    return normalized


def _coerce_number(value: Any, name: str, record_id: str) -> float:
    if value is None or value == "":
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        logger.warning("Record %s has non-numeric %s=%r; defaulting to 0", record_id, name, value)
        return 0.0
    if not math.isfinite(number):
        logger.warning("Record %s has non-finite %s=%r; defaulting to 0", record_id, name, value)
        return 0.0
    return number


def _coerce_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def _coerce_bound(value: Any, name: str) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        bound = float(value)
    except (TypeError, ValueError):
        logger.warning("Ignoring non-numeric filter bound %s=%r", name, value)
        return None
    if not math.isfinite(bound):
        logger.warning("Ignoring non-finite filter bound %s=%r", name, value)
        return None
    return bound


@dataclass(frozen=True)
class LeadRecord:
    """
    One lead or client row as supplied by the fetch layer.

    Leads carry their creation date in ``created_at``; client (conversion and
    retention) rows store the first visit date there. Numeric fields are always
    numbers: absent values are defaulted to 0 when the record is built, so the
    filter and aggregation code never has to guess.
    """

    id: str
    created_at: Optional[str] = None
    source: Optional[str] = None
    stage: Optional[str] = None
    status: Optional[str] = None
    channel: Optional[str] = None
    location: Optional[str] = None
    associate: Optional[str] = None
    trial_status: Optional[str] = None
    conversion_status: Optional[str] = None
    retention_status: Optional[str] = None
    is_new: Optional[str] = None
    first_visit_type: Optional[str] = None
    home_location: Optional[str] = None
    trainer: Optional[str] = None
    payment_method: Optional[str] = None
    remarks: Optional[str] = None
    ltv: float = 0.0
    visits: int = 0
    visits_post_trial: int = 0
    conversion_span: float = 0.0

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "LeadRecord":
        """
        Build a record from a JSON-shaped row (camelCase or snake_case keys).
        """

        data = normalize_keys(payload)
        record_id = str(data.get("id") or "")
        return cls(
            id=record_id,
            created_at=_coerce_text(data.get("created_at")),
            source=_coerce_text(data.get("source")),
            stage=_coerce_text(data.get("stage")),
            status=_coerce_text(data.get("status")),
            channel=_coerce_text(data.get("channel")),
            location=_coerce_text(data.get("location")),
            associate=_coerce_text(data.get("associate")),
            trial_status=_coerce_text(data.get("trial_status")),
            conversion_status=_coerce_text(data.get("conversion_status")),
            retention_status=_coerce_text(data.get("retention_status")),
            is_new=_coerce_text(data.get("is_new")),
            first_visit_type=_coerce_text(data.get("first_visit_type")),
            home_location=_coerce_text(data.get("home_location")),
            trainer=_coerce_text(data.get("trainer")),
            payment_method=_coerce_text(data.get("payment_method")),
            remarks=_coerce_text(data.get("remarks")),
            ltv=_coerce_number(data.get("ltv"), "ltv", record_id),
            visits=int(_coerce_number(data.get("visits"), "visits", record_id)),
            visits_post_trial=int(
                _coerce_number(data.get("visits_post_trial"), "visits_post_trial", record_id)
            ),
            conversion_span=_coerce_number(data.get("conversion_span"), "conversion_span", record_id),
        )


def _as_frozenset(values: Optional[Iterable[str]]) -> FrozenSet[str]:
    if not values:
        return frozenset()
    if isinstance(values, str):
        return frozenset({values})
    return frozenset(values)


@dataclass(frozen=True)
class FilterSet:
    """
    Filters shared by the funnel and conversion pages.

    ``date_range`` bounds are inclusive and default to the previous calendar
    month. Every category set restricts the matching record attribute; an
    empty set means "no restriction". Numeric bounds left as ``None`` are
    unbounded.
    """

    date_range: DateRange = field(default_factory=previous_month_date_range)
    location: FrozenSet[str] = frozenset()
    source: FrozenSet[str] = frozenset()
    stage: FrozenSet[str] = frozenset()
    status: FrozenSet[str] = frozenset()
    associate: FrozenSet[str] = frozenset()
    channel: FrozenSet[str] = frozenset()
    trial_status: FrozenSet[str] = frozenset()
    conversion_status: FrozenSet[str] = frozenset()
    retention_status: FrozenSet[str] = frozenset()
    is_new: FrozenSet[str] = frozenset()
    first_visit_type: FrozenSet[str] = frozenset()
    home_location: FrozenSet[str] = frozenset()
    trainer: FrozenSet[str] = frozenset()
    payment_method: FrozenSet[str] = frozenset()
    min_ltv: Optional[float] = None
    max_ltv: Optional[float] = None
    min_visits_post_trial: Optional[float] = None
    max_visits_post_trial: Optional[float] = None

    @classmethod
    def all_time(cls, **overrides: Any) -> "FilterSet":
        return cls.from_dict({"date_range": DateRange(), **overrides})

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "FilterSet":
        """
        Accept the JSON filter object used by the dashboard pages.

        Lists become frozensets so the result stays hashable, and a missing
        ``dateRange`` falls back to the previous calendar month.
        """

        data = normalize_keys(payload)
        kwargs: Dict[str, Any] = {}

        date_range = data.get("date_range")
        if isinstance(date_range, DateRange):
            kwargs["date_range"] = date_range
        elif isinstance(date_range, Mapping):
            kwargs["date_range"] = DateRange(start=date_range.get("start"), end=date_range.get("end"))

        for name in CATEGORY_FIELDS:
            if name in data:
                kwargs[name] = _as_frozenset(data[name])

        for name in ("min_ltv", "max_ltv", "min_visits_post_trial", "max_visits_post_trial"):
            bound = _coerce_bound(data.get(name), name)
            if bound is not None:
                kwargs[name] = bound

        return cls(**kwargs)

    def as_category_filters(self) -> Dict[str, FrozenSet[str]]:
        """Active category restrictions keyed by record attribute."""
        return {
            attribute: getattr(self, name)
            for name, attribute in CATEGORY_FIELDS.items()
            if getattr(self, name)
        }


@dataclass
class Aggregate:
    """
    Running counters for one group of records.

    Instances live for a single aggregation pass; ``derive`` in ``metrics``
    turns them into read-only :class:`DerivedMetrics`.
    """

    total: int = 0
    converted: int = 0
    trials_completed: int = 0
    trials_scheduled: int = 0
    proximity_issues: int = 0
    retained: int = 0
    new_clients: int = 0
    total_ltv: float = 0.0
    total_visits: float = 0.0
    total_visits_post_trial: float = 0.0
    conversion_span_total: float = 0.0
    conversion_span_count: int = 0

    def add(self, record: LeadRecord) -> None:
        stage = record.stage or ""
        remarks = (record.remarks or "").lower()

        self.total += 1
        if record.conversion_status == "Converted":
            self.converted += 1
        if stage == "Trial Completed":
            self.trials_completed += 1
        if "Trial" in stage:
            self.trials_scheduled += 1
        if "Proximity" in stage or "proximity" in remarks:
            self.proximity_issues += 1
        if record.retention_status == "Retained":
            self.retained += 1
        if record.is_new == "New":
            self.new_clients += 1
        self.total_ltv += record.ltv
        self.total_visits += record.visits
        self.total_visits_post_trial += record.visits_post_trial
        if record.conversion_span > 0:
            self.conversion_span_total += record.conversion_span
            self.conversion_span_count += 1

    def merge(self, other: "Aggregate") -> "Aggregate":
        return Aggregate(
            total=self.total + other.total,
            converted=self.converted + other.converted,
            trials_completed=self.trials_completed + other.trials_completed,
            trials_scheduled=self.trials_scheduled + other.trials_scheduled,
            proximity_issues=self.proximity_issues + other.proximity_issues,
            retained=self.retained + other.retained,
            new_clients=self.new_clients + other.new_clients,
            total_ltv=self.total_ltv + other.total_ltv,
            total_visits=self.total_visits + other.total_visits,
            total_visits_post_trial=self.total_visits_post_trial + other.total_visits_post_trial,
            conversion_span_total=self.conversion_span_total + other.conversion_span_total,
            conversion_span_count=self.conversion_span_count + other.conversion_span_count,
        )


@dataclass(frozen=True)
class DerivedMetrics:
    group: str
    total: int
    converted: int
    trials_completed: int
    trials_scheduled: int
    proximity_issues: int
    retained: int
    new_clients: int
    total_ltv: float
    conversion_rate: float
    trial_to_member_rate: float
    lead_to_trial_rate: float
    trial_completion_rate: float
    retention_rate: float
    new_client_rate: float
    avg_ltv: float
    avg_visits: float
    avg_visits_post_trial: float
    avg_conversion_span: float
    pipeline_health: int

    def value(self, metric: str) -> float:
        return float(getattr(self, metric))


@dataclass(frozen=True)
class PeriodMetrics:
    period: str
    metrics: DerivedMetrics


@dataclass(frozen=True)
class CardMetric:
    key: str
    label: str
    value: float
    unit: Optional[str] = None
    delta_percent: Optional[float] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class TrendPoint:
    period: str
    value: float


@dataclass(frozen=True)
class TrendSeries:
    name: str
    points: Iterable[TrendPoint]
    unit: Optional[str] = None


@dataclass(frozen=True)
class FunnelStage:
    label: str
    count: int
    conversion_rate: Optional[float] = None
    drop_off: int = 0


@dataclass(frozen=True)
class FunnelBreakdown:
    name: str
    stages: Sequence[FunnelStage]


@dataclass(frozen=True)
class LeaderboardRow:
    label: str
    metrics: Dict[str, Optional[float]]


@dataclass(frozen=True)
class YearOnYearRow:
    source: str
    month: str
    years: Dict[int, Dict[str, float]]
    yoy_growth: Optional[float] = None


@dataclass(frozen=True)
class DashboardSection:
    cards: Sequence[CardMetric] = field(default_factory=list)
    trends: Sequence[TrendSeries] = field(default_factory=list)
    funnels: Sequence[FunnelBreakdown] = field(default_factory=list)
    tables: Dict[str, Sequence[LeaderboardRow]] = field(default_factory=dict)


@dataclass(frozen=True)
class DashboardResult:
    funnel: DashboardSection
    conversion: DashboardSection
    year_on_year: Sequence[YearOnYearRow] = field(default_factory=list)
    conversion_year_on_year: Sequence[YearOnYearRow] = field(default_factory=list)
    record_count: int = 0

    def as_dict(self) -> Dict[str, Any]:
        """
        Convert the nested dataclasses into a JSON-serialisable structure.

        The HTTP layer ships this straight to the UI, so keys are camelCase.
        """

        def _serialize(obj: Any) -> Any:
            if isinstance(obj, DashboardResult):
                return {
                    "funnel": _serialize(obj.funnel),
                    "conversion": _serialize(obj.conversion),
                    "yearOnYear": [_serialize(row) for row in obj.year_on_year],
                    "conversionYearOnYear": [_serialize(row) for row in obj.conversion_year_on_year],
                    "recordCount": obj.record_count,
                }
            if isinstance(obj, DashboardSection):
                return {
                    "cards": [_serialize(card) for card in obj.cards],
                    "trends": [_serialize(trend) for trend in obj.trends],
                    "funnels": [_serialize(funnel) for funnel in obj.funnels],
                    "tables": {
                        name: [_serialize(row) for row in rows]
                        for name, rows in obj.tables.items()
                    },
                }
            if isinstance(obj, CardMetric):
                return {
                    "key": obj.key,
                    "label": obj.label,
                    "value": obj.value,
                    "unit": obj.unit,
                    "deltaPercent": obj.delta_percent,
                    "description": obj.description,
                }
            if isinstance(obj, TrendSeries):
                return {
                    "name": obj.name,
                    "unit": obj.unit,
                    "points": [_serialize(point) for point in obj.points],
                }
            if isinstance(obj, TrendPoint):
                return {"period": obj.period, "value": obj.value}
            if isinstance(obj, FunnelBreakdown):
                return {
                    "name": obj.name,
                    "stages": [_serialize(stage) for stage in obj.stages],
                }
            if isinstance(obj, FunnelStage):
                return {
                    "label": obj.label,
                    "count": obj.count,
                    "conversionRate": obj.conversion_rate,
                    "dropOff": obj.drop_off,
                }
            if isinstance(obj, LeaderboardRow):
                return {"label": obj.label, "metrics": obj.metrics}
            if isinstance(obj, YearOnYearRow):
                return {
                    "source": obj.source,
                    "month": obj.month,
                    "years": {str(year): values for year, values in obj.years.items()},
                    "yoyGrowth": obj.yoy_growth,
                }
            if isinstance(obj, Iterable) and not isinstance(obj, (str, bytes)):
                return [_serialize(item) for item in obj]
            return obj

        return _serialize(self)


def metrics_as_dict(metrics: DerivedMetrics) -> Dict[str, Any]:
    """camelCase view of a :class:`DerivedMetrics` for JSON responses."""
    return {
        "group": metrics.group,
        "total": metrics.total,
        "converted": metrics.converted,
        "trialsCompleted": metrics.trials_completed,
        "trialsScheduled": metrics.trials_scheduled,
        "proximityIssues": metrics.proximity_issues,
        "retained": metrics.retained,
        "newClients": metrics.new_clients,
        "totalLTV": metrics.total_ltv,
        "conversionRate": metrics.conversion_rate,
        "trialToMemberRate": metrics.trial_to_member_rate,
        "leadToTrialRate": metrics.lead_to_trial_rate,
        "trialCompletionRate": metrics.trial_completion_rate,
        "retentionRate": metrics.retention_rate,
        "newClientRate": metrics.new_client_rate,
        "avgLTV": metrics.avg_ltv,
        "avgVisits": metrics.avg_visits,
        "avgVisitsPostTrial": metrics.avg_visits_post_trial,
        "avgConversionSpan": metrics.avg_conversion_span,
        "pipelineHealth": metrics.pipeline_health,
    }


def records_from_payload(rows: Iterable[Mapping[str, Any]]) -> List[LeadRecord]:
    return [LeadRecord.from_mapping(row) for row in rows]
