from __future__ import annotations

import dataclasses
import logging
from collections import defaultdict
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from .config import DashboardConfig, RankingConfig
from .dataset import UNKNOWN_LABEL, LeadDataset, aggregate_by, compute_period_series, total_aggregate
from .metrics import derive, growth_percent
from .models import (
    Aggregate,
    CardMetric,
    DashboardResult,
    DashboardSection,
    DerivedMetrics,
    FilterSet,
    FunnelBreakdown,
    FunnelStage,
    LeadRecord,
    LeaderboardRow,
    PeriodMetrics,
    TrendPoint,
    TrendSeries,
    YearOnYearRow,
)
from .periods import MONTH_NAMES, parse_date, preceding_range

logger = logging.getLogger(__name__)

# (key, label, DerivedMetrics attribute, unit)
FUNNEL_CARDS: Tuple[Tuple[str, str, str, Optional[str]], ...] = (
    ("leads_received", "Leads Received", "total", None),
    ("trials_completed", "Trials Completed", "trials_completed", None),
    ("trials_scheduled", "Trials Scheduled", "trials_scheduled", None),
    ("proximity_issues", "Proximity Issues", "proximity_issues", None),
    ("converted_leads", "Converted Leads", "converted", None),
    ("trial_to_member", "Trial → Member Rate", "trial_to_member_rate", "%"),
    ("lead_to_trial", "Lead → Trial Rate", "lead_to_trial_rate", "%"),
    ("lead_to_member", "Lead → Member Rate", "conversion_rate", "%"),
    ("avg_ltv", "Average LTV", "avg_ltv", "$"),
    ("avg_visits", "Avg Visits per Lead", "avg_visits", None),
    ("pipeline_health", "Pipeline Health", "pipeline_health", "score"),
)

CONVERSION_CARDS: Tuple[Tuple[str, str, str, Optional[str]], ...] = (
    ("total_clients", "Total Clients", "total", None),
    ("conversion_rate", "Conversion Rate", "conversion_rate", "%"),
    ("retention_rate", "Retention Rate", "retention_rate", "%"),
    ("avg_ltv", "Average LTV", "avg_ltv", "$"),
    ("total_revenue", "Total Revenue", "total_ltv", "$"),
    ("avg_visits_post_trial", "Avg Visits Post Trial", "avg_visits_post_trial", None),
    ("new_client_rate", "New Client Rate", "new_client_rate", "%"),
    ("avg_conversion_span", "Avg Conversion Span", "avg_conversion_span", "days"),
)

FUNNEL_TRENDS: Tuple[Tuple[str, str, str], ...] = (
    ("Leads", "total", "leads"),
    ("Converted", "converted", "leads"),
    ("Trials Completed", "trials_completed", "leads"),
    ("LTV", "total_ltv", "$"),
)

CONVERSION_TRENDS: Tuple[Tuple[str, str, str], ...] = (
    ("Conversion Rate", "conversion_rate", "%"),
    ("Retention Rate", "retention_rate", "%"),
    ("Average LTV", "avg_ltv", "$"),
    ("Avg Visits Post Trial", "avg_visits_post_trial", "visits"),
    ("New Client Rate", "new_client_rate", "%"),
    ("Avg Conversion Span", "avg_conversion_span", "days"),
)

YEAR_ON_YEAR_METRICS = ("total", "converted", "avg_ltv", "conversion_rate")

CONVERSION_YEAR_ON_YEAR_METRICS = (
    "total",
    "conversion_rate",
    "retention_rate",
    "avg_ltv",
    "total_ltv",
    "avg_visits_post_trial",
    "new_client_rate",
    "avg_conversion_span",
)

ALL_SOURCES_LABEL = "All Sources"


def _build_card(
    key: str,
    label: str,
    value: float,
    previous: Optional[float] = None,
    unit: Optional[str] = None,
    description: Optional[str] = None,
) -> CardMetric:
    return CardMetric(
        key=key,
        label=label,
        value=value,
        unit=unit,
        delta_percent=None if previous is None else growth_percent(value, previous),
        description=description,
    )


def build_cards(
    specs: Sequence[Tuple[str, str, str, Optional[str]]],
    current: DerivedMetrics,
    previous: Optional[DerivedMetrics] = None,
) -> List[CardMetric]:
    return [
        _build_card(
            key,
            label,
            current.value(attribute),
            None if previous is None else previous.value(attribute),
            unit=unit,
        )
        for key, label, attribute, unit in specs
    ]


def funnel_breakdown(totals: DerivedMetrics, name: str = "Lead Funnel") -> FunnelBreakdown:
    """
    Leads → trials scheduled → trials completed → converted.

    Each stage's rate is relative to the leads received; ``drop_off`` is the
    loss from the stage before it.
    """

    counts = [
        ("Leads Received", totals.total),
        ("Trials Scheduled", totals.trials_scheduled),
        ("Trials Completed", totals.trials_completed),
        ("Converted", totals.converted),
    ]
    first = counts[0][1]
    stages: List[FunnelStage] = []
    previous = None
    for label, count in counts:
        if previous is None:
            rate = 100.0
            drop_off = 0
        else:
            rate = count / first * 100 if first else 0.0
            drop_off = previous - count
        stages.append(FunnelStage(label=label, count=count, conversion_rate=rate, drop_off=drop_off))
        previous = count
    return FunnelBreakdown(name=name, stages=stages)


def _ranking_row(metrics: DerivedMetrics) -> LeaderboardRow:
    return LeaderboardRow(
        label=metrics.group,
        metrics={
            "total": metrics.total,
            "converted": metrics.converted,
            "conversion_rate": metrics.conversion_rate,
            "avg_ltv": metrics.avg_ltv,
            "avg_visits": metrics.avg_visits,
            "trial_completion_rate": metrics.trial_completion_rate,
        },
    )


def rank_groups(
    metrics_by_group: Mapping[str, DerivedMetrics],
    config: Optional[RankingConfig] = None,
) -> Dict[str, List[LeaderboardRow]]:
    """
    Best/worst converting groups plus LTV and volume highlights.

    Groups below ``min_sample`` are left out here only; they still appear in
    the raw aggregation. Ties keep alphabetical order.
    """

    config = config or RankingConfig()
    eligible = sorted(
        (metrics for metrics in metrics_by_group.values() if metrics.total >= config.min_sample),
        key=lambda metrics: metrics.group,
    )
    by_conversion = sorted(eligible, key=lambda metrics: metrics.conversion_rate, reverse=True)
    by_ltv = sorted(eligible, key=lambda metrics: metrics.avg_ltv, reverse=True)
    by_volume = sorted(eligible, key=lambda metrics: metrics.total, reverse=True)

    bottom = list(reversed(by_conversion[-config.bottom_size:])) if config.bottom_size > 0 else []
    return {
        "top": [_ranking_row(metrics) for metrics in by_conversion[: config.top_size]],
        "bottom": [_ranking_row(metrics) for metrics in bottom],
        "top_ltv": [_ranking_row(metrics) for metrics in by_ltv[: config.highlight_size]],
        "top_volume": [_ranking_row(metrics) for metrics in by_volume[: config.highlight_size]],
    }


def breakdown_rows(metrics_by_group: Mapping[str, DerivedMetrics]) -> List[LeaderboardRow]:
    rows = [_ranking_row(metrics) for metrics in metrics_by_group.values()]
    return sorted(rows, key=lambda row: (-row.metrics["total"], row.label))


def trend_series(
    series: Sequence[PeriodMetrics],
    name: str,
    attribute: str,
    unit: Optional[str] = None,
    window: Optional[int] = None,
) -> TrendSeries:
    if window:
        series = series[-window:]
    return TrendSeries(
        name=name,
        points=[TrendPoint(period=point.period, value=point.metrics.value(attribute)) for point in series],
        unit=unit,
    )


def period_over_period_rows(series: Sequence[PeriodMetrics], attribute: str) -> List[LeaderboardRow]:
    """
    One row per period with the metric and its growth over the previous period.
    """

    rows: List[LeaderboardRow] = []
    previous: Optional[float] = None
    for point in series:
        value = point.metrics.value(attribute)
        rows.append(
            LeaderboardRow(
                label=point.period,
                metrics={
                    "total": point.metrics.total,
                    attribute: value,
                    "growth": None if previous is None else growth_percent(value, previous),
                },
            )
        )
        previous = value
    return rows


def year_on_year_table(records: Sequence[LeadRecord], metric: str = "total") -> List[YearOnYearRow]:
    """
    Source × calendar month rows comparing each year present in the data.

    ``yoy_growth`` compares ``metric`` between the two most recent years and
    is ``None`` when there is only one year or the older value is zero.
    """

    return _year_on_year_rows(
        records,
        metric,
        YEAR_ON_YEAR_METRICS,
        lambda record: record.source or UNKNOWN_LABEL,
    )


def conversion_year_on_year_table(
    records: Sequence[LeadRecord], metric: str = "conversion_rate"
) -> List[YearOnYearRow]:
    """
    Month-by-month conversion metrics across years, all sources combined.
    """

    return _year_on_year_rows(
        records,
        metric,
        CONVERSION_YEAR_ON_YEAR_METRICS,
        lambda record: ALL_SOURCES_LABEL,
    )


def _year_on_year_rows(
    records: Sequence[LeadRecord],
    metric: str,
    columns: Sequence[str],
    group_of: Callable[[LeadRecord], str],
) -> List[YearOnYearRow]:
    if metric not in columns:
        raise ValueError(f"Unsupported year-on-year metric: {metric!r}")

    cells: Dict[Tuple[str, int, int], Aggregate] = defaultdict(Aggregate)
    for record in records:
        created = parse_date(record.created_at)
        if created is None:
            continue
        cells[(group_of(record), created.month, created.year)].add(record)

    years = sorted({year for _, _, year in cells}, reverse=True)
    groups = sorted({group for group, _, _ in cells})

    rows: List[YearOnYearRow] = []
    for group in groups:
        for month in range(1, 13):
            per_year: Dict[int, Dict[str, float]] = {}
            for year in years:
                metrics = derive(cells.get((group, month, year), Aggregate()))
                per_year[year] = {name: metrics.value(name) for name in columns}
            if not any(values["total"] for values in per_year.values()):
                continue

            growth = None
            if len(years) >= 2:
                growth = growth_percent(per_year[years[0]][metric], per_year[years[1]][metric])
            rows.append(YearOnYearRow(source=group, month=MONTH_NAMES[month - 1], years=per_year, yoy_growth=growth))
    return rows


class FunnelDashboardService:
    """
    Assembles the lead funnel and conversion/retention dashboards.
    """

    def __init__(self, records: Sequence[LeadRecord], config: Optional[DashboardConfig] = None) -> None:
        self.dataset = LeadDataset(records=records)
        self.config = config or DashboardConfig()

    def build(self, filters: FilterSet) -> DashboardResult:
        records = self.dataset.filtered(filters)
        previous_records = self._previous_window_records(filters)
        logger.debug("Building dashboard for %d of %d records", len(records), len(self.dataset.records))

        current = derive(total_aggregate(records), group="all")
        previous = None if previous_records is None else derive(total_aggregate(previous_records), group="all")
        series = self._period_series(records)

        return DashboardResult(
            funnel=self._build_funnel(records, current, previous, series),
            conversion=self._build_conversion(current, previous, series),
            year_on_year=year_on_year_table(records, self.config.yoy_metric),
            conversion_year_on_year=conversion_year_on_year_table(records, self.config.conversion_yoy_metric),
            record_count=len(records),
        )

    def _previous_window_records(self, filters: FilterSet) -> Optional[List[LeadRecord]]:
        window = preceding_range(filters.date_range)
        if window is None:
            return None
        return self.dataset.filtered(dataclasses.replace(filters, date_range=window))

    def _period_series(self, records: Sequence[LeadRecord]) -> List[PeriodMetrics]:
        return compute_period_series(records, self.config.trends.granularity)

    def _build_funnel(
        self,
        records: Sequence[LeadRecord],
        current: DerivedMetrics,
        previous: Optional[DerivedMetrics],
        series: Sequence[PeriodMetrics],
    ) -> DashboardSection:
        by_source = aggregate_by(records, "source")
        rankings = rank_groups(by_source, self.config.rankings)
        tables: Dict[str, Sequence[LeaderboardRow]] = {
            f"sources_{name}": rows for name, rows in rankings.items()
        }
        tables["stages"] = breakdown_rows(aggregate_by(records, "stage"))
        tables["associates"] = breakdown_rows(aggregate_by(records, "associate"))

        window = self.config.trends.series_window
        trends = [
            trend_series(series, name, attribute, unit=unit, window=window)
            for name, attribute, unit in FUNNEL_TRENDS
        ]
        return DashboardSection(
            cards=build_cards(FUNNEL_CARDS, current, previous),
            trends=trends,
            funnels=[funnel_breakdown(current)],
            tables=tables,
        )

    def _build_conversion(
        self,
        current: DerivedMetrics,
        previous: Optional[DerivedMetrics],
        series: Sequence[PeriodMetrics],
    ) -> DashboardSection:
        window = self.config.trends.series_window
        trends = [
            trend_series(series, name, attribute, unit=unit, window=window)
            for name, attribute, unit in CONVERSION_TRENDS
        ]
        tables = {"period_over_period": period_over_period_rows(series, "conversion_rate")}
        return DashboardSection(
            cards=build_cards(CONVERSION_CARDS, current, previous),
            trends=trends,
            tables=tables,
        )
