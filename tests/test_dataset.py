import random

import pytest

from backend.studio_dashboard.dataset import (
    LeadDataset,
    aggregate,
    aggregate_by,
    categorical_key,
    compute_period_series,
    total_aggregate,
)
from backend.studio_dashboard.models import Aggregate, FilterSet, LeadRecord
from backend.studio_dashboard.periods import DateRange


class TestAggregateBy:
    def test_source_example(self) -> None:
        records = [
            LeadRecord(id="a", source="IG", ltv=100.0, conversion_status="Converted"),
            LeadRecord(id="b", source="IG", ltv=50.0, conversion_status="Lost"),
        ]
        groups = aggregate_by(records, "source")
        assert list(groups) == ["IG"]
        assert groups["IG"].total == 2
        assert groups["IG"].converted == 1
        assert groups["IG"].avg_ltv == 75.0
        assert groups["IG"].conversion_rate == 50.0

    def test_categorical_grouping_keeps_every_record(self, sample_records) -> None:
        groups = aggregate_by(sample_records, "source")
        assert sum(metrics.total for metrics in groups.values()) == len(sample_records)
        assert groups["Unknown"].total == 1
        assert groups["Instagram"].total == 4
        assert groups["Instagram"].trials_completed == 3

    def test_empty_string_counts_as_unknown(self) -> None:
        groups = aggregate_by([LeadRecord(id="a", channel="")], "channel")
        assert list(groups) == ["Unknown"]

    def test_time_grouping_drops_undated_records(self, sample_records) -> None:
        groups = aggregate_by(sample_records, "month")
        assert set(groups) == {"2023-03", "2024-03", "2024-04"}
        assert sum(metrics.total for metrics in groups.values()) == 6

    def test_empty_input(self) -> None:
        assert aggregate_by([], "source") == {}
        assert aggregate_by([], "month") == {}

    def test_unknown_dimension_raises(self, sample_records) -> None:
        with pytest.raises(ValueError):
            aggregate_by(sample_records, "favourite_colour")


class TestAccumulation:
    def test_result_does_not_depend_on_order(self, sample_records) -> None:
        shuffled = list(sample_records)
        random.Random(7).shuffle(shuffled)
        assert aggregate_by(shuffled, "source") == aggregate_by(sample_records, "source")

    def test_merge_matches_single_pass(self, sample_records) -> None:
        left = total_aggregate(sample_records[:3])
        right = total_aggregate(sample_records[3:])
        assert left.merge(right) == total_aggregate(sample_records)
        assert right.merge(left) == left.merge(right)

    def test_classification_rules(self) -> None:
        totals = Aggregate()
        totals.add(LeadRecord(id="1", stage="Trial Scheduled"))
        totals.add(LeadRecord(id="2", stage="Trial Completed", conversion_status="Converted"))
        totals.add(LeadRecord(id="3", stage="Proximity Issue"))
        totals.add(LeadRecord(id="4", remarks="Client raised a PROXIMITY problem"))
        totals.add(
            LeadRecord(id="5", retention_status="Retained", is_new="New", visits_post_trial=3, conversion_span=10.0)
        )
        totals.add(LeadRecord(id="6", conversion_span=0.0))
        assert totals.total == 6
        assert totals.trials_scheduled == 2
        assert totals.trials_completed == 1
        assert totals.converted == 1
        assert totals.proximity_issues == 2
        assert totals.retained == 1
        assert totals.new_clients == 1
        assert totals.total_visits_post_trial == 3
        assert totals.conversion_span_total == 10.0
        assert totals.conversion_span_count == 1

    def test_custom_key_function_returning_none_drops(self, sample_records) -> None:
        groups = aggregate(sample_records, lambda record: record.associate)
        assert set(groups) == {"Ana", "Ben"}
        assert sum(totals.total for totals in groups.values()) == 5

    def test_categorical_key_helper(self) -> None:
        key = categorical_key("trainer")
        assert key(LeadRecord(id="1", trainer="Mia")) == "Mia"
        assert key(LeadRecord(id="2")) == "Unknown"


class TestPeriodSeries:
    def test_series_is_ordered_ascending(self, sample_records) -> None:
        series = compute_period_series(sample_records, "month")
        assert [point.period for point in series] == ["2023-03", "2024-03", "2024-04"]
        assert series[1].metrics.total == 4
        assert series[1].metrics.group == "2024-03"

    def test_series_is_rederivable(self, sample_records) -> None:
        assert compute_period_series(sample_records, "week") == compute_period_series(sample_records, "week")

    def test_year_series(self, sample_records) -> None:
        series = compute_period_series(sample_records, "year")
        assert [(point.period, point.metrics.total) for point in series] == [("2023", 1), ("2024", 5)]


class TestLeadDataset:
    def test_filters_before_grouping(self, sample_records) -> None:
        dataset = LeadDataset(records=sample_records)
        filters = FilterSet(date_range=DateRange(start="2024-03-01", end="2024-03-31"))
        groups = dataset.aggregate_by(filters, "source")
        assert {key: metrics.total for key, metrics in groups.items()} == {"Instagram": 3, "Referral": 1}

    def test_totals(self, sample_records) -> None:
        dataset = LeadDataset(records=sample_records)
        totals = dataset.totals(FilterSet.all_time())
        assert totals.total == 8
        assert totals.converted == 4

    def test_period_series(self, sample_records) -> None:
        dataset = LeadDataset(records=sample_records)
        series = dataset.period_series(FilterSet.all_time(source=["Referral"]), "month")
        assert [point.period for point in series] == ["2024-03", "2024-04"]
