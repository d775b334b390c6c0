import math

import pytest

from backend.studio_dashboard.metrics import (
    avg_conversion_span,
    avg_ltv,
    avg_visits,
    conversion_rate,
    derive,
    growth_percent,
    lead_to_trial_rate,
    pipeline_health,
    trial_completion_rate,
    trial_to_member_rate,
)
from backend.studio_dashboard.models import Aggregate


class TestRates:
    def test_rates_and_averages(self) -> None:
        totals = Aggregate(
            total=4,
            converted=2,
            trials_completed=3,
            trials_scheduled=4,
            total_ltv=550.0,
            total_visits=8,
        )
        assert conversion_rate(totals) == 50.0
        assert trial_to_member_rate(totals) == pytest.approx(66.6667, rel=1e-4)
        assert lead_to_trial_rate(totals) == 75.0
        assert trial_completion_rate(totals) == 75.0
        assert avg_ltv(totals) == 137.5
        assert avg_visits(totals) == 2.0

    def test_empty_aggregate_is_all_zero(self) -> None:
        metrics = derive(Aggregate())
        for name, value in vars(metrics).items():
            if name == "group":
                continue
            assert value == 0, name
            assert math.isfinite(value), name

    def test_no_trials_completed_keeps_trial_rate_at_zero(self) -> None:
        totals = Aggregate(total=5, converted=2)
        assert trial_to_member_rate(totals) == 0.0
        assert math.isfinite(derive(totals).trial_to_member_rate)


class TestPipelineHealth:
    def test_weighted_blend(self) -> None:
        totals = Aggregate(total=4, converted=2, trials_completed=3, proximity_issues=1, total_visits=8)
        # 75*0.3 + 66.67*0.4 + 2*10*0.2 + 75*0.1 = 60.67
        assert pipeline_health(totals) == 61

    def test_clamped_to_one_hundred(self) -> None:
        totals = Aggregate(total=1, converted=1, trials_completed=1, total_visits=100)
        assert pipeline_health(totals) == 100

    def test_half_rounds_up(self) -> None:
        totals = Aggregate(total=4, total_visits=1)
        # 0.25 visits * 10 * 0.2 + 100 * 0.1 = 10.5
        assert pipeline_health(totals) == 11

    def test_zero_total(self) -> None:
        assert pipeline_health(Aggregate()) == 0


class TestGrowth:
    def test_growth_from_positive_baseline(self) -> None:
        assert growth_percent(150, 100) == 50.0
        assert growth_percent(50, 100) == -50.0

    def test_zero_baseline_is_not_applicable(self) -> None:
        assert growth_percent(5, 0) is None
        assert growth_percent(0, 0) is None

    def test_negative_baseline_is_not_applicable(self) -> None:
        assert growth_percent(5, -2) is None


def test_derive_carries_group_label() -> None:
    metrics = derive(Aggregate(total=2, converted=1, total_ltv=150.0), group="IG")
    assert metrics.group == "IG"
    assert metrics.avg_ltv == 75.0
    assert metrics.conversion_rate == 50.0


def test_avg_conversion_span_ignores_records_without_span() -> None:
    totals = Aggregate(total=5, conversion_span_total=30.0, conversion_span_count=2)
    assert avg_conversion_span(totals) == 15.0
    assert derive(totals).avg_conversion_span == 15.0
    assert avg_conversion_span(Aggregate(total=3)) == 0.0
