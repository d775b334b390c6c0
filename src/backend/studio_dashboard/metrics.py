"""
Derived metric formulas.

Every rate and average is guarded so an empty denominator yields ``0`` rather
than ``NaN``/``inf``. Growth is the one exception: a zero baseline has no
meaningful percentage change, so :func:`growth_percent` reports ``None`` and
callers render it as "not applicable".
"""

from __future__ import annotations

import math
from typing import Optional

from .models import Aggregate, DerivedMetrics

PIPELINE_HEALTH_WEIGHTS = {
    "lead_to_trial": 0.3,
    "trial_to_member": 0.4,
    "engagement": 0.2,
    "proximity_clear": 0.1,
}


def _ratio(numerator: float, denominator: float, scale: float = 1.0) -> float:
    if not denominator:
        return 0.0
    return numerator / denominator * scale


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def conversion_rate(aggregate: Aggregate) -> float:
    return _ratio(aggregate.converted, aggregate.total, 100)


def trial_to_member_rate(aggregate: Aggregate) -> float:
    return _ratio(aggregate.converted, aggregate.trials_completed, 100)


def lead_to_trial_rate(aggregate: Aggregate) -> float:
    return _ratio(aggregate.trials_completed, aggregate.total, 100)


def trial_completion_rate(aggregate: Aggregate) -> float:
    return _ratio(aggregate.trials_completed, aggregate.trials_scheduled, 100)


def retention_rate(aggregate: Aggregate) -> float:
    return _ratio(aggregate.retained, aggregate.total, 100)


def new_client_rate(aggregate: Aggregate) -> float:
    return _ratio(aggregate.new_clients, aggregate.total, 100)


def avg_ltv(aggregate: Aggregate) -> float:
    return _ratio(aggregate.total_ltv, aggregate.total)


def avg_visits(aggregate: Aggregate) -> float:
    return _ratio(aggregate.total_visits, aggregate.total)


def avg_visits_post_trial(aggregate: Aggregate) -> float:
    return _ratio(aggregate.total_visits_post_trial, aggregate.total)


def avg_conversion_span(aggregate: Aggregate) -> float:
    """Mean days to conversion over records that report a positive span."""
    return _ratio(aggregate.conversion_span_total, aggregate.conversion_span_count)


def pipeline_health(aggregate: Aggregate) -> int:
    """
    Fixed-weight 0-100 score blending funnel progress and engagement.

    The engagement term scales average visits by 10 so that ~10 visits per
    lead saturates it; the last term rewards groups without proximity issues.
    """

    if not aggregate.total:
        return 0
    proximity_clear = _ratio(aggregate.total - aggregate.proximity_issues, aggregate.total, 100)
    score = (
        lead_to_trial_rate(aggregate) * PIPELINE_HEALTH_WEIGHTS["lead_to_trial"]
        + trial_to_member_rate(aggregate) * PIPELINE_HEALTH_WEIGHTS["trial_to_member"]
        + avg_visits(aggregate) * 10 * PIPELINE_HEALTH_WEIGHTS["engagement"]
        + proximity_clear * PIPELINE_HEALTH_WEIGHTS["proximity_clear"]
    )
    return max(0, min(100, _round_half_up(score)))


def growth_percent(current: float, previous: float) -> Optional[float]:
    if previous is None or previous <= 0:
        return None
    return (current - previous) / previous * 100


def derive(aggregate: Aggregate, group: str = "") -> DerivedMetrics:
    return DerivedMetrics(
        group=group,
        total=aggregate.total,
        converted=aggregate.converted,
        trials_completed=aggregate.trials_completed,
        trials_scheduled=aggregate.trials_scheduled,
        proximity_issues=aggregate.proximity_issues,
        retained=aggregate.retained,
        new_clients=aggregate.new_clients,
        total_ltv=aggregate.total_ltv,
        conversion_rate=conversion_rate(aggregate),
        trial_to_member_rate=trial_to_member_rate(aggregate),
        lead_to_trial_rate=lead_to_trial_rate(aggregate),
        trial_completion_rate=trial_completion_rate(aggregate),
        retention_rate=retention_rate(aggregate),
        new_client_rate=new_client_rate(aggregate),
        avg_ltv=avg_ltv(aggregate),
        avg_visits=avg_visits(aggregate),
        avg_visits_post_trial=avg_visits_post_trial(aggregate),
        avg_conversion_span=avg_conversion_span(aggregate),
        pipeline_health=pipeline_health(aggregate),
    )
