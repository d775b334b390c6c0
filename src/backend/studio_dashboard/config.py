# configuration for the studio analytics dashboard

from __future__ import annotations

import logging
import os
from typing import Literal, Sequence, get_args

from pydantic import BaseModel

logger = logging.getLogger(__name__)

Granularity = Literal["day", "week", "month", "year"]
YearOnYearMetric = Literal["total", "converted", "avg_ltv", "conversion_rate"]
ConversionYearOnYearMetric = Literal[
    "total",
    "conversion_rate",
    "retention_rate",
    "avg_ltv",
    "total_ltv",
    "avg_visits_post_trial",
    "new_client_rate",
    "avg_conversion_span",
]


class RankingConfig(BaseModel):
    min_sample: int = 3
    """Groups with fewer records are left out of rankings (still aggregated)."""

    top_size: int = 5
    """Number of entries in the best-converting list."""

    bottom_size: int = 3
    """Number of entries in the worst-converting list."""

    highlight_size: int = 3
    """Number of entries in the LTV and volume highlight lists."""


class TrendConfig(BaseModel):
    series_window: int = 12
    """How many trailing periods the trend charts keep."""

    granularity: Granularity = "month"


class DashboardConfig(BaseModel):
    """Configuration for the studio dashboard service."""

    rankings: RankingConfig = RankingConfig()
    trends: TrendConfig = TrendConfig()

    yoy_metric: YearOnYearMetric = "total"
    """Metric compared between the two most recent years in the source YoY table."""

    conversion_yoy_metric: ConversionYearOnYearMetric = "conversion_rate"
    """Metric compared across years in the month-by-month conversion table."""

    @classmethod
    def from_env(cls) -> "DashboardConfig":
        defaults = cls()
        return cls(
            rankings=RankingConfig(
                min_sample=_env_int("STUDIO_DASHBOARD_MIN_SAMPLE", defaults.rankings.min_sample),
                top_size=_env_int("STUDIO_DASHBOARD_TOP_SIZE", defaults.rankings.top_size),
                bottom_size=_env_int("STUDIO_DASHBOARD_BOTTOM_SIZE", defaults.rankings.bottom_size),
                highlight_size=_env_int("STUDIO_DASHBOARD_HIGHLIGHT_SIZE", defaults.rankings.highlight_size),
            ),
            trends=TrendConfig(
                series_window=_env_int("STUDIO_DASHBOARD_SERIES_WINDOW", defaults.trends.series_window),
                granularity=_env_choice(
                    "STUDIO_DASHBOARD_GRANULARITY", defaults.trends.granularity, get_args(Granularity)
                ),
            ),
            yoy_metric=_env_choice(
                "STUDIO_DASHBOARD_YOY_METRIC", defaults.yoy_metric, get_args(YearOnYearMetric)
            ),
            conversion_yoy_metric=_env_choice(
                "STUDIO_DASHBOARD_CONVERSION_YOY_METRIC",
                defaults.conversion_yoy_metric,
                get_args(ConversionYearOnYearMetric),
            ),
        )


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r; using %d", name, raw, default)
        return default


def _env_choice(name: str, default: str, choices: Sequence[str]) -> str:
    raw = os.getenv(name)
    if raw is None:
        return default
    if raw not in choices:
        logger.warning("Ignoring unsupported %s=%r; using %r", name, raw, default)
        return default
    return raw
