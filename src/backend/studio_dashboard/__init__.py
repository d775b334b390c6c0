"""
Backend analytics for the fitness-studio dashboard.

This package turns flat lead and client records into the filtered, grouped
metrics behind the lead funnel and conversion/retention pages: cards, funnel
stages, source rankings, period trends and year-on-year tables.
"""

from .config import DashboardConfig  # noqa: F401
from .dataset import (  # noqa: F401
    LeadDataset,
    aggregate,
    aggregate_by,
    compute_period_series,
)
from .filters import filter_options, filter_records, matches  # noqa: F401
from .metrics import derive, growth_percent  # noqa: F401
from .models import (  # noqa: F401
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
from .periods import (  # noqa: F401
    DateRange,
    current_month_date_range,
    date_range_for_months,
    parse_date,
    previous_month_date_range,
    to_period_key,
)
from .repository import (  # noqa: F401
    LeadDataRepository,
    RepositoryConfig,
    SQLLeadRepository,
    build_repository_from_env,
)
from .service import FunnelDashboardService  # noqa: F401
