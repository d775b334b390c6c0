"""
Shared fixtures for the studio dashboard tests.

``sample_records`` is a small, hand-checked data set covering the awkward
cases: a record without a source, one without a date, one with an unparsable
date, a proximity remark and rows from two different years.
"""

from typing import Any, Callable, List

import pytest

from backend.studio_dashboard.models import LeadRecord


# =============================================================================
# RECORD FACTORIES
# =============================================================================


@pytest.fixture
def make_record() -> Callable[..., LeadRecord]:
    counter = {"next": 0}

    def _make(**fields: Any) -> LeadRecord:
        counter["next"] += 1
        fields.setdefault("id", f"lead-{counter['next']}")
        fields.setdefault("created_at", "2024-03-10")
        return LeadRecord(**fields)

    return _make


@pytest.fixture
def sample_records() -> List[LeadRecord]:
    return [
        LeadRecord(
            id="1",
            created_at="2024-03-05",
            source="Instagram",
            stage="Trial Completed",
            conversion_status="Converted",
            associate="Ana",
            location="Downtown",
            ltv=300.0,
            visits=4,
        ),
        LeadRecord(
            id="2",
            created_at="2024-03-12",
            source="Instagram",
            stage="Trial Scheduled",
            conversion_status="Not Converted",
            associate="Ana",
            location="Downtown",
            ltv=0.0,
            visits=1,
        ),
        LeadRecord(
            id="3",
            created_at="2024-03-20",
            source="Instagram",
            stage="Trial Completed",
            conversion_status="Not Converted",
            associate="Ben",
            location="Uptown",
            ltv=50.0,
            visits=2,
        ),
        LeadRecord(
            id="4",
            created_at="2024-03-28",
            source="Referral",
            stage="Proximity Issue",
            conversion_status="Lost",
            associate="Ben",
            location="Uptown",
        ),
        LeadRecord(
            id="5",
            created_at="2024-04-02",
            source="Referral",
            stage="Trial Completed",
            conversion_status="Converted",
            associate="Ana",
            location="Downtown",
            ltv=500.0,
            visits=6,
        ),
        LeadRecord(
            id="6",
            created_at="2023-03-15",
            source="Instagram",
            stage="Trial Completed",
            conversion_status="Converted",
            ltv=200.0,
            visits=3,
        ),
        LeadRecord(
            id="7",
            created_at=None,
            source=None,
            stage="New Enquiry",
            conversion_status="Not Converted",
            remarks="Lives too far, proximity concern",
            ltv=20.0,
        ),
        LeadRecord(
            id="8",
            created_at="not-a-date",
            source="Website",
            stage="Trial Completed",
            conversion_status="Converted",
            ltv=100.0,
            visits=2,
        ),
    ]
