import logging

from backend.studio_dashboard.models import LeadRecord, records_from_payload


class TestLeadRecordFromMapping:
    def test_camel_case_client_row(self) -> None:
        record = LeadRecord.from_mapping(
            {
                "memberId": 42,
                "firstVisitDate": "2024-03-05T09:30:00Z",
                "firstVisitLocation": "Downtown",
                "trainerName": "Mia",
                "conversionStatus": "Converted",
                "isNew": "New",
                "ltv": "125.5",
                "visitsPostTrial": "3",
                "conversionSpan": "12",
            }
        )
        assert record.id == "42"
        assert record.created_at == "2024-03-05T09:30:00Z"
        assert record.location == "Downtown"
        assert record.trainer == "Mia"
        assert record.conversion_status == "Converted"
        assert record.is_new == "New"
        assert record.ltv == 125.5
        assert record.visits_post_trial == 3
        assert record.conversion_span == 12.0

    def test_snake_case_key_wins_over_alias(self) -> None:
        record = LeadRecord.from_mapping({"id": "1", "location": "Uptown", "center": "Downtown"})
        assert record.location == "Uptown"

    def test_missing_numbers_default_to_zero(self) -> None:
        record = LeadRecord.from_mapping({"id": "1", "ltv": None, "visits": ""})
        assert record.ltv == 0.0
        assert record.visits == 0
        assert record.visits_post_trial == 0

    def test_bad_numbers_are_logged_and_zeroed(self, caplog) -> None:
        with caplog.at_level(logging.WARNING, logger="backend.studio_dashboard.models"):
            record = LeadRecord.from_mapping({"id": "x", "ltv": "lots", "visits": float("nan")})
        assert record.ltv == 0.0
        assert record.visits == 0
        assert "non-numeric ltv" in caplog.text
        assert "non-finite visits" in caplog.text


def test_records_from_payload() -> None:
    records = records_from_payload([{"id": "a"}, {"id": "b", "source": "IG"}])
    assert [record.id for record in records] == ["a", "b"]
    assert records[1].source == "IG"
