from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError

from .config import DashboardConfig
from .dataset import LeadDataset
from .filters import filter_options
from .models import FilterSet, LeadRecord, metrics_as_dict, normalize_keys
from .periods import parse_date
from .repository import LeadDataRepository, build_repository_from_env
from .service import FunnelDashboardService

load_dotenv()

logger = logging.getLogger(__name__)

app = FastAPI(title="Studio Analytics Dashboard API", version="0.1.0")
repository: Optional[LeadDataRepository] = build_repository_from_env()
config = DashboardConfig.from_env()

# The dashboard pages call the API from the browser.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


def _normalize_payload(data: Any) -> Any:
    if isinstance(data, dict):
        return normalize_keys(data)
    return data


class RecordPayload(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

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
    ltv: Optional[float] = None
    visits: Optional[int] = None
    visits_post_trial: Optional[int] = None
    conversion_span: Optional[float] = None

    @model_validator(mode="before")
    @classmethod
    def accept_camel_case(cls, data: Any) -> Any:
        return _normalize_payload(data)


class DateRangePayload(BaseModel):
    start: Optional[str] = None
    end: Optional[str] = None

    @field_validator("end")
    @classmethod
    def validate_range(cls, end: Optional[str], info: ValidationInfo) -> Optional[str]:
        start = parse_date(info.data.get("start"))
        finish = parse_date(end)
        if start and finish and finish < start:
            raise ValueError("end must not be before start")
        return end


class FiltersPayload(BaseModel):
    date_range: Optional[DateRangePayload] = None
    location: List[str] = Field(default_factory=list)
    source: List[str] = Field(default_factory=list)
    stage: List[str] = Field(default_factory=list)
    status: List[str] = Field(default_factory=list)
    associate: List[str] = Field(default_factory=list)
    channel: List[str] = Field(default_factory=list)
    trial_status: List[str] = Field(default_factory=list)
    conversion_status: List[str] = Field(default_factory=list)
    retention_status: List[str] = Field(default_factory=list)
    is_new: List[str] = Field(default_factory=list)
    first_visit_type: List[str] = Field(default_factory=list)
    home_location: List[str] = Field(default_factory=list)
    trainer: List[str] = Field(default_factory=list)
    payment_method: List[str] = Field(default_factory=list)
    min_ltv: Optional[float] = None
    max_ltv: Optional[float] = None
    min_visits_post_trial: Optional[float] = None
    max_visits_post_trial: Optional[float] = None

    @model_validator(mode="before")
    @classmethod
    def accept_camel_case(cls, data: Any) -> Any:
        return _normalize_payload(data)


class DashboardRequest(BaseModel):
    filters: FiltersPayload = Field(default_factory=FiltersPayload)
    records: Optional[List[RecordPayload]] = None


class DashboardResponse(BaseModel):
    data: Any
    source: str


@app.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/dashboard", response_model=DashboardResponse)
async def dashboard_endpoint(request: DashboardRequest) -> DashboardResponse:
    records, source = _load_records(request)
    filters = _convert_filters(request.filters)
    service = FunnelDashboardService(records=records, config=config)
    try:
        dashboard = service.build(filters)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return DashboardResponse(data=dashboard.as_dict(), source=source)


@app.post("/dashboard/groups/{dimension}", response_model=DashboardResponse)
async def groups_endpoint(dimension: str, request: DashboardRequest) -> DashboardResponse:
    records, source = _load_records(request)
    dataset = LeadDataset(records=records)
    try:
        groups = dataset.aggregate_by(_convert_filters(request.filters), dimension)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return DashboardResponse(
        data={key: metrics_as_dict(metrics) for key, metrics in groups.items()},
        source=source,
    )


@app.post("/dashboard/series/{granularity}", response_model=DashboardResponse)
async def series_endpoint(granularity: str, request: DashboardRequest) -> DashboardResponse:
    records, source = _load_records(request)
    dataset = LeadDataset(records=records)
    try:
        series = dataset.period_series(_convert_filters(request.filters), granularity)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return DashboardResponse(
        data=[{"period": point.period, "metrics": metrics_as_dict(point.metrics)} for point in series],
        source=source,
    )


@app.post("/dashboard/filter-options", response_model=DashboardResponse)
async def filter_options_endpoint(request: DashboardRequest) -> DashboardResponse:
    records, source = _load_records(request)
    return DashboardResponse(data=filter_options(records), source=source)


def _load_records(request: DashboardRequest) -> Tuple[Sequence[LeadRecord], str]:
    if repository is not None:
        try:
            return repository.load(), "database"
        except SQLAlchemyError as exc:
            logger.warning("Failed to load records from database: %s", exc)
            raise HTTPException(status_code=503, detail="Lead database is unavailable.") from exc

    if request.records is None:
        raise HTTPException(
            status_code=500,
            detail=(
                "STUDIO_DASHBOARD_DATABASE_URL is not configured; "
                "supply records in the request body for ad-hoc queries."
            ),
        )

    return tuple(_convert_record_payload(payload) for payload in request.records), "inline"


def _convert_record_payload(payload: RecordPayload) -> LeadRecord:
    return LeadRecord.from_mapping(payload.model_dump())


def _convert_filters(payload: FiltersPayload) -> FilterSet:
    return FilterSet.from_dict(payload.model_dump(exclude_none=True))
