from __future__ import annotations
from datetime import date as Date
from typing import Literal
from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# GET /trips/{trip_id}/dates
# ---------------------------------------------------------------------------

class TripRef(BaseModel):
    id: str
    name: str


class TripDatesTrip(TripRef):
    start_date: Date
    end_date: Date


class TripDateRange(BaseModel):
    start_date: Date
    end_date: Date
    total_dates: int


class TripDatesResponse(BaseModel):
    trip: TripDatesTrip
    date_range: TripDateRange


# ---------------------------------------------------------------------------
# POST /trips/{trip_id}/availability, GET /trips/{trip_id}/availability/me
# ---------------------------------------------------------------------------

class AvailabilityRequest(BaseModel):
    dates: list[Date] = Field(..., min_length=1, description="Days marked free, YYYY-MM-DD")


class AvailabilitySummary(BaseModel):
    total_dates: int
    submitted_dates: int


class AvailabilityResponse(BaseModel):
    message: str
    summary: AvailabilitySummary


class AvailabilityDateItem(BaseModel):
    date: Date


class MyAvailabilityResponse(BaseModel):
    availability: list[AvailabilityDateItem]
    summary: AvailabilitySummary


# ---------------------------------------------------------------------------
# POST /trips/{trip_id}/availability/generate-periods
# ---------------------------------------------------------------------------

class GeneratePeriodsRequest(BaseModel):
    min_days: int = 0                 # <= 0 → server default
    min_availability_member: int = 0  # <= 0 → server default


class GeneratedPeriod(BaseModel):
    period_number: int
    start_date: Date
    end_date: Date
    duration_days: int
    free_count: int
    total_members: int
    availability_percentage: float


class GeneratePeriodsStats(BaseModel):
    total_periods: int
    total_members: int
    all_members_available_days: int
    min_days: int
    min_availability_member: int
    trip: TripRef


class GeneratePeriodsResponse(BaseModel):
    message: str
    periods: list[GeneratedPeriod]
    stats: GeneratePeriodsStats


# ---------------------------------------------------------------------------
# GET /trips/{trip_id}/available-periods
# ---------------------------------------------------------------------------

class StoredPeriod(GeneratedPeriod):
    id: str
    created_at: str  # ISO 8601, UTC


class AvailablePeriodsResponse(BaseModel):
    periods: list[StoredPeriod]


# ---------------------------------------------------------------------------
# GET /health
# ---------------------------------------------------------------------------

class StorageStats(BaseModel):
    trips: int
    availability_rows: int
    generated_periods: int


class HealthResponse(BaseModel):
    status: Literal["ok"]
    timestamp: str
    storage: StorageStats
