"""
FastAPI application entry point.

On startup the database schema is initialised.  Caller identity arrives in
the X-User-Id header; authentication happens upstream.

Route handlers are plain functions and run in FastAPI's threadpool: a
transaction may sit on a row lock, the SQLite busy timeout or retry backoff,
and must not hold up the event loop while it does.

Endpoints (v1):
  GET  /health
  GET  /trips/{trip_id}/dates
  POST /trips/{trip_id}/availability
  GET  /trips/{trip_id}/availability/me
  POST /trips/{trip_id}/availability/generate-periods
  GET  /trips/{trip_id}/available-periods
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import Depends, FastAPI, HTTPException, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import APIKeyHeader
from sqlalchemy import func
from sqlalchemy.orm import Session

from api.schemas import (
    AvailabilityRequest,
    AvailabilityResponse,
    AvailablePeriodsResponse,
    GeneratePeriodsRequest,
    GeneratePeriodsResponse,
    HealthResponse,
    MyAvailabilityResponse,
    TripDatesResponse,
)
from availability.ledger import get_my_availability, get_trip_dates, submit_availability
from config import CORS_ORIGINS
from db.models import Availability, AvailablePeriod, Trip
from db.session import get_session, init_db
from errors import (
    InvalidDate,
    NoEligibleMembers,
    NotAuthorized,
    NotFound,
    PlannerError,
    StorageConflict,
)
from notify.notifier import notify_availability_submitted
from periods.generator import generate_periods
from periods.store import list_periods

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

_user_header = APIKeyHeader(name="X-User-Id", auto_error=False)


def _current_user(user_id: str | None = Security(_user_header)) -> str:
    """Authenticated user id forwarded by the gateway."""
    if not user_id or not user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header.")
    return user_id.strip()


def _http_error(exc: PlannerError) -> HTTPException:
    """Map a planner error onto the HTTP status the client should see."""
    if isinstance(exc, NotFound):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, NotAuthorized):
        return HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, InvalidDate):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, NoEligibleMembers):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, StorageConflict):
        return HTTPException(status_code=503, detail=str(exc), headers={"Retry-After": "1"})
    logger.error("Unmapped planner error: %r", exc)
    return HTTPException(status_code=500, detail=str(exc))


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info("Database initialised.")
    yield


app = FastAPI(
    title="Group Trip Availability Planner",
    description="Collects member availability and proposes trip dates everyone can make.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


@app.get("/health", response_model=HealthResponse)
def health(session: Session = Depends(get_session)) -> HealthResponse:
    """Liveness check plus row counts for the tables this service owns."""
    return {
        "status": "ok",
        "timestamp": datetime.utcnow().isoformat(),
        "storage": {
            "trips": session.query(func.count(Trip.id)).scalar() or 0,
            "availability_rows": session.query(func.count(Availability.id)).scalar() or 0,
            "generated_periods": session.query(func.count(AvailablePeriod.id)).scalar() or 0,
        },
    }


@app.get("/trips/{trip_id}/dates", response_model=TripDatesResponse)
def trip_dates(
    trip_id: str,
    user_id: str = Depends(_current_user),
    session: Session = Depends(get_session),
) -> TripDatesResponse:
    """Inclusive date range members choose their free days from."""
    try:
        window = get_trip_dates(session, trip_id, user_id)
    except PlannerError as exc:
        raise _http_error(exc)

    return {
        "trip": {
            "id": window.trip_id,
            "name": window.name,
            "start_date": window.start_date,
            "end_date": window.end_date,
        },
        "date_range": {
            "start_date": window.start_date,
            "end_date": window.end_date,
            "total_dates": window.total_days,
        },
    }


@app.post("/trips/{trip_id}/availability", response_model=AvailabilityResponse)
def save_availability(
    trip_id: str,
    body: AvailabilityRequest,
    user_id: str = Depends(_current_user),
    session: Session = Depends(get_session),
) -> AvailabilityResponse:
    """
    Replace the caller's free days for this trip.

    Resubmitting replaces the previous set entirely.  The trip creator is
    notified in the background once the new set is committed.
    """
    try:
        window, summary = submit_availability(session, trip_id, user_id, body.dates)
    except PlannerError as exc:
        raise _http_error(exc)

    notify_availability_submitted(window, user_id, summary.submitted_dates)
    return {
        "message": "Availability saved successfully",
        "summary": {
            "total_dates": summary.total_dates,
            "submitted_dates": summary.submitted_dates,
        },
    }


@app.get("/trips/{trip_id}/availability/me", response_model=MyAvailabilityResponse)
def my_availability(
    trip_id: str,
    user_id: str = Depends(_current_user),
    session: Session = Depends(get_session),
) -> MyAvailabilityResponse:
    """The caller's stored free days (ascending) for self-review."""
    try:
        days, summary = get_my_availability(session, trip_id, user_id)
    except PlannerError as exc:
        raise _http_error(exc)

    return {
        "availability": [{"date": d} for d in days],
        "summary": {
            "total_dates": summary.total_dates,
            "submitted_dates": summary.submitted_dates,
        },
    }


@app.post("/trips/{trip_id}/availability/generate-periods", response_model=GeneratePeriodsResponse)
def generate_available_periods(
    trip_id: str,
    body: GeneratePeriodsRequest | None = None,
    user_id: str = Depends(_current_user),
    session: Session = Depends(get_session),
) -> GeneratePeriodsResponse:
    """
    Recompute candidate periods from current availability and replace the
    stored set.  Accepted members are notified in the background.
    """
    body = body or GeneratePeriodsRequest()
    try:
        result = generate_periods(
            session,
            trip_id,
            min_days=body.min_days,
            min_availability_member=body.min_availability_member,
            requested_by=user_id,
        )
    except PlannerError as exc:
        raise _http_error(exc)

    stats = result.stats
    message = (
        "Periods generated successfully"
        if stats.total_members
        else "No accepted members in this trip; no periods generated"
    )
    return {
        "message": message,
        "periods": [
            {
                "period_number": p.period_number,
                "start_date": p.start_date,
                "end_date": p.end_date,
                "duration_days": p.duration_days,
                "free_count": p.min_free_count,
                "total_members": p.total_members,
                "availability_percentage": p.availability_percentage,
            }
            for p in result.periods
        ],
        "stats": {
            "total_periods": stats.total_periods,
            "total_members": stats.total_members,
            "all_members_available_days": stats.all_members_available_days,
            "min_days": stats.min_days,
            "min_availability_member": stats.min_availability_member,
            "trip": {"id": result.window.trip_id, "name": result.window.name},
        },
    }


@app.get("/trips/{trip_id}/available-periods", response_model=AvailablePeriodsResponse)
def available_periods(
    trip_id: str,
    user_id: str = Depends(_current_user),
    session: Session = Depends(get_session),
) -> AvailablePeriodsResponse:
    """Last generated result set, ordered by period_number.  Never recomputes."""
    try:
        rows = list_periods(session, trip_id)
    except PlannerError as exc:
        raise _http_error(exc)

    return {
        "periods": [
            {
                "id": r.id,
                "period_number": r.period_number,
                "start_date": r.start_date,
                "end_date": r.end_date,
                "duration_days": r.duration_days,
                "free_count": r.free_count,
                "total_members": r.total_members,
                "availability_percentage": r.availability_percentage,
                "created_at": r.created_at.isoformat(),
            }
            for r in rows
        ]
    }


if __name__ == "__main__":
    import uvicorn

    from config import API_HOST, API_PORT

    uvicorn.run("api.main:app", host=API_HOST, port=API_PORT)
