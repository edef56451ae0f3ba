"""
Availability ledger: which days each member marked as free for a trip.

Storage is normalised (one availabilities row per trip × user × day).  A
submission is a full replace for that (trip, user) pair: every previous row
is deleted and the new set inserted inside one transaction, so resubmitting
is idempotent and can never leave stale days behind.

Only the submitting member's rows are ever touched by their submission.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Iterable

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from db.models import Availability, AvailabilityStatus
from db.session import run_in_transaction
from errors import InvalidDate, NotAuthorized
from trips.directory import (
    TripWindow,
    get_trip_window,
    is_participant,
    lock_trip,
    mark_availability_submitted,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AvailabilitySummary:
    total_dates: int      # days in the trip window
    submitted_dates: int  # days this member marked free


def _validated_dates(window: TripWindow, dates: list[date]) -> list[date]:
    """Deduplicate, reject out-of-window days, return ascending."""
    if not dates:
        raise InvalidDate("dates is required and must not be empty")
    unique = sorted(set(dates))
    for day in unique:
        if not window.contains(day):
            raise InvalidDate(f"date out of trip range: {day.isoformat()}")
    return unique


def submit_availability(
    session: Session,
    trip_id: str,
    user_id: str,
    dates: Iterable[date],
) -> tuple[TripWindow, AvailabilitySummary]:
    """
    Replace a member's availability for a trip with `dates` (all marked free).

    Validation runs before anything is written: a single out-of-range date
    fails the whole call and the previous set stays in place.  Duplicate dates
    are collapsed silently.  The availability_submitted flag on the member's
    row is set in the same transaction.

    Returns:
        (trip window, summary).  The window is handed back so callers can
        notify the trip creator without another read.

    Raises:
        NotFound, InvalidTripWindow, NotAuthorized, InvalidDate, StorageConflict
    """
    requested = list(dates)

    def _replace(s: Session) -> tuple[TripWindow, AvailabilitySummary]:
        window = get_trip_window(s, trip_id)
        if not is_participant(s, trip_id, user_id):
            raise NotAuthorized("Only trip members can submit availability")
        unique = _validated_dates(window, requested)

        lock_trip(s, trip_id)
        s.execute(
            delete(Availability).where(
                Availability.trip_id == trip_id,
                Availability.user_id == user_id,
            )
        )
        s.add_all(
            Availability(trip_id=trip_id, user_id=user_id, date=day, status=AvailabilityStatus.FREE)
            for day in unique
        )
        mark_availability_submitted(s, trip_id, user_id)
        return window, AvailabilitySummary(total_dates=window.total_days, submitted_dates=len(unique))

    window, summary = run_in_transaction(session, _replace)
    logger.info(
        "Availability saved: trip=%s user=%s days=%d/%d.",
        trip_id, user_id, summary.submitted_dates, summary.total_dates,
    )
    return window, summary


def get_trip_dates(session: Session, trip_id: str, user_id: str) -> TripWindow:
    """The trip window a member picks days from.  Participants only."""
    window = get_trip_window(session, trip_id)
    if not is_participant(session, trip_id, user_id):
        raise NotAuthorized("Only trip members can view date range")
    return window


def get_my_availability(
    session: Session,
    trip_id: str,
    user_id: str,
) -> tuple[list[date], AvailabilitySummary]:
    """Return the member's stored days (ascending) and the window summary."""
    window = get_trip_window(session, trip_id)
    if not is_participant(session, trip_id, user_id):
        raise NotAuthorized("Only trip members can view availability")

    days = list(
        session.execute(
            select(Availability.date)
            .where(Availability.trip_id == trip_id, Availability.user_id == user_id)
            .order_by(Availability.date.asc())
        ).scalars()
    )
    return days, AvailabilitySummary(total_dates=window.total_days, submitted_dates=len(days))
