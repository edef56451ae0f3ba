"""
Read-side adapter over the trips / trip_members tables.

Trip and membership lifecycles (create, invite, accept, leave) live in the
wider application.  Availability capture and period generation only need:

  - the inclusive trip window,
  - the set of accepted members at the moment a run starts,
  - whether a user is a participant (creator or accepted member),
  - the availability_submitted flag on the member's row,
  - a row lock on the trip so writers for the same trip serialise.
"""

import logging
from dataclasses import dataclass
from datetime import date

from sqlalchemy import exists, or_, select, update
from sqlalchemy.orm import Session

from db.models import MemberStatus, Trip, TripMember
from db.session import is_postgres
from errors import InvalidTripWindow, NotFound

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TripWindow:
    trip_id: str
    name: str
    start_date: date
    end_date: date
    creator_id: str

    @property
    def total_days(self) -> int:
        return (self.end_date - self.start_date).days + 1

    def contains(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date


def get_trip_window(session: Session, trip_id: str) -> TripWindow:
    """
    Load a trip's inclusive date window.

    Raises:
        NotFound:          no such trip.
        InvalidTripWindow: end_date < start_date.
    """
    trip = session.get(Trip, trip_id)
    if trip is None:
        raise NotFound(f"Trip {trip_id} not found.")
    if trip.end_date < trip.start_date:
        logger.warning(
            "Trip %s has an inverted window (%s > %s).", trip_id, trip.start_date, trip.end_date,
        )
        raise InvalidTripWindow("trip end_date cannot be before start_date")
    return TripWindow(
        trip_id=trip.id,
        name=trip.name,
        start_date=trip.start_date,
        end_date=trip.end_date,
        creator_id=trip.creator_id,
    )


def get_accepted_members(session: Session, trip_id: str) -> set[str]:
    """User ids whose membership status is 'accepted'.  May be empty."""
    rows = session.execute(
        select(TripMember.user_id).where(
            TripMember.trip_id == trip_id,
            TripMember.status == MemberStatus.ACCEPTED,
        )
    ).scalars()
    return set(rows)


def is_participant(session: Session, trip_id: str, user_id: str) -> bool:
    """True for the trip creator or an accepted member.  Pending and declined invitees are not participants."""
    stmt = select(
        or_(
            exists().where(Trip.id == trip_id, Trip.creator_id == user_id),
            exists().where(
                TripMember.trip_id == trip_id,
                TripMember.user_id == user_id,
                TripMember.status == MemberStatus.ACCEPTED,
            ),
        )
    )
    return bool(session.execute(stmt).scalar())


def mark_availability_submitted(session: Session, trip_id: str, user_id: str) -> None:
    """Flip availability_submitted on the member's row.  No-op for a creator without a row."""
    session.execute(
        update(TripMember)
        .where(TripMember.trip_id == trip_id, TripMember.user_id == user_id)
        .values(availability_submitted=True)
    )


def lock_trip(session: Session, trip_id: str) -> None:
    """
    Take a row lock on the trip for the rest of the current transaction.

    PostgreSQL only; on SQLite run_in_transaction opens with BEGIN IMMEDIATE,
    which already holds the database write lock.
    """
    if not is_postgres(session):
        return
    session.execute(select(Trip.id).where(Trip.id == trip_id).with_for_update())
