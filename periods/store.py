"""
Persistence for generated periods (available_periods).

The only mutation is a whole-set replace: delete every row for the trip,
insert the newly ranked set, commit once.  Readers therefore see either
the previous complete set or the new complete set.  Nothing else in the
codebase writes to available_periods.
"""

import logging
from datetime import datetime
from typing import Sequence

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from db.models import AvailablePeriod, Trip
from db.session import run_in_transaction
from errors import NotFound
from periods.ranker import RankedPeriod
from trips.directory import lock_trip

logger = logging.getLogger(__name__)


def write_periods(session: Session, trip_id: str, ranked: Sequence[RankedPeriod]) -> None:
    """
    Delete-then-insert inside the caller's open transaction.

    Callers must run this through run_in_transaction (directly or via
    replace_periods) so the delete and the inserts commit or roll back
    together.  An empty `ranked` still clears the previous set.
    """
    lock_trip(session, trip_id)
    session.execute(delete(AvailablePeriod).where(AvailablePeriod.trip_id == trip_id))
    created_at = datetime.utcnow()
    session.add_all(
        AvailablePeriod(
            trip_id=trip_id,
            period_number=p.period_number,
            start_date=p.start_date,
            end_date=p.end_date,
            duration_days=p.duration_days,
            free_count=p.min_free_count,
            flexible_count=0,
            total_members=p.total_members,
            availability_percentage=p.availability_percentage,
            created_at=created_at,
        )
        for p in ranked
    )
    session.flush()


def replace_periods(session: Session, trip_id: str, ranked: Sequence[RankedPeriod]) -> None:
    """Atomically replace a trip's generated periods.  Raises StorageConflict when retries run out."""
    run_in_transaction(session, lambda s: write_periods(s, trip_id, ranked))
    logger.info("Replaced generated periods for trip %s (%d rows).", trip_id, len(ranked))


def list_periods(session: Session, trip_id: str) -> list[AvailablePeriod]:
    """Stored periods ordered by period_number.  No recomputation."""
    if session.get(Trip, trip_id) is None:
        raise NotFound(f"Trip {trip_id} not found.")
    return list(
        session.execute(
            select(AvailablePeriod)
            .where(AvailablePeriod.trip_id == trip_id)
            .order_by(AvailablePeriod.period_number.asc(), AvailablePeriod.start_date.asc())
        ).scalars()
    )
