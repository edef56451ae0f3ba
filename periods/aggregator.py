"""
Daily quorum aggregation.

For every calendar day in a trip window, count how many members of the
accepted-member snapshot marked that day free.  Days nobody marked still
appear with a zero count, so an N-day window always yields exactly N
entries in ascending order.

Only AvailabilityStatus.FREE counts toward quorum.  Rows belonging to users
outside the snapshot (pending, declined, or removed members) are ignored.
"""

import logging
from collections import Counter
from datetime import date, timedelta
from typing import Iterable, NamedTuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.models import Availability, AvailabilityStatus
from trips.directory import TripWindow

logger = logging.getLogger(__name__)


class DailyCount(NamedTuple):
    date: date
    free_count: int


# Every status must appear here.  FLEXIBLE is recorded but does not count yet.
_COUNTS_TOWARD_QUORUM: dict[AvailabilityStatus, bool] = {
    AvailabilityStatus.FREE: True,
    AvailabilityStatus.FLEXIBLE: False,
    AvailabilityStatus.BUSY: False,
}


def counts_toward_quorum(status: AvailabilityStatus) -> bool:
    """Whether a reported status makes the member count as available that day."""
    try:
        return _COUNTS_TOWARD_QUORUM[AvailabilityStatus(status)]
    except (KeyError, ValueError):
        raise ValueError(f"Unknown availability status: {status!r}") from None


def window_days(start: date, end: date) -> list[date]:
    """Every date from start to end inclusive."""
    return [start + timedelta(days=i) for i in range((end - start).days + 1)]


def build_daily_counts(
    start: date,
    end: date,
    records: Iterable[tuple[str, date, AvailabilityStatus]],
    members: set[str],
) -> list[DailyCount]:
    """
    Pure aggregation over (user_id, date, status) records.

    Each (member, day) pair is counted at most once.  Records outside the
    window or from non-members are dropped.
    """
    seen: set[tuple[str, date]] = set()
    per_day: Counter[date] = Counter()
    for user_id, day, status in records:
        if user_id not in members or not (start <= day <= end):
            continue
        if not counts_toward_quorum(status) or (user_id, day) in seen:
            continue
        seen.add((user_id, day))
        per_day[day] += 1
    return [DailyCount(day, per_day.get(day, 0)) for day in window_days(start, end)]


def aggregate(session: Session, window: TripWindow, members: set[str]) -> list[DailyCount]:
    """
    Read the ledger for `window.trip_id` and count free members per day.

    `members` is the accepted-member snapshot taken at the start of the run;
    it is passed in (not re-read) so the whole run sees one membership set.
    An empty snapshot yields all-zero counts.
    """
    if not members:
        return [DailyCount(day, 0) for day in window_days(window.start_date, window.end_date)]

    rows = session.execute(
        select(Availability.user_id, Availability.date, Availability.status).where(
            Availability.trip_id == window.trip_id,
            Availability.user_id.in_(members),
            Availability.status == AvailabilityStatus.FREE,
            Availability.date.between(window.start_date, window.end_date),
        )
    ).all()
    logger.debug("Aggregating %d ledger rows for trip %s.", len(rows), window.trip_id)
    return build_daily_counts(window.start_date, window.end_date, rows, members)
