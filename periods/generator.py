"""
Period generation run: aggregate → extract → rank → replace → notify.

Everything up to and including the replace executes in one transaction
(REPEATABLE READ on PostgreSQL), so the accepted-member snapshot, the
ledger rows and the write all belong to the same point in time.
Submissions that commit after the snapshot show up in the next run.

No state survives between runs: each call recomputes from the ledger.
Notifications are dispatched only after the commit and never block or
fail the run.
"""

import logging
from dataclasses import dataclass
from typing import Sequence

from sqlalchemy.orm import Session

from config import DEFAULT_MIN_AVAILABILITY_MEMBER, DEFAULT_MIN_DAYS, REJECT_EMPTY_MEMBERSHIP
from db.session import run_in_transaction
from errors import NoEligibleMembers, NotAuthorized
from notify.notifier import notify_generated
from periods.aggregator import DailyCount, aggregate
from periods.extractor import extract_periods
from periods.ranker import RankedPeriod, rank_periods
from periods.store import write_periods
from trips.directory import TripWindow, get_accepted_members, get_trip_window, is_participant, lock_trip

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationStats:
    total_periods: int
    total_members: int
    all_members_available_days: int
    min_days: int
    min_availability_member: int


@dataclass(frozen=True)
class GenerationResult:
    window: TripWindow
    periods: list[RankedPeriod]
    stats: GenerationStats


def _or_default(value: int | None, default: int) -> int:
    if value is None or value <= 0:
        return max(1, default)
    return value


def all_members_available_days(daily: Sequence[DailyCount], total_members: int) -> int:
    """Days on which every accepted member is free.  0 when there are no members."""
    if total_members <= 0:
        return 0
    return sum(1 for d in daily if d.free_count == total_members)


def compute_periods(
    daily: Sequence[DailyCount],
    total_members: int,
    min_days: int,
    min_availability_member: int,
) -> list[RankedPeriod]:
    """The pure part of a run, usable without a database."""
    raw = extract_periods(daily, min_availability_member, min_days)
    return rank_periods(raw, total_members)


def generate_periods(
    session: Session,
    trip_id: str,
    min_days: int | None = None,
    min_availability_member: int | None = None,
    requested_by: str | None = None,
) -> GenerationResult:
    """
    Recompute and persist a trip's candidate periods.

    Args:
        session:                 SQLAlchemy session.
        trip_id:                 Trip to generate for.
        min_days:                Shortest period kept; <= 0 or None → DEFAULT_MIN_DAYS.
        min_availability_member: Members that must be free on every day of a
                                 period; <= 0 or None → DEFAULT_MIN_AVAILABILITY_MEMBER.
        requested_by:            When given, must be a trip participant.

    Returns:
        GenerationResult with the ranked periods and stats.  A trip with no
        accepted members yields no periods (the stored set is still cleared)
        unless REJECT_EMPTY_MEMBERSHIP is enabled.

    Raises:
        NotFound, InvalidTripWindow, NotAuthorized, NoEligibleMembers, StorageConflict
    """
    min_days = _or_default(min_days, DEFAULT_MIN_DAYS)
    min_members = _or_default(min_availability_member, DEFAULT_MIN_AVAILABILITY_MEMBER)

    def _run(s: Session) -> tuple[TripWindow, set[str], list[DailyCount], list[RankedPeriod]]:
        window = get_trip_window(s, trip_id)
        if requested_by is not None and not is_participant(s, trip_id, requested_by):
            raise NotAuthorized("Only trip members can generate periods")
        lock_trip(s, trip_id)

        members = get_accepted_members(s, trip_id)
        if not members and REJECT_EMPTY_MEMBERSHIP:
            raise NoEligibleMembers("no accepted members in this trip")

        daily = aggregate(s, window, members)
        ranked = compute_periods(daily, len(members), min_days, min_members)
        write_periods(s, trip_id, ranked)
        return window, members, daily, ranked

    window, members, daily, ranked = run_in_transaction(
        session, _run, isolation_level="REPEATABLE READ",
    )

    stats = GenerationStats(
        total_periods=len(ranked),
        total_members=len(members),
        all_members_available_days=all_members_available_days(daily, len(members)),
        min_days=min_days,
        min_availability_member=min_members,
    )
    logger.info(
        "Generated %d periods for trip %s (%d members, min_days=%d, min_members=%d).",
        stats.total_periods, trip_id, stats.total_members, min_days, min_members,
    )

    notify_generated(window, members, len(ranked), min_days, min_members)
    return GenerationResult(window=window, periods=ranked, stats=stats)
