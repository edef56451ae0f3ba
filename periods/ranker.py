"""
Ranks extracted periods and numbers them 1..N.

Order (first difference wins):
  1. min_free descending     : more members can attend
  2. duration descending     : longer window
  3. start date ascending    : earlier window, final deterministic tiebreak

Pure: identical input always produces identical numbering.
"""

from dataclasses import dataclass
from datetime import date
from typing import Iterable

from periods.extractor import RawPeriod


@dataclass(frozen=True)
class RankedPeriod:
    period_number: int
    start_date: date
    end_date: date
    duration_days: int
    min_free_count: int
    total_members: int
    availability_percentage: float


def availability_percentage(min_free: int, total_members: int) -> float:
    """min_free as a percentage of the snapshot, rounded to 2 dp.  0 when nobody is a member."""
    if total_members <= 0:
        return 0.0
    return round(min_free / total_members * 100, 2)


def _rank_key(period: RawPeriod) -> tuple[int, int, int]:
    return (-period.min_free, -period.duration, period.start.toordinal())


def rank_periods(raw_periods: Iterable[RawPeriod], total_members: int) -> list[RankedPeriod]:
    ordered = sorted(raw_periods, key=_rank_key)
    return [
        RankedPeriod(
            period_number=number,
            start_date=p.start,
            end_date=p.end,
            duration_days=p.duration,
            min_free_count=p.min_free,
            total_members=total_members,
            availability_percentage=availability_percentage(p.min_free, total_members),
        )
        for number, p in enumerate(ordered, 1)
    ]
