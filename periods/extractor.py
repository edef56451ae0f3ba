"""
Period extraction (gaps-and-islands over daily free counts).

Algorithm, one left-to-right pass, O(N) in window days:
  1. A day qualifies when free_count >= min_availability_member.
  2. Consecutive qualifying days form a run.  A non-qualifying day or a
     calendar gap between two entries closes the current run.
  3. A run's bottleneck (min_free) is its smallest free_count: the number
     of members who can make the whole span.
  4. Runs shorter than min_days are dropped silently.

Input must be strictly ascending by date with non-negative counts; anything
else is a programming error and raises ValueError.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Sequence

from periods.aggregator import DailyCount

_ONE_DAY = timedelta(days=1)


@dataclass(frozen=True)
class RawPeriod:
    start: date
    end: date
    min_free: int

    @property
    def duration(self) -> int:
        return (self.end - self.start).days + 1


def _check_ordering(daily_counts: Sequence[DailyCount]) -> None:
    prev: date | None = None
    for entry in daily_counts:
        if entry.free_count < 0:
            raise ValueError(f"Negative free_count on {entry.date}: {entry.free_count}")
        if prev is not None and entry.date <= prev:
            raise ValueError(f"Daily counts must be strictly ascending: {entry.date} after {prev}")
        prev = entry.date


def extract_periods(
    daily_counts: Sequence[DailyCount],
    min_availability_member: int,
    min_days: int,
) -> list[RawPeriod]:
    """
    Return maximal qualifying runs in ascending start order.

    Thresholds <= 0 fall back to 1.  An empty input, or one where no day
    qualifies, returns an empty list.
    """
    _check_ordering(daily_counts)
    threshold = min_availability_member if min_availability_member > 0 else 1
    min_len = min_days if min_days > 0 else 1

    periods: list[RawPeriod] = []
    run_start: date | None = None
    run_end: date | None = None
    run_min = 0

    def _close() -> None:
        if run_start is None:
            return
        candidate = RawPeriod(start=run_start, end=run_end, min_free=run_min)
        if candidate.duration >= min_len:
            periods.append(candidate)

    for entry in daily_counts:
        qualifies = entry.free_count >= threshold
        contiguous = run_end is not None and entry.date == run_end + _ONE_DAY

        if qualifies and contiguous:
            run_end = entry.date
            run_min = min(run_min, entry.free_count)
            continue

        _close()
        if qualifies:
            run_start, run_end, run_min = entry.date, entry.date, entry.free_count
        else:
            run_start, run_end, run_min = None, None, 0

    _close()
    return periods
