"""Half-open time interval arithmetic for work slots."""
from datetime import datetime, timedelta
from typing import Iterable


def slot_end(start: datetime, duration_minutes: int) -> datetime:
    return start + timedelta(minutes=duration_minutes)


def intervals_overlap(
    start_a: datetime,
    end_a: datetime,
    start_b: datetime,
    end_b: datetime,
) -> bool:
    """
    Symmetric intersection test on [start, end) intervals.

    Touching intervals (one ends exactly when the other starts) do not
    overlap.
    """
    return start_a < end_b and end_a > start_b


def first_conflict(
    start: datetime,
    duration_minutes: int,
    existing: Iterable[tuple[datetime, int]],
):
    """
    Return the first (start, duration) in `existing` that overlaps the
    requested slot, or None.
    """
    end = slot_end(start, duration_minutes)
    for other_start, other_duration in existing:
        if intervals_overlap(start, end, other_start, slot_end(other_start, other_duration)):
            return other_start, other_duration
    return None
