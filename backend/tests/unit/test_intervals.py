"""Unit tests for half-open slot interval arithmetic."""
from datetime import datetime, timedelta

from facility_dispatch.core.scheduling.intervals import (
    first_conflict,
    intervals_overlap,
    slot_end,
)

T = datetime(2025, 3, 10, 9, 0)


def minutes(n):
    return timedelta(minutes=n)


class TestIntervals:

    def test_slot_end(self):
        assert slot_end(T, 30) == T + minutes(30)

    def test_overlapping_intervals(self):
        assert intervals_overlap(T, T + minutes(30), T + minutes(15), T + minutes(45))

    def test_touching_intervals_do_not_overlap(self):
        assert not intervals_overlap(T, T + minutes(30), T + minutes(30), T + minutes(60))
        assert not intervals_overlap(T + minutes(30), T + minutes(60), T, T + minutes(30))

    def test_contained_interval_overlaps(self):
        assert intervals_overlap(T, T + minutes(60), T + minutes(10), T + minutes(20))

    def test_overlap_is_symmetric(self):
        a = (T, T + minutes(30))
        b = (T + minutes(29), T + minutes(40))

        assert intervals_overlap(*a, *b) == intervals_overlap(*b, *a)

    def test_first_conflict_returns_overlapping_slot(self):
        existing = [(T - minutes(60), 30), (T + minutes(10), 30)]

        assert first_conflict(T, 30, existing) == (T + minutes(10), 30)

    def test_first_conflict_none_when_clear(self):
        existing = [(T - minutes(30), 30), (T + minutes(30), 30)]

        assert first_conflict(T, 30, existing) is None
