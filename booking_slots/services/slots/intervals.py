# booking_slots/services/slots/intervals.py
"""
Half-open interval algebra: [start, end).

All list operations expect sorted, non-overlapping input (the output of
merge_intervals) unless noted otherwise, and return the same shape.
"""

from datetime import datetime, timedelta
from typing import Iterable, NamedTuple

from ...schemas.availability import AvailabilityWindow


class Interval(NamedTuple):
    start: datetime
    end: datetime

    @property
    def duration(self) -> timedelta:
        return self.end - self.start


def merge_intervals(intervals: Iterable[Interval]) -> list[Interval]:
    """Sort by (start, end) and coalesce overlapping or touching intervals. Accepts any order."""
    ordered = sorted(intervals)
    if not ordered:
        return []

    result: list[Interval] = []
    current_start, current_end = ordered[0]
    for start, end in ordered[1:]:
        if start <= current_end:
            current_end = max(current_end, end)
        else:
            result.append(Interval(current_start, current_end))
            current_start, current_end = start, end
    result.append(Interval(current_start, current_end))
    return result


def intersect_intervals(a: list[Interval], b: list[Interval]) -> list[Interval]:
    """Two-pointer sweep over both lists."""
    result: list[Interval] = []
    i = j = 0
    while i < len(a) and j < len(b):
        start = max(a[i].start, b[j].start)
        end = min(a[i].end, b[j].end)
        if start < end:
            result.append(Interval(start, end))
        if a[i].end < b[j].end:
            i += 1
        else:
            j += 1
    return result


def subtract_intervals(source: list[Interval], remove: list[Interval]) -> list[Interval]:
    """Remove every `remove` interval from `source`, keeping the gaps."""
    if not source or not remove:
        return list(source)

    result: list[Interval] = []
    first = 0
    for interval in source:
        # remove intervals ending before this one can never matter again
        while first < len(remove) and remove[first].end <= interval.start:
            first += 1

        cursor = interval.start
        k = first
        while k < len(remove) and remove[k].start < interval.end:
            block = remove[k]
            if block.start > cursor:
                result.append(Interval(cursor, min(block.start, interval.end)))
            cursor = max(cursor, block.end)
            if cursor >= interval.end:
                break
            k += 1

        if cursor < interval.end:
            result.append(Interval(cursor, interval.end))
    return result


def clamp_intervals(intervals: Iterable[Interval], window: AvailabilityWindow) -> list[Interval]:
    """Truncate to the window, dropping whatever becomes empty."""
    clamped: list[Interval] = []
    for start, end in intervals:
        s = max(start, window.start)
        e = min(end, window.end)
        if s < e:
            clamped.append(Interval(s, e))
    return clamped


def is_range_within(intervals: list[Interval], start: datetime, end: datetime) -> bool:
    """True if a single interval fully contains [start, end)."""
    return any(start >= interval.start and end <= interval.end for interval in intervals)


def align_to_grid(time: datetime, origin: datetime, step: timedelta) -> datetime:
    """Round `time` up to the next multiple of `step` counted from `origin`."""
    if step <= timedelta(0):
        return time
    remainder = (time - origin) % step
    if not remainder:
        return time
    return time + (step - remainder)
