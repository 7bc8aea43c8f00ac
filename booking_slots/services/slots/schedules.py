# booking_slots/services/slots/schedules.py
"""
Schedule resolver: opening-hour rules → concrete intervals.

Rules are expressed in minutes from local midnight of the schedule's
timezone:
✓ WEEKLY rules match by weekday
✓ DATE rules match one local calendar date
✓ inactive rules and days outside effective_from/effective_to are skipped

No schedule for an owner → empty list. Whether that means "inherit location
hours" or "closed" is decided by the engine.
"""

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from ...schemas.availability import (
    AvailabilityWindow,
    Schedule,
    ScheduleOwnerType,
    ScheduleRule,
)
from .intervals import Interval, clamp_intervals, merge_intervals


WEEKDAY_INDEX = {
    "MONDAY": 0,
    "TUESDAY": 1,
    "WEDNESDAY": 2,
    "THURSDAY": 3,
    "FRIDAY": 4,
    "SATURDAY": 5,
    "SUNDAY": 6,
}


def build_schedule_intervals(
    schedules: list[Schedule],
    owner_type: ScheduleOwnerType,
    owner_id: str | None,
    window: AvailabilityWindow,
) -> list[Interval]:
    """
    Resolve all schedules of one owner into merged UTC intervals.

    Args:
        schedules: All schedules of the location
        owner_type: LOCATION / STAFF / RESOURCE
        owner_id: Owner id (location id for LOCATION)
        window: Query window; output is clamped to it

    Returns:
        Sorted, merged intervals. Empty if the owner has no schedule.
    """
    if window.is_empty:
        return []

    owner_schedules = [
        s for s in schedules
        if s.owner_type == owner_type and s.owner_id == owner_id
    ]
    if not owner_schedules:
        return []

    intervals: list[Interval] = []
    for schedule in owner_schedules:
        tz = ZoneInfo(schedule.timezone)
        days = _local_days(window, tz)
        for rule in schedule.rules:
            if not _is_rule_active(rule, window):
                continue
            for day in days:
                interval = _rule_interval(rule, day, tz)
                if interval is not None:
                    intervals.append(interval)

    return merge_intervals(clamp_intervals(intervals, window))


# ── Helpers ──────────────────────────────────────────────────────────────


def _local_days(window: AvailabilityWindow, tz: ZoneInfo) -> list[date]:
    """Local calendar days touched by the window."""
    first = window.start.astimezone(tz).date()
    # window end is exclusive
    last = (window.end - timedelta(microseconds=1)).astimezone(tz).date()

    days = []
    current = first
    while current <= last:
        days.append(current)
        current += timedelta(days=1)
    return days


def _is_rule_active(rule: ScheduleRule, window: AvailabilityWindow) -> bool:
    if not rule.is_active:
        return False
    if rule.effective_from and rule.effective_from > window.end:
        return False
    if rule.effective_to and rule.effective_to < window.start:
        return False
    return True


def _rule_interval(rule: ScheduleRule, day: date, tz: ZoneInfo) -> Interval | None:
    """Interval contributed by `rule` on local `day`, or None."""
    if rule.type == "WEEKLY" and rule.weekday is not None:
        if day.weekday() != WEEKDAY_INDEX[rule.weekday]:
            return None
    elif rule.type == "DATE" and rule.date is not None:
        if day != rule.date:
            return None
    else:
        return None

    midnight = datetime.combine(day, time.min, tzinfo=tz)
    next_midnight = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)

    # Effective bounds are checked per day, not only against the window
    if rule.effective_from and next_midnight <= rule.effective_from:
        return None
    if rule.effective_to and midnight > rule.effective_to:
        return None

    # Wall-clock arithmetic: minutes are local, converted to UTC afterwards
    start = (midnight + timedelta(minutes=rule.start_minute)).astimezone(timezone.utc)
    end = (midnight + timedelta(minutes=rule.end_minute)).astimezone(timezone.utc)
    if start >= end:
        return None
    return Interval(start, end)
