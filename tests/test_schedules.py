# tests/test_schedules.py

from datetime import datetime, timezone

from booking_slots.schemas.availability import AvailabilityWindow, Schedule, ScheduleRule
from booking_slots.services.slots.intervals import Interval
from booking_slots.services.slots.schedules import build_schedule_intervals

from .factories import LOCATION_ID, at, weekly_schedule


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def schedule_with(*rules: ScheduleRule, tz: str = "UTC") -> Schedule:
    return Schedule(
        id="schedule-loc",
        owner_type="LOCATION",
        owner_id=LOCATION_ID,
        timezone=tz,
        rules=list(rules),
    )


def rule(rule_id: str = "r1", **fields) -> ScheduleRule:
    data = {"type": "WEEKLY", "weekday": "MONDAY", "start_minute": 9 * 60, "end_minute": 17 * 60}
    data.update(fields)
    return ScheduleRule(id=rule_id, **data)


DAY_WINDOW = AvailabilityWindow(start=at(0), end=at(24))
WEEK_WINDOW = AvailabilityWindow(start=utc(2025, 3, 3), end=utc(2025, 3, 12))


def test_weekly_rule_on_matching_day():
    intervals = build_schedule_intervals([schedule_with(rule())], "LOCATION", LOCATION_ID, DAY_WINDOW)
    assert intervals == [Interval(at(9), at(17))]


def test_weekly_rule_other_weekday():
    tuesday = rule(weekday="TUESDAY")
    assert build_schedule_intervals([schedule_with(tuesday)], "LOCATION", LOCATION_ID, DAY_WINDOW) == []


def test_weekly_rule_repeats_every_week():
    intervals = build_schedule_intervals([schedule_with(rule())], "LOCATION", LOCATION_ID, WEEK_WINDOW)
    assert intervals == [
        Interval(utc(2025, 3, 3, 9), utc(2025, 3, 3, 17)),
        Interval(utc(2025, 3, 10, 9), utc(2025, 3, 10, 17)),
    ]


def test_date_rule():
    special = rule(type="DATE", weekday=None, date=datetime(2025, 3, 5).date(), start_minute=600, end_minute=720)
    intervals = build_schedule_intervals([schedule_with(special)], "LOCATION", LOCATION_ID, WEEK_WINDOW)
    assert intervals == [Interval(utc(2025, 3, 5, 10), utc(2025, 3, 5, 12))]


def test_inactive_rule_is_skipped():
    intervals = build_schedule_intervals(
        [schedule_with(rule(is_active=False))], "LOCATION", LOCATION_ID, DAY_WINDOW
    )
    assert intervals == []


def test_effective_from_applies_per_day():
    starting_later = rule(effective_from=utc(2025, 3, 5))
    intervals = build_schedule_intervals([schedule_with(starting_later)], "LOCATION", LOCATION_ID, WEEK_WINDOW)
    assert intervals == [Interval(utc(2025, 3, 10, 9), utc(2025, 3, 10, 17))]


def test_effective_to_applies_per_day():
    ending_early = rule(effective_to=utc(2025, 3, 5))
    intervals = build_schedule_intervals([schedule_with(ending_early)], "LOCATION", LOCATION_ID, WEEK_WINDOW)
    assert intervals == [Interval(utc(2025, 3, 3, 9), utc(2025, 3, 3, 17))]


def test_rule_outside_window_bounds():
    expired = rule(effective_to=utc(2025, 3, 1))
    assert build_schedule_intervals([schedule_with(expired)], "LOCATION", LOCATION_ID, DAY_WINDOW) == []


def test_local_hours_converted_to_utc():
    berlin = schedule_with(rule(), tz="Europe/Berlin")
    # CET, UTC+1
    intervals = build_schedule_intervals([berlin], "LOCATION", LOCATION_ID, DAY_WINDOW)
    assert intervals == [Interval(at(8), at(16))]


def test_local_hours_follow_daylight_saving():
    berlin = schedule_with(rule(), tz="Europe/Berlin")
    window = AvailabilityWindow(start=utc(2025, 3, 31), end=utc(2025, 4, 1))
    # CEST, UTC+2
    intervals = build_schedule_intervals([berlin], "LOCATION", LOCATION_ID, window)
    assert intervals == [Interval(utc(2025, 3, 31, 7), utc(2025, 3, 31, 15))]


def test_clamped_to_window():
    window = AvailabilityWindow(start=at(10), end=at(12))
    intervals = build_schedule_intervals([schedule_with(rule())], "LOCATION", LOCATION_ID, window)
    assert intervals == [Interval(at(10), at(12))]


def test_only_owner_schedules_are_used():
    schedules = [weekly_schedule("STAFF", "staff-a", 9, 12), weekly_schedule("STAFF", "staff-b", 13, 17)]
    assert build_schedule_intervals(schedules, "STAFF", "staff-a", DAY_WINDOW) == [Interval(at(9), at(12))]
    assert build_schedule_intervals(schedules, "STAFF", "staff-c", DAY_WINDOW) == []


def test_several_rules_merge():
    morning = rule("morning", start_minute=8 * 60, end_minute=12 * 60)
    midday = rule("midday", start_minute=11 * 60, end_minute=14 * 60)
    intervals = build_schedule_intervals([schedule_with(morning, midday)], "LOCATION", LOCATION_ID, DAY_WINDOW)
    assert intervals == [Interval(at(8), at(14))]


def test_empty_window():
    window = AvailabilityWindow(start=at(12), end=at(12))
    assert build_schedule_intervals([schedule_with(rule())], "LOCATION", LOCATION_ID, window) == []
