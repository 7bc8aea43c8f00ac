# tests/test_request_builder.py

from datetime import date

import pytest

from booking_slots.services.slots.config import AvailabilityConfig
from booking_slots.services.slots.engine import compute_availability
from booking_slots.services.slots.request_builder import (
    build_availability_request,
    read_duration_override,
)

from .factories import LOCATION_ID, STAFF_LINA, at


def service_row(**overrides):
    row = {
        "id": "svc-cut",
        "location_id": LOCATION_ID,
        "name": "Cut",
        "duration": 30,
        "buffer_before": 0,
        "buffer_after": 0,
        "steps": [],
    }
    row.update(overrides)
    return row


def step_row(step_id, order, duration, min_staff=1, resources=()):
    return {
        "id": step_id,
        "name": step_id,
        "duration": duration,
        "order": order,
        "min_staff": min_staff,
        "resources": list(resources),
    }


def build(services=None, **kwargs):
    data = dict(
        location_id=LOCATION_ID,
        window_start=at(8),
        window_end=at(18),
        services=services or [service_row()],
        staff=[{"id": STAFF_LINA, "location_id": LOCATION_ID}],
        resources=[
            {"id": "chair-2", "location_id": LOCATION_ID, "type": "CHAIR", "capacity": 1},
            {"id": "chair-1", "location_id": LOCATION_ID, "type": "CHAIR", "capacity": None},
        ],
        schedules=[{
            "id": "sched-loc",
            "owner_type": "LOCATION",
            "location_id": LOCATION_ID,
            "timezone": "UTC",
            "rules": [{"id": "r1", "rule_type": "WEEKLY", "weekday": "MONDAY", "starts_at": 540, "ends_at": 1020}],
        }],
        time_offs=[],
        exceptions=[],
        appointment_items=[],
    )
    data.update(kwargs)
    return build_availability_request(**data)


def test_fallback_step_for_service_without_steps():
    request = build(services=[service_row(duration=0)])
    (step,) = request.services[0].steps
    assert step.id == "svc-cut-fallback-step"
    assert step.duration == 1
    assert step.requires_staff


def test_steps_ordered_and_staffing_from_min_staff():
    request = build(services=[service_row(steps=[
        step_row("finish", 3, 15),
        step_row("apply", 1, 10),
        step_row("process", 2, 20, min_staff=0),
    ])])

    steps = request.services[0].steps
    assert [s.id for s in steps] == ["apply", "process", "finish"]
    assert [s.requires_staff for s in steps] == [True, False, True]


def test_resources_sorted_by_id():
    request = build()
    assert [r.id for r in request.resources] == ["chair-1", "chair-2"]
    assert request.resources[0].capacity == 1


def test_step_resource_links():
    links = [
        {"resource_id": "chair-2", "resource": {"type": "CHAIR"}, "quantity": 1},
        {"resource_id": "chair-1", "resource": {"type": "CHAIR"}},
    ]
    request = build(services=[service_row(steps=[step_row("cut", 1, 30, resources=links)])])

    requirements = request.services[0].steps[0].resources
    assert [r.resource_ids for r in requirements] == [["chair-1"], ["chair-2"]]
    assert requirements[0].resource_type == "CHAIR"
    assert requirements[0].quantity == 1


def test_duration_override_extends_last_staffed_step():
    request = build(
        services=[service_row(steps=[step_row("apply", 1, 10), step_row("process", 2, 20, min_staff=0)])],
        duration_overrides={"svc-cut": 15},
    )
    assert [s.duration for s in request.services[0].steps] == [25, 20]


def test_duration_override_without_staffed_step():
    request = build(
        services=[service_row(steps=[step_row("a", 1, 10, min_staff=0), step_row("b", 2, 20, min_staff=0)])],
        duration_overrides={"svc-cut": 5},
    )
    assert [s.duration for s in request.services[0].steps] == [10, 25]


@pytest.mark.parametrize("raw,expected", [
    (15, 15),
    ("10", 10),
    (2.6, 3),
    (-5, 0),
    ("abc", 0),
    (None, 0),
    (True, 0),
    (float("nan"), 0),
    (float("inf"), 0),
    ("-inf", 0),
])
def test_read_duration_override(raw, expected):
    assert read_duration_override({"svc": raw}, "svc") == expected


def test_schedule_owner_and_date_rule():
    request = build(schedules=[{
        "id": "sched-lina",
        "owner_type": "STAFF",
        "location_id": LOCATION_ID,
        "staff_id": STAFF_LINA,
        "timezone": "Europe/Berlin",
        "rules": [{
            "id": "special",
            "rule_type": "DATE",
            "starts_at": 600,
            "ends_at": 720,
            "effective_from": at(23, 30),
        }],
    }])

    (schedule,) = request.schedules
    assert schedule.owner_id == STAFF_LINA
    # 23:30 UTC is already the next day in Berlin
    assert schedule.rules[0].date == date(2025, 3, 4)


def test_appointment_items():
    request = build(appointment_items=[{
        "id": "item-1",
        "staff_id": STAFF_LINA,
        "resource_id": "chair-1",
        "starts_at": at(9),
        "ends_at": at(10),
        "appointment": {"location_id": LOCATION_ID},
    }])

    (block,) = request.appointments
    assert block.location_id == LOCATION_ID
    assert block.resource_ids == ["chair-1"]


def test_built_request_computes_slots():
    request = build(
        services=[service_row(steps=[step_row("cut", 1, 30, resources=[{"resource": {"type": "CHAIR"}}])])],
        time_offs=[{
            "id": "off",
            "location_id": LOCATION_ID,
            "staff_id": STAFF_LINA,
            "starts_at": at(9),
            "ends_at": at(10),
        }],
    )

    slots = compute_availability(request, AvailabilityConfig())

    assert slots[0].start == at(10)
    assert slots[0].services[0].steps[0].resource_ids == ["chair-1"]
