# booking_slots/services/slots/request_builder.py
"""
Build an AvailabilityRequest from stored records.

Records are plain mappings (rows as loaded by the caller's data layer):
  services       {id, location_id, name, duration, buffer_before, buffer_after,
                  steps: [{id, name, duration, order, min_staff, allowed_staff_ids,
                           resources: [{resource_id, resource: {type}, quantity, optional}]}]}
  staff          {id, location_id}
  resources      {id, location_id, type, capacity}
  schedules      {id, owner_type, location_id, staff_id, resource_id, timezone,
                  rules: [{id, rule_type, weekday, starts_at, ends_at, is_active,
                           effective_from, effective_to}]}
  time_offs      {id, location_id, starts_at, ends_at, staff_id, resource_id}
  exceptions     {id, location_id, starts_at, ends_at, type, staff_id, resource_id}
  appointment_items {id, staff_id, resource_id, starts_at, ends_at,
                     appointment: {location_id}}

Normalisation:
✓ services without steps get one staffed step of the service duration
✓ duration overrides extend the last staffed step
✓ resources and step resource links are ordered by id (stable allocation)
✓ DATE rules take their date from effective_from in the schedule timezone
"""

import math
from datetime import datetime
from typing import Any, Mapping
from zoneinfo import ZoneInfo

from ...schemas.availability import (
    AppointmentBlock,
    AvailabilityException,
    AvailabilityRequest,
    AvailabilityWindow,
    Resource,
    Schedule,
    ScheduleRule,
    ServiceDefinition,
    ServiceStepDefinition,
    ServiceStepResourceRequirement,
    StaffMember,
    TimeOff,
)

Record = Mapping[str, Any]


def build_availability_request(
    location_id: str,
    window_start: datetime,
    window_end: datetime,
    services: list[Record],
    staff: list[Record],
    resources: list[Record],
    schedules: list[Record],
    time_offs: list[Record],
    exceptions: list[Record],
    appointment_items: list[Record],
    staff_id: str | None = None,
    slot_granularity_minutes: int | None = None,
    duration_overrides: Mapping[str, Any] | None = None,
) -> AvailabilityRequest:
    """
    Map stored records to an AvailabilityRequest.

    Args:
        duration_overrides: service_id → extra minutes (e.g. from a
            personalisation pre-check). Invalid or negative values are ignored.
    """
    return AvailabilityRequest(
        location_id=location_id,
        window=AvailabilityWindow(start=window_start, end=window_end),
        services=[_map_service(s, duration_overrides) for s in services],
        staff=[StaffMember(id=s["id"], location_id=s["location_id"]) for s in staff],
        resources=[
            Resource(
                id=r["id"],
                location_id=r["location_id"],
                type=r["type"],
                capacity=r.get("capacity") or 1,
            )
            for r in sorted(resources, key=lambda r: r["id"])
        ],
        schedules=[_map_schedule(s) for s in schedules],
        time_offs=[
            TimeOff(
                id=t["id"],
                location_id=t["location_id"],
                starts_at=t["starts_at"],
                ends_at=t["ends_at"],
                staff_id=t.get("staff_id"),
                resource_id=t.get("resource_id"),
            )
            for t in time_offs
        ],
        availability_exceptions=[
            AvailabilityException(
                id=e["id"],
                location_id=e["location_id"],
                starts_at=e["starts_at"],
                ends_at=e["ends_at"],
                type=e["type"],
                staff_id=e.get("staff_id"),
                resource_id=e.get("resource_id"),
            )
            for e in exceptions
        ],
        appointments=[_map_appointment_item(item) for item in appointment_items],
        staff_id=staff_id,
        slot_granularity_minutes=slot_granularity_minutes,
    )


# ── Services ─────────────────────────────────────────────────────────────


def _map_service(service: Record, overrides: Mapping[str, Any] | None) -> ServiceDefinition:
    raw_steps = sorted(service.get("steps") or [], key=lambda s: s.get("order", 0))
    if raw_steps:
        steps = [_map_step(step) for step in raw_steps]
    else:
        steps = [
            ServiceStepDefinition(
                id=f"{service['id']}-fallback-step",
                name=service.get("name", ""),
                duration=max(service.get("duration") or 0, 1),
                requires_staff=True,
            )
        ]

    extra = read_duration_override(overrides, service["id"])
    if extra > 0:
        steps = apply_duration_override(steps, extra)

    return ServiceDefinition(
        id=service["id"],
        location_id=service["location_id"],
        buffer_before=service.get("buffer_before") or 0,
        buffer_after=service.get("buffer_after") or 0,
        steps=steps,
    )


def _map_step(step: Record) -> ServiceStepDefinition:
    links = sorted(
        step.get("resources") or [],
        key=lambda link: link.get("resource_id") or (link.get("resource") or {}).get("id") or "",
    )
    return ServiceStepDefinition(
        id=step["id"],
        name=step.get("name", ""),
        duration=step["duration"],
        requires_staff=(step.get("min_staff") or 0) > 0,
        allowed_staff_ids=step.get("allowed_staff_ids"),
        resources=[_map_step_resource(link) for link in links],
    )


def _map_step_resource(link: Record) -> ServiceStepResourceRequirement:
    resource = link.get("resource") or {}
    resource_id = link.get("resource_id")
    return ServiceStepResourceRequirement(
        resource_ids=[resource_id] if resource_id else None,
        resource_type=resource.get("type"),
        quantity=link.get("quantity") or 1,
        optional=bool(link.get("optional", False)),
    )


def read_duration_override(overrides: Mapping[str, Any] | None, service_id: str) -> int:
    """Extra minutes for a service, 0 when missing or invalid."""
    if not overrides:
        return 0
    raw = overrides.get(service_id)
    if isinstance(raw, bool):
        return 0
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(value):
        return 0
    return max(0, round(value))


def apply_duration_override(
    steps: list[ServiceStepDefinition],
    extra_minutes: int,
) -> list[ServiceStepDefinition]:
    """Add extra minutes to the last staffed step (last step if none is staffed)."""
    if not steps or extra_minutes <= 0:
        return steps

    target = len(steps) - 1
    for index in range(len(steps) - 1, -1, -1):
        if steps[index].requires_staff:
            target = index
            break

    updated = list(steps)
    step = updated[target]
    updated[target] = step.model_copy(update={"duration": max(1, step.duration + extra_minutes)})
    return updated


# ── Schedules ────────────────────────────────────────────────────────────


def _schedule_owner_id(schedule: Record) -> str | None:
    owner_type = schedule["owner_type"]
    if owner_type == "LOCATION":
        return schedule.get("location_id")
    if owner_type == "STAFF":
        return schedule.get("staff_id")
    return schedule.get("resource_id")


def _map_schedule(schedule: Record) -> Schedule:
    tz_name = schedule.get("timezone") or "UTC"
    tz = ZoneInfo(tz_name)
    rules = []
    for raw in schedule.get("rules") or []:
        rule = ScheduleRule(
            id=raw["id"],
            type=raw["rule_type"],
            weekday=raw.get("weekday"),
            start_minute=raw["starts_at"],
            end_minute=raw["ends_at"],
            is_active=raw.get("is_active", True) is not False,
            effective_from=raw.get("effective_from"),
            effective_to=raw.get("effective_to"),
        )
        if rule.type == "DATE" and rule.effective_from is not None:
            rule = rule.model_copy(update={"date": rule.effective_from.astimezone(tz).date()})
        rules.append(rule)

    return Schedule(
        id=schedule["id"],
        owner_type=schedule["owner_type"],
        owner_id=_schedule_owner_id(schedule),
        timezone=tz_name,
        rules=rules,
    )


# ── Appointments ─────────────────────────────────────────────────────────


def _map_appointment_item(item: Record) -> AppointmentBlock:
    appointment = item.get("appointment") or {}
    resource_id = item.get("resource_id")
    return AppointmentBlock(
        id=item["id"],
        location_id=appointment.get("location_id") or item.get("location_id"),
        starts_at=item["starts_at"],
        ends_at=item["ends_at"],
        staff_id=item.get("staff_id"),
        resource_ids=[resource_id] if resource_id else [],
    )
