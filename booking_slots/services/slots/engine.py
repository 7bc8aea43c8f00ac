# booking_slots/services/slots/engine.py
"""
Availability engine.

Computes bookable start times for a sequence of services at one location.

Pipeline:
1. Service plan: flatten steps, buffers and total duration
2. Location free time: location schedule minus location blocks
3. Staff / resource free time: own schedule ∩ location (or location
   verbatim without a schedule) minus own busy time
4. Grid walk per staff free interval, evaluating every candidate start

Resource allocation is greedy per requirement and never backtracks across
steps. Pure function over its input, safe to run concurrently.
"""

import base64
import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from ...schemas.availability import (
    AvailabilityRequest,
    AvailabilitySlot,
    Resource,
    ServiceDefinition,
    ServiceStepDefinition,
    ServiceStepResourceRequirement,
    SlotServiceAllocation,
    SlotStepAllocation,
    StaffMember,
)
from .busy import BusyIndex, build_busy_index
from .config import AvailabilityConfig, get_availability_config
from .intervals import (
    Interval,
    align_to_grid,
    clamp_intervals,
    intersect_intervals,
    is_range_within,
    merge_intervals,
    subtract_intervals,
)
from .schedules import build_schedule_intervals

logger = logging.getLogger(__name__)


# ── Plan & context ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class PlanStep:
    service_id: str
    step: ServiceStepDefinition
    duration: timedelta


@dataclass
class ServicePlan:
    services: list[ServiceDefinition]
    # steps per service, same order as `services`
    service_steps: list[list[PlanStep]]
    first_buffer_before: timedelta
    buffer_after_by_service: list[timedelta]
    total_steps_duration: timedelta
    total_buffer_after: timedelta

    @property
    def step_count(self) -> int:
        return sum(len(steps) for steps in self.service_steps)

    @property
    def total_duration(self) -> timedelta:
        """Steps plus trailing buffers; bounds the latest possible start."""
        return self.total_steps_duration + self.total_buffer_after


@dataclass
class ResourceAvailability:
    resource: Resource
    intervals: list[Interval]


@dataclass
class AvailabilityContext:
    location_intervals: list[Interval]
    staff_availabilities: dict[str, list[Interval]] = field(default_factory=dict)
    resource_availabilities: dict[str, ResourceAvailability] = field(default_factory=dict)


def build_service_plan(services: list[ServiceDefinition]) -> ServicePlan:
    service_steps: list[list[PlanStep]] = []
    buffer_after_by_service: list[timedelta] = []
    total_steps = timedelta(0)

    for service in services:
        steps = []
        for step in service.steps:
            duration = timedelta(minutes=step.duration)
            total_steps += duration
            steps.append(PlanStep(service_id=service.id, step=step, duration=duration))
        service_steps.append(steps)
        buffer_after_by_service.append(timedelta(minutes=service.buffer_after or 0))

    first_buffer = services[0].buffer_before if services else 0
    return ServicePlan(
        services=services,
        service_steps=service_steps,
        first_buffer_before=timedelta(minutes=first_buffer or 0),
        buffer_after_by_service=buffer_after_by_service,
        total_steps_duration=total_steps,
        total_buffer_after=sum(buffer_after_by_service, timedelta(0)),
    )


def build_availability_context(request: AvailabilityRequest) -> AvailabilityContext:
    """Free intervals for the location, every staff member and every resource."""
    busy = build_busy_index(request)

    base_location = build_schedule_intervals(
        request.schedules, "LOCATION", request.location_id, request.window
    )
    location_intervals = clamp_intervals(
        merge_intervals(subtract_intervals(base_location, busy.location)),
        request.window,
    )
    context = AvailabilityContext(location_intervals=location_intervals)
    if not location_intervals:
        return context

    for staff in request.staff:
        intervals = _owner_availability(
            request, "STAFF", staff.id, location_intervals, busy.for_staff(staff.id)
        )
        if intervals:
            context.staff_availabilities[staff.id] = intervals

    for resource in request.resources:
        intervals = _owner_availability(
            request, "RESOURCE", resource.id, location_intervals, busy.for_resource(resource.id)
        )
        if intervals:
            context.resource_availabilities[resource.id] = ResourceAvailability(resource, intervals)

    return context


def _owner_availability(
    request: AvailabilityRequest,
    owner_type: str,
    owner_id: str,
    location_intervals: list[Interval],
    busy: list[Interval],
) -> list[Interval]:
    schedule = build_schedule_intervals(request.schedules, owner_type, owner_id, request.window)
    # no own schedule → inherits location hours
    base = (
        merge_intervals(intersect_intervals(location_intervals, schedule))
        if schedule
        else list(location_intervals)
    )
    return clamp_intervals(merge_intervals(subtract_intervals(base, busy)), request.window)


# ── Entry point ──────────────────────────────────────────────────────────


def compute_availability(
    request: AvailabilityRequest,
    config: AvailabilityConfig | None = None,
) -> list[AvailabilitySlot]:
    """
    Compute every feasible slot for the request.

    Returns:
        Slots sorted by start time. Empty for an empty window, no services
        or no matching staff.
    """
    if request.window.is_empty or not request.services:
        return []

    plan = build_service_plan(request.services)
    if not plan.step_count:
        return []

    config = config or get_availability_config()
    slot_step = config.slot_step(request.slot_granularity_minutes)

    context = build_availability_context(request)
    if not context.location_intervals:
        return []

    candidates = _resolve_staff_candidates(request)
    if not candidates:
        return []

    origin = request.window.start
    max_start = request.window.end - plan.total_duration

    slots: list[AvailabilitySlot] = []
    for staff in candidates:
        staff_intervals = context.staff_availabilities.get(staff.id)
        if not staff_intervals:
            continue

        for interval in staff_intervals:
            if interval.start > max_start:
                continue
            candidate = align_to_grid(max(interval.start, origin), origin, slot_step)
            while candidate < interval.end and candidate <= max_start:
                slot = _evaluate_candidate(request, staff, plan, candidate, context)
                if slot is not None:
                    slots.append(slot)
                candidate += slot_step

    slots.sort(key=lambda s: s.start)
    logger.debug(f"Computed {len(slots)} slots for location {request.location_id} (step {slot_step})")
    return slots


def _resolve_staff_candidates(request: AvailabilityRequest) -> list[StaffMember]:
    if request.staff_id:
        return [s for s in request.staff if s.id == request.staff_id]
    return list(request.staff)


# ── Candidate evaluation ─────────────────────────────────────────────────


def _evaluate_candidate(
    request: AvailabilityRequest,
    staff: StaffMember,
    plan: ServicePlan,
    candidate_start: datetime,
    context: AvailabilityContext,
) -> AvailabilitySlot | None:
    """Build the slot starting at candidate_start, or None if anything does not fit."""
    staff_intervals = context.staff_availabilities.get(staff.id)
    if not staff_intervals:
        return None
    location_intervals = context.location_intervals

    def staffed_window_fits(start: datetime, end: datetime) -> bool:
        return (
            is_range_within(location_intervals, start, end)
            and is_range_within(staff_intervals, start, end)
        )

    reserved_start = candidate_start - plan.first_buffer_before
    if reserved_start < request.window.start:
        return None
    if not staffed_window_fits(reserved_start, candidate_start):
        return None

    allocations: list[SlotServiceAllocation] = []
    pointer = candidate_start
    last_step_end = candidate_start

    for index, service in enumerate(plan.services):
        buffer_before = timedelta(minutes=service.buffer_before or 0)
        if buffer_before:
            buffer_start = pointer - buffer_before
            if buffer_start < reserved_start:
                return None
            if not staffed_window_fits(buffer_start, pointer):
                return None

        step_allocations: list[SlotStepAllocation] = []
        for plan_step in plan.service_steps[index]:
            step = plan_step.step
            step_start = pointer
            step_end = step_start + plan_step.duration

            if not is_range_within(location_intervals, step_start, step_end):
                return None
            if step.requires_staff and not is_range_within(staff_intervals, step_start, step_end):
                return None
            if step.allowed_staff_ids is not None and staff.id not in step.allowed_staff_ids:
                return None

            resource_ids: list[str] = []
            for requirement in step.resources:
                allocated = _allocate_resources(requirement, step_start, step_end, context, resource_ids)
                if allocated is None:
                    return None
                resource_ids.extend(allocated)

            step_allocations.append(SlotStepAllocation(
                step_id=step.id,
                start=step_start,
                end=step_end,
                requires_staff=step.requires_staff,
                resource_ids=resource_ids,
            ))
            pointer = step_end
            last_step_end = step_end

        buffer_after = plan.buffer_after_by_service[index]
        if buffer_after:
            buffer_end = pointer + buffer_after
            if not staffed_window_fits(pointer, buffer_end):
                return None
            pointer = buffer_end

        allocations.append(SlotServiceAllocation(service_id=service.id, steps=step_allocations))

    reserved_end = pointer
    if reserved_end > request.window.end:
        return None
    if not staffed_window_fits(reserved_start, reserved_end):
        return None

    return AvailabilitySlot(
        slot_key=create_slot_key(request.location_id, staff.id, candidate_start, allocations),
        location_id=request.location_id,
        staff_id=staff.id,
        services=allocations,
        start=candidate_start,
        end=last_step_end,
        reserved_from=reserved_start,
        reserved_to=reserved_end,
    )


def _allocate_resources(
    requirement: ServiceStepResourceRequirement,
    start: datetime,
    end: datetime,
    context: AvailabilityContext,
    taken: list[str],
) -> list[str] | None:
    """
    Greedily pick `quantity` free resources for one requirement.

    Args:
        taken: Resources already allocated to this step

    Returns:
        Allocated ids, [] for an unmet optional requirement, None if the
        requirement cannot be met.
    """
    quantity = max(requirement.quantity, 1)
    allocated: list[str] = []

    for resource_id in _resolve_resource_candidates(requirement, context):
        if resource_id in taken or resource_id in allocated:
            continue
        availability = context.resource_availabilities.get(resource_id)
        if availability is None or not is_range_within(availability.intervals, start, end):
            continue
        allocated.append(resource_id)
        if len(allocated) == quantity:
            return allocated

    return [] if requirement.optional else None


def _resolve_resource_candidates(
    requirement: ServiceStepResourceRequirement,
    context: AvailabilityContext,
) -> list[str]:
    if requirement.resource_ids:
        return [rid for rid in requirement.resource_ids if rid in context.resource_availabilities]

    if requirement.resource_type:
        return [
            rid for rid, availability in context.resource_availabilities.items()
            if availability.resource.type == requirement.resource_type
        ]

    return []


# ── Slot keys ────────────────────────────────────────────────────────────


def format_utc_iso(value: datetime) -> str:
    """2025-03-03T09:00:00.000Z"""
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def create_slot_key(
    location_id: str,
    staff_id: str,
    candidate_start: datetime,
    services: list[SlotServiceAllocation],
) -> str:
    """
    Deterministic slot key.

    Format: {location_id}|{staff_id}|{start ISO}|{digest}
    The digest covers the full allocation, so two slots that differ only in
    the chosen resource get different keys.
    """
    allocation = json.dumps(
        [service.model_dump(mode="json") for service in services],
        sort_keys=True,
        separators=(",", ":"),
    )
    start_iso = format_utc_iso(candidate_start)

    digest = hashlib.sha256()
    for part in (location_id, staff_id, start_iso, allocation):
        digest.update(part.encode("utf-8"))
        digest.update(b"\x00")

    encoded = base64.urlsafe_b64encode(digest.digest()[:18]).decode("ascii").rstrip("=")
    return f"{location_id}|{staff_id}|{start_iso}|{encoded}"


def parse_slot_key(slot_key: str) -> tuple[str, str, datetime] | None:
    """Split a slot key into (location_id, staff_id, start). None if malformed."""
    parts = slot_key.split("|")
    if len(parts) != 4 or not parts[0] or not parts[1]:
        return None
    try:
        start = datetime.fromisoformat(parts[2].replace("Z", "+00:00"))
    except ValueError:
        return None
    if start.tzinfo is None:
        return None
    return parts[0], parts[1], start
