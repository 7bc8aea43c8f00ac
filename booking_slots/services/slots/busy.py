# booking_slots/services/slots/busy.py
"""
Busy-time index: per-owner time that cannot be booked.

Contains:
✓ location-wide BLOCK exceptions (no staff / resource)  → location
✓ time off and BLOCK exceptions scoped to a staff id     → staff
✓ time off and BLOCK exceptions scoped to a resource id  → resource
✓ appointment blocks (staff id, resource ids)            → staff / resource

Does NOT contain:
✗ OPEN exceptions (accepted as input, not applied)
"""

from collections import defaultdict
from dataclasses import dataclass, field

from ...schemas.availability import AvailabilityRequest
from .intervals import Interval, merge_intervals


@dataclass
class BusyIndex:
    location: list[Interval] = field(default_factory=list)
    staff: dict[str, list[Interval]] = field(default_factory=dict)
    resource: dict[str, list[Interval]] = field(default_factory=dict)

    def for_staff(self, staff_id: str) -> list[Interval]:
        return self.staff.get(staff_id, [])

    def for_resource(self, resource_id: str) -> list[Interval]:
        return self.resource.get(resource_id, [])


def build_busy_index(request: AvailabilityRequest) -> BusyIndex:
    """Collect and merge busy intervals for the location, each staff member and each resource."""
    location_blocks: list[Interval] = []
    staff_busy: dict[str, list[Interval]] = defaultdict(list)
    resource_busy: dict[str, list[Interval]] = defaultdict(list)

    for exception in request.availability_exceptions:
        if exception.type != "BLOCK":
            continue
        interval = Interval(exception.starts_at, exception.ends_at)
        if not exception.staff_id and not exception.resource_id:
            if exception.location_id == request.location_id:
                location_blocks.append(interval)
            continue
        if exception.staff_id:
            staff_busy[exception.staff_id].append(interval)
        if exception.resource_id:
            resource_busy[exception.resource_id].append(interval)

    for time_off in request.time_offs:
        interval = Interval(time_off.starts_at, time_off.ends_at)
        if time_off.staff_id:
            staff_busy[time_off.staff_id].append(interval)
        if time_off.resource_id:
            resource_busy[time_off.resource_id].append(interval)

    for appointment in request.appointments:
        interval = Interval(appointment.starts_at, appointment.ends_at)
        if appointment.staff_id:
            staff_busy[appointment.staff_id].append(interval)
        for resource_id in appointment.resource_ids:
            resource_busy[resource_id].append(interval)

    return BusyIndex(
        location=merge_intervals(location_blocks),
        staff={k: merge_intervals(v) for k, v in staff_busy.items()},
        resource={k: merge_intervals(v) for k, v in resource_busy.items()},
    )
