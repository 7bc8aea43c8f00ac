# booking_slots/schemas/availability.py
"""
Pydantic schemas for availability computation.

Inputs (schedules, time off, exceptions, appointments, services) are
read-only snapshots supplied by the caller. AvailabilitySlot is the output
unit and is immutable.

Field names are snake_case in Python and camelCase on the wire.
"""

import datetime as dt
from typing import Literal

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


ScheduleOwnerType = Literal["LOCATION", "STAFF", "RESOURCE"]
ScheduleRuleType = Literal["WEEKLY", "DATE"]
AvailabilityExceptionType = Literal["BLOCK", "OPEN"]
Weekday = Literal[
    "MONDAY",
    "TUESDAY",
    "WEDNESDAY",
    "THURSDAY",
    "FRIDAY",
    "SATURDAY",
    "SUNDAY",
]


class SchemaModel(BaseModel):
    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )


# ── Window ───────────────────────────────────────────────────────────────


class AvailabilityWindow(SchemaModel):
    """Half-open query window [start, end)."""
    start: AwareDatetime
    end: AwareDatetime

    @field_validator("start", "end")
    @classmethod
    def to_utc(cls, value: dt.datetime) -> dt.datetime:
        # grid arithmetic must not follow local wall-clock shifts
        return value.astimezone(dt.timezone.utc)

    @property
    def is_empty(self) -> bool:
        return self.end <= self.start


# ── Services ─────────────────────────────────────────────────────────────


class ServiceStepResourceRequirement(SchemaModel):
    """
    Resource requirement of a step.

    resource_ids wins over resource_type when both are given.
    """
    resource_ids: list[str] | None = None
    resource_type: str | None = None
    quantity: int = 1
    optional: bool = False


class ServiceStepDefinition(SchemaModel):
    id: str
    name: str = ""
    duration: int = Field(description="Minutes")
    # False for processing time (e.g. colour developing)
    requires_staff: bool = True
    allowed_staff_ids: list[str] | None = None
    resources: list[ServiceStepResourceRequirement] = []


class ServiceDefinition(SchemaModel):
    id: str
    location_id: str
    buffer_before: int = 0  # minutes
    buffer_after: int = 0   # minutes
    steps: list[ServiceStepDefinition] = []


# ── Owners ───────────────────────────────────────────────────────────────


class StaffMember(SchemaModel):
    id: str
    location_id: str


class Resource(SchemaModel):
    id: str
    location_id: str
    type: str
    capacity: int = 1  # informational, each id is one unit


# ── Schedules ────────────────────────────────────────────────────────────


class ScheduleRule(SchemaModel):
    id: str
    type: ScheduleRuleType
    weekday: Weekday | None = None
    date: dt.date | None = None  # local calendar date when type == DATE
    start_minute: int
    end_minute: int
    is_active: bool = True
    effective_from: AwareDatetime | None = None
    effective_to: AwareDatetime | None = None


class Schedule(SchemaModel):
    id: str
    owner_type: ScheduleOwnerType
    owner_id: str | None = None
    timezone: str = "UTC"
    rules: list[ScheduleRule] = []


# ── Busy time ────────────────────────────────────────────────────────────


class TimeOff(SchemaModel):
    id: str
    location_id: str
    starts_at: AwareDatetime
    ends_at: AwareDatetime
    staff_id: str | None = None
    resource_id: str | None = None


class AvailabilityException(SchemaModel):
    id: str
    location_id: str
    starts_at: AwareDatetime
    ends_at: AwareDatetime
    type: AvailabilityExceptionType
    staff_id: str | None = None
    resource_id: str | None = None


class AppointmentBlock(SchemaModel):
    id: str
    location_id: str
    starts_at: AwareDatetime
    ends_at: AwareDatetime
    staff_id: str | None = None
    resource_ids: list[str] = []


# ── Request ──────────────────────────────────────────────────────────────


class AvailabilityRequest(SchemaModel):
    location_id: str
    window: AvailabilityWindow
    services: list[ServiceDefinition] = []
    staff: list[StaffMember] = []
    resources: list[Resource] = []
    schedules: list[Schedule] = []
    time_offs: list[TimeOff] = []
    availability_exceptions: list[AvailabilityException] = []
    appointments: list[AppointmentBlock] = []
    staff_id: str | None = None
    slot_granularity_minutes: int | None = None


# ── Result ───────────────────────────────────────────────────────────────


class SlotStepAllocation(SchemaModel):
    model_config = ConfigDict(frozen=True)

    step_id: str
    start: AwareDatetime
    end: AwareDatetime
    requires_staff: bool
    resource_ids: list[str] = []


class SlotServiceAllocation(SchemaModel):
    model_config = ConfigDict(frozen=True)

    service_id: str
    steps: list[SlotStepAllocation]


class AvailabilitySlot(SchemaModel):
    """
    A bookable start time with its full allocation.

    start/end span the steps only; reserved_from/reserved_to include the
    pre/post buffers and are what must stay free.
    """
    model_config = ConfigDict(frozen=True)

    slot_key: str
    location_id: str
    staff_id: str
    services: list[SlotServiceAllocation]
    start: AwareDatetime
    end: AwareDatetime
    reserved_from: AwareDatetime
    reserved_to: AwareDatetime
    is_smart: bool = False
