# booking_slots/schemas/holds.py
"""
Pydantic schemas for slot holds.
"""

from pydantic import AwareDatetime, ConfigDict

from .availability import SchemaModel


class SlotHold(SchemaModel):
    model_config = ConfigDict(frozen=True)

    slot_key: str
    token: str
    expires_at: AwareDatetime


class HoldIdentity(SchemaModel):
    """Opaque handle a caller carries between booking steps."""
    slot_key: str
    token: str


class SlotHoldMetadata(SchemaModel):
    """
    Who holds which time for which staff member.

    Used to hide slots overlapping a held reserved window, not only the
    exact slot key that was held.
    """
    slot_key: str
    location_id: str
    staff_id: str
    created_by_staff_id: str | None = None
    created_by_name: str | None = None
    start: AwareDatetime
    end: AwareDatetime
    reserved_from: AwareDatetime
    reserved_to: AwareDatetime
    expires_at: AwareDatetime
    service_names: list[str] = []
