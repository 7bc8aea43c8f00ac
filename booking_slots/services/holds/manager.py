# booking_slots/services/holds/manager.py
"""
Slot holds: short, exclusive claims on a slot while a booking completes.

Lifecycle per slot key:
    Free → Held(token, expires_at) → Free   (release or TTL expiry)

Re-acquiring a held key always fails. Release and extend only succeed for
the token that acquired the hold.

A failed acquire (None) means exclusivity cannot be guaranteed right now;
callers should refuse to proceed rather than risk a double booking.
"""

import base64
import binascii
import json
import logging
import time
from collections import defaultdict
from datetime import datetime, timezone
from functools import lru_cache
from typing import Callable
from uuid import uuid4

from pydantic import ValidationError

from ...config import get_settings
from ...schemas.availability import AvailabilitySlot
from ...schemas.holds import HoldIdentity, SlotHold, SlotHoldMetadata
from ..slots.engine import format_utc_iso, parse_slot_key
from .store import HoldStore, build_hold_store

logger = logging.getLogger(__name__)


def encode_hold_id(identity: HoldIdentity) -> str:
    """Opaque base64url handle for {slotKey, token}."""
    payload = json.dumps({"slotKey": identity.slot_key, "token": identity.token})
    return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii").rstrip("=")


def decode_hold_id(value: str) -> HoldIdentity | None:
    """Reverse of encode_hold_id. None for anything malformed."""
    try:
        padded = value + "=" * (-len(value) % 4)
        data = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8"))
    except (ValueError, TypeError, UnicodeError, binascii.Error):
        return None
    if not isinstance(data, dict) or not data.get("slotKey") or not data.get("token"):
        return None
    try:
        return HoldIdentity.model_validate(data)
    except ValidationError:
        return None


class HoldManager:
    """Hold operations on top of a HoldStore."""

    def __init__(
        self,
        store: HoldStore,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.clock = clock

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self.clock(), tz=timezone.utc)

    # ── Hold lifecycle ───────────────────────────────────────────────────

    def acquire(self, slot_key: str, ttl_ms: int) -> SlotHold | None:
        """
        Claim a slot.

        Returns:
            SlotHold with a fresh token, or None if the slot is already held
            or the store is unavailable.
        """
        token = str(uuid4())
        expires_at = self.clock() + ttl_ms / 1000
        if not self.store.acquire(slot_key, token, ttl_ms):
            logger.info(f"Slot hold rejected: {slot_key}")
            return None

        logger.info(f"Slot held: {slot_key}")
        return SlotHold(
            slot_key=slot_key,
            token=token,
            expires_at=datetime.fromtimestamp(expires_at, tz=timezone.utc),
        )

    def release(self, slot_key: str, token: str) -> bool:
        """Release a hold owned by `token`. Wrong token → False, hold untouched."""
        released = self.store.release(slot_key, token)
        if released:
            self.store.delete_metadata(slot_key)
            logger.info(f"Slot hold released: {slot_key}")
        return released

    def extend(self, slot_key: str, token: str, ttl_ms: int) -> bool:
        """Reset the expiry of a hold owned by `token`."""
        if not self.store.extend(slot_key, token, ttl_ms):
            return False

        metadata = self.store.get_metadata(slot_key)
        if metadata is not None:
            expires_at = datetime.fromtimestamp(self.clock() + ttl_ms / 1000, tz=timezone.utc)
            self.store.put_metadata(metadata.model_copy(update={"expires_at": expires_at}), ttl_ms)
        return True

    def verify(self, slot_key: str, token: str) -> bool:
        """True while `token` still owns the hold."""
        return self.store.get(slot_key) == token

    # ── Metadata ─────────────────────────────────────────────────────────

    def store_metadata(self, metadata: SlotHoldMetadata) -> bool:
        """
        Attach metadata to a hold for overlap filtering.

        Stored only when the metadata matches its own slot key (location,
        staff, start) and the hold has not expired yet.
        """
        parsed = parse_slot_key(metadata.slot_key)
        if parsed is None:
            return False
        location_id, staff_id, start = parsed
        if (
            location_id != metadata.location_id
            or staff_id != metadata.staff_id
            # slot keys carry millisecond precision
            or format_utc_iso(start) != format_utc_iso(metadata.start)
        ):
            logger.warning(f"Hold metadata does not match slot key {metadata.slot_key}")
            return False

        ttl_ms = int((metadata.expires_at - self._now()).total_seconds() * 1000)
        if ttl_ms <= 0:
            return False
        self.store.put_metadata(metadata, ttl_ms)
        return True

    def list_hold_metadata(self, location_id: str) -> list[SlotHoldMetadata]:
        now = self._now()
        return [m for m in self.store.scan_by_location(location_id) if m.expires_at > now]

    def list_held_slot_keys(self, slot_keys: list[str]) -> set[str]:
        if not slot_keys:
            return set()
        tokens = self.store.get_many(slot_keys)
        return {key for key, token in zip(slot_keys, tokens) if token}

    # ── Filtering ────────────────────────────────────────────────────────

    def filter_held_slots(self, slots: list[AvailabilitySlot]) -> list[AvailabilitySlot]:
        """
        Drop slots that are held, directly or indirectly.

        - exact slot key held → removed
        - same staff, reserved window overlapping a held reserved window
          → removed (e.g. a smart variant of a held grid slot)
        """
        if not slots:
            return slots

        held_keys = self.list_held_slot_keys([s.slot_key for s in slots])
        remaining = [s for s in slots if s.slot_key not in held_keys]
        if not remaining:
            return remaining

        holds_by_staff: dict[tuple[str, str], list[SlotHoldMetadata]] = defaultdict(list)
        for location_id in dict.fromkeys(s.location_id for s in remaining):
            for hold in self.list_hold_metadata(location_id):
                holds_by_staff[(hold.location_id, hold.staff_id)].append(hold)
        if not holds_by_staff:
            return remaining

        def overlaps_hold(slot: AvailabilitySlot) -> bool:
            return any(
                hold.reserved_from < slot.reserved_to and hold.reserved_to > slot.reserved_from
                for hold in holds_by_staff.get((slot.location_id, slot.staff_id), [])
            )

        return [s for s in remaining if not overlaps_hold(s)]


# ── Module-level API ─────────────────────────────────────────────────────


@lru_cache
def get_hold_manager() -> HoldManager:
    """Process-wide manager over the store selected from settings."""
    return HoldManager(build_hold_store())


def acquire_hold(slot_key: str, ttl_ms: int | None = None) -> SlotHold | None:
    if ttl_ms is None:
        ttl_ms = get_settings().hold_ttl_ms
    return get_hold_manager().acquire(slot_key, ttl_ms)


def release_hold(slot_key: str, token: str) -> bool:
    return get_hold_manager().release(slot_key, token)


def extend_hold(slot_key: str, token: str, ttl_ms: int | None = None) -> bool:
    if ttl_ms is None:
        ttl_ms = get_settings().hold_ttl_ms
    return get_hold_manager().extend(slot_key, token, ttl_ms)


def verify_hold(slot_key: str, token: str) -> bool:
    return get_hold_manager().verify(slot_key, token)


def filter_held_slots(slots: list[AvailabilitySlot]) -> list[AvailabilitySlot]:
    return get_hold_manager().filter_held_slots(slots)
