# booking_slots/services/holds/__init__.py
"""
Slot holds: exclusive, expiring claims on a slot during booking.
"""

from .manager import (
    HoldManager,
    acquire_hold,
    decode_hold_id,
    encode_hold_id,
    extend_hold,
    filter_held_slots,
    get_hold_manager,
    release_hold,
    verify_hold,
)
from .store import HoldStore, MemoryHoldStore, RedisHoldStore, build_hold_store

__all__ = [
    "HoldManager",
    "HoldStore",
    "MemoryHoldStore",
    "RedisHoldStore",
    "build_hold_store",
    "get_hold_manager",
    "acquire_hold",
    "release_hold",
    "extend_hold",
    "verify_hold",
    "filter_held_slots",
    "encode_hold_id",
    "decode_hold_id",
]
