# booking_slots/services/slots/__init__.py
"""
Slot calculation module.

Engine: deterministic slots for a request (pure)
Smart slots: off-grid starts that reduce staff idle time
Cache: read-through Redis cache of computed slot lists
"""

from .cache import CacheKeyParams, SlotCache, make_cache_key
from .config import (
    AvailabilityConfig,
    SmartSlotConfig,
    SmartSlotPreferences,
    get_availability_config,
    resolve_smart_slot_config,
    smart_slots_fingerprint,
)
from .engine import compute_availability, create_slot_key, parse_slot_key
from .finder import find_available_slots
from .request_builder import build_availability_request
from .smart import compute_smart_slots

__all__ = [
    "AvailabilityConfig",
    "SmartSlotConfig",
    "SmartSlotPreferences",
    "get_availability_config",
    "resolve_smart_slot_config",
    "smart_slots_fingerprint",
    "compute_availability",
    "create_slot_key",
    "parse_slot_key",
    "compute_smart_slots",
    "CacheKeyParams",
    "SlotCache",
    "make_cache_key",
    "find_available_slots",
    "build_availability_request",
]
