# booking_slots/services/slots/finder.py
"""
Slot read path.

find_available_slots():
1. Cache hit → hold filter → return
2. Grid pass at the request granularity
3. Fine pass at step_engine_min (smart slots enabled, finer step only)
4. Drop slots that already started
5. Merge smart slots into the grid slots, sorted by start
6. Write the cache (before hold filtering, holds change faster than slots)
7. Hold filter
"""

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from ...schemas.availability import AvailabilityRequest, AvailabilitySlot

from .cache import CacheKeyParams, SlotCache, make_cache_key
from .config import AvailabilityConfig, SmartSlotConfig, smart_slots_fingerprint
from .engine import compute_availability, format_utc_iso
from .smart import compute_smart_slots

if TYPE_CHECKING:
    from ..holds.manager import HoldManager

logger = logging.getLogger(__name__)


def build_cache_key(
    request: AvailabilityRequest,
    smart_config: SmartSlotConfig | None = None,
    mode: str | None = None,
    device_id: str | None = None,
    color_precheck: str | None = None,
) -> str:
    return make_cache_key(CacheKeyParams(
        location_id=request.location_id,
        window_from=format_utc_iso(request.window.start),
        window_to=format_utc_iso(request.window.end),
        service_ids=[service.id for service in request.services],
        staff_id=request.staff_id,
        mode=mode,
        slot_granularity_minutes=request.slot_granularity_minutes,
        smart_slots_key=smart_slots_fingerprint(smart_config),
        device_id=device_id,
        color_precheck=color_precheck,
    ))


def find_available_slots(
    request: AvailabilityRequest,
    *,
    cache: SlotCache | None = None,
    holds: "HoldManager | None" = None,
    smart_config: SmartSlotConfig | None = None,
    mode: str | None = None,
    device_id: str | None = None,
    color_precheck: str | None = None,
    now: datetime | None = None,
    config: AvailabilityConfig | None = None,
) -> list[AvailabilitySlot]:
    """
    Bookable slots for a request, cached and with held slots removed.

    Args:
        request: Availability request
        cache: Slot cache, None to skip caching
        holds: Hold manager, None to skip hold filtering
        smart_config: Smart-slot tuning, None when disabled
        mode, device_id, color_precheck: Only distinguish cache entries
        now: Current time; slots starting at or before it are dropped

    Returns:
        Slots sorted by start.
    """
    cache_key = None
    if cache is not None and cache.enabled:
        cache_key = build_cache_key(request, smart_config, mode, device_id, color_precheck)
        cached = cache.read(cache_key)
        if cached is not None:
            logger.debug(f"Slot cache hit: {cache_key}")
            return holds.filter_held_slots(cached) if holds is not None else cached

    now = now or datetime.now(timezone.utc)

    ui_slots = [s for s in compute_availability(request, config) if s.start > now]

    smart_slots: list[AvailabilitySlot] = []
    if smart_config is not None and smart_config.step_engine_min < smart_config.step_ui_min:
        fine_request = request.model_copy(
            update={"slot_granularity_minutes": smart_config.step_engine_min}
        )
        fine_slots = [s for s in compute_availability(fine_request, config) if s.start > now]
        smart_slots = compute_smart_slots(request, ui_slots, fine_slots, smart_config)

    merged: dict[str, AvailabilitySlot] = {}
    for slot in ui_slots + smart_slots:
        merged.setdefault(slot.slot_key, slot)
    slots = sorted(merged.values(), key=lambda s: s.start)

    logger.info(
        f"Availability for location {request.location_id}: "
        f"{len(ui_slots)} grid, {len(smart_slots)} smart"
    )

    if cache_key is not None:
        cache.write(cache_key, slots)

    return holds.filter_held_slots(slots) if holds is not None else slots
