# booking_slots/services/slots/cache.py
"""
Read-through cache for computed slot lists.

Key format:
    availability:v1:{location}:{from}:{to}:{mode}:{services}:{staff}:
        {granularity}:{smart}:{device}:{color_precheck}
Value: JSON list of slots, datetimes as ISO-8601, camelCase fields.

The cache is an optimisation only. Every Redis failure is logged and
reported as a miss / no-op; availability never depends on it. TTL 0
disables caching.
"""

import json
import logging
from dataclasses import dataclass

from pydantic import ValidationError
from redis import Redis
from redis.exceptions import RedisError

from ...schemas.availability import AvailabilitySlot
from .config import AvailabilityConfig, get_availability_config

logger = logging.getLogger(__name__)


CACHE_PREFIX = "availability:v1"
MISSING = "-"


@dataclass(frozen=True)
class CacheKeyParams:
    location_id: str
    window_from: str
    window_to: str
    service_ids: tuple[str, ...] | list[str]
    staff_id: str | None = None
    mode: str | None = None
    slot_granularity_minutes: int | None = None
    smart_slots_key: str | None = None
    device_id: str | None = None
    color_precheck: str | None = None


def make_cache_key(params: CacheKeyParams) -> str:
    """Canonical cache key. Service order does not matter."""
    services = ",".join(sorted(params.service_ids))
    granularity = (
        str(params.slot_granularity_minutes)
        if params.slot_granularity_minutes and params.slot_granularity_minutes > 0
        else MISSING
    )
    parts = [
        CACHE_PREFIX,
        params.location_id,
        params.window_from,
        params.window_to,
        params.mode or MISSING,
        services,
        params.staff_id or MISSING,
        granularity,
        params.smart_slots_key or MISSING,
        params.device_id or MISSING,
        params.color_precheck or MISSING,
    ]
    return ":".join(parts)


def serialize_slots(slots: list[AvailabilitySlot]) -> str:
    return json.dumps([slot.model_dump(mode="json", by_alias=True) for slot in slots])


def deserialize_slots(raw: str) -> list[AvailabilitySlot]:
    return [AvailabilitySlot.model_validate(item) for item in json.loads(raw)]


class SlotCache:
    """Redis wrapper for cached slot lists."""

    def __init__(self, redis: Redis | None, config: AvailabilityConfig | None = None):
        self.redis = redis
        self.config = config or get_availability_config()

    @property
    def enabled(self) -> bool:
        return self.redis is not None and self.config.cache_ttl_seconds > 0

    # ── Read ─────────────────────────────────────────────────────────────

    def read(self, key: str) -> list[AvailabilitySlot] | None:
        """
        Get cached slots.

        Returns:
            Slot list, or None on miss, disabled cache or any failure.
        """
        if not self.enabled:
            return None

        try:
            raw = self.redis.get(key)
        except RedisError as e:
            logger.warning(f"Slot cache read failed for {key}: {e}")
            return None

        if not raw:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode()

        try:
            return deserialize_slots(raw)
        except (ValueError, TypeError, ValidationError):
            logger.warning(f"Discarding malformed slot cache entry {key}")
            return None

    # ── Write ────────────────────────────────────────────────────────────

    def write(self, key: str, slots: list[AvailabilitySlot], ttl_seconds: int | None = None) -> None:
        """Store slots with TTL (configured TTL when not given). No-op when disabled."""
        if not self.enabled:
            return

        ttl = ttl_seconds if ttl_seconds and ttl_seconds > 0 else self.config.cache_ttl_seconds
        if ttl <= 0:
            return

        try:
            self.redis.set(key, serialize_slots(slots), ex=ttl)
        except RedisError as e:
            logger.warning(f"Slot cache write failed for {key}: {e}")

    # ── Delete ───────────────────────────────────────────────────────────

    def invalidate(self, location_id: str) -> int:
        """
        Delete all cached entries of a location.

        Returns:
            Number of deleted keys (0 on failure).
        """
        if self.redis is None:
            return 0

        pattern = f"{CACHE_PREFIX}:{location_id}:*"
        try:
            keys = list(self.redis.scan_iter(match=pattern, count=200))
            if not keys:
                return 0
            return self.redis.delete(*keys)
        except RedisError as e:
            logger.warning(f"Slot cache invalidation failed for location {location_id}: {e}")
            return 0
