# booking_slots/services/slots/config.py
"""
Configuration for slot calculation and the smart-slot pass.
"""

from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache

from ...config import get_settings


DEFAULT_SLOT_GRANULARITY_MINUTES = 5


@dataclass(frozen=True)
class AvailabilityConfig:
    """
    Configuration for the availability engine.

    Attributes:
        slot_granularity_minutes: Default grid step when a request has none
        cache_ttl_seconds: Slot cache TTL, 0 disables caching
    """
    slot_granularity_minutes: int = DEFAULT_SLOT_GRANULARITY_MINUTES
    cache_ttl_seconds: int = 0

    def __post_init__(self):
        """Validate configuration."""
        if self.slot_granularity_minutes < 1:
            raise ValueError(
                f"slot_granularity_minutes must be >= 1, got {self.slot_granularity_minutes}"
            )
        if self.cache_ttl_seconds < 0:
            raise ValueError(f"cache_ttl_seconds must be >= 0, got {self.cache_ttl_seconds}")

    def slot_step(self, granularity_minutes: int | None = None) -> timedelta:
        """Grid step for a request, falling back to the configured default."""
        minutes = granularity_minutes if granularity_minutes is not None else self.slot_granularity_minutes
        return timedelta(minutes=max(minutes, 1))


@lru_cache
def get_availability_config() -> AvailabilityConfig:
    """Get availability configuration (singleton) from settings."""
    settings = get_settings()
    return AvailabilityConfig(
        slot_granularity_minutes=settings.slot_granularity_minutes,
        cache_ttl_seconds=settings.availability_cache_ttl_seconds,
    )


# ── Smart slots ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class SmartSlotConfig:
    """
    Tuning knobs for the smart-slot pass.

    Attributes:
        step_ui_min: Grid step shown to customers
        step_engine_min: Finer step for candidates, must divide step_ui_min
        buffer_min: Trailing minutes after a slot treated as unusable
        min_gap_min: Idle gaps shorter than this count as bad fragments
        max_smart_slots_per_hour: Cap per local clock hour
        min_waste_reduction_min: Idle minutes a candidate must save
        max_off_grid_offset_min: Max distance from the nearest grid point
        timezone: IANA zone used for the per-hour cap
    """
    step_ui_min: int
    step_engine_min: int = 5
    buffer_min: int = 0
    min_gap_min: int = 10
    max_smart_slots_per_hour: int = 1
    min_waste_reduction_min: int = 10
    max_off_grid_offset_min: int = 10
    timezone: str = "UTC"

    def __post_init__(self):
        """Validate configuration."""
        if self.step_ui_min < 1 or self.step_engine_min < 1:
            raise ValueError("step_ui_min and step_engine_min must be >= 1")
        if self.step_ui_min % self.step_engine_min != 0:
            raise ValueError(
                f"step_engine_min ({self.step_engine_min}) must evenly divide "
                f"step_ui_min ({self.step_ui_min})"
            )
        for name in (
            "buffer_min",
            "min_gap_min",
            "max_smart_slots_per_hour",
            "min_waste_reduction_min",
            "max_off_grid_offset_min",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0, got {getattr(self, name)}")

    @property
    def fingerprint(self) -> str:
        """Stable description for cache keys."""
        return (
            f"smart:{self.step_engine_min}:{self.buffer_min}:{self.min_gap_min}:"
            f"{self.max_smart_slots_per_hour}:{self.min_waste_reduction_min}:"
            f"{self.max_off_grid_offset_min}"
        )


def smart_slots_fingerprint(config: SmartSlotConfig | None) -> str:
    return config.fingerprint if config else "smart:off"


@dataclass(frozen=True)
class SmartSlotPreferences:
    """Smart-slot settings as stored in location booking preferences."""
    enabled: bool = False
    step_engine_min: int = 5
    buffer_min: int = 0
    min_gap_min: int = 10
    max_smart_slots_per_hour: int = 1
    min_waste_reduction_min: int = 10
    max_off_grid_offset_min: int = 10


def clamp_engine_step(value: int, step_ui_min: int) -> int:
    """Largest divisor of step_ui_min that is not above `value` (at least 1)."""
    candidate = min(step_ui_min, max(1, round(value)))
    for step in range(candidate, 0, -1):
        if step_ui_min % step == 0:
            return step
    return step_ui_min


def resolve_smart_slot_config(
    prefs: SmartSlotPreferences,
    step_ui_min: int,
    timezone: str,
) -> SmartSlotConfig | None:
    """
    Build the effective smart-slot config for a request.

    Returns None when smart slots are disabled for the location.
    """
    if not prefs.enabled:
        return None

    safe_step_ui = max(1, step_ui_min)
    return SmartSlotConfig(
        step_ui_min=safe_step_ui,
        step_engine_min=clamp_engine_step(prefs.step_engine_min, safe_step_ui),
        buffer_min=prefs.buffer_min,
        min_gap_min=prefs.min_gap_min,
        max_smart_slots_per_hour=prefs.max_smart_slots_per_hour,
        min_waste_reduction_min=prefs.min_waste_reduction_min,
        # never further than half a grid step from a grid point
        max_off_grid_offset_min=min(prefs.max_off_grid_offset_min, safe_step_ui // 2),
        timezone=timezone,
    )
