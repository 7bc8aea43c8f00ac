# booking_slots/services/slots/smart.py
"""
Smart slots: extra off-grid start times that reduce staff idle time.

Grid slots can leave short idle fragments between bookings. A finer pass
(step_engine_min) proposes candidates; a candidate is surfaced only if,
within its staff free-interval block, it beats the best grid slot by at
least min_waste_reduction_min idle minutes or leaves fewer bad fragments.

Limits:
✓ max_smart_slots_per_hour per local clock hour
✓ max_off_grid_offset_min distance from the nearest grid point
✗ candidates that coincide with a grid point are never smart
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from ...schemas.availability import AvailabilityRequest, AvailabilitySlot
from .config import SmartSlotConfig
from .engine import build_availability_context
from .intervals import Interval


@dataclass(frozen=True)
class SlotScore:
    slot: AvailabilitySlot
    waste_before_min: int
    waste_after_min: int
    bad_fragments: int
    distance_penalty_min: int
    hour_key: str
    block_key: str
    block_length_min: int

    @property
    def waste_total_min(self) -> int:
        return self.waste_before_min + self.waste_after_min

    @property
    def rank(self) -> tuple[int, int, int]:
        """Lower is better: fragments, then idle minutes, then distance from grid."""
        return self.bad_fragments, self.waste_total_min, self.distance_penalty_min


@dataclass(frozen=True)
class Baseline:
    waste_total_min: int
    bad_fragments: int


def compute_smart_slots(
    request: AvailabilityRequest,
    ui_slots: list[AvailabilitySlot],
    fine_slots: list[AvailabilitySlot],
    config: SmartSlotConfig,
) -> list[AvailabilitySlot]:
    """
    Pick smart slots from the fine candidate set.

    Args:
        request: The request both slot sets were computed for
        ui_slots: Grid slots at step_ui_min
        fine_slots: Candidate slots at step_engine_min
        config: Smart-slot tuning

    Returns:
        Selected candidates as copies with is_smart=True.
    """
    if not config.max_smart_slots_per_hour or config.step_engine_min >= config.step_ui_min:
        return []

    staff_availability = build_availability_context(request).staff_availabilities
    if not staff_availability:
        return []

    scorer = _SlotScorer(
        staff_availability=staff_availability,
        origin=request.window.start,
        step_ui=timedelta(minutes=config.step_ui_min),
        max_offset=timedelta(minutes=config.max_off_grid_offset_min),
        min_gap_min=config.min_gap_min,
        buffer=timedelta(minutes=config.buffer_min),
        tz=ZoneInfo(config.timezone),
    )

    ui_scores_by_block: dict[str, list[SlotScore]] = defaultdict(list)
    for slot in ui_slots:
        score = scorer.score(slot, is_ui_slot=True)
        if score is not None:
            ui_scores_by_block[score.block_key].append(score)

    ui_keys = {slot.slot_key for slot in ui_slots}
    candidates_by_block: dict[str, list[SlotScore]] = defaultdict(list)
    for slot in fine_slots:
        if slot.slot_key in ui_keys:
            continue
        score = scorer.score(slot, is_ui_slot=False)
        if score is not None:
            candidates_by_block[score.block_key].append(score)

    selected: dict[str, AvailabilitySlot] = {}
    selected_by_hour: dict[str, int] = defaultdict(int)

    for block_key, candidates in candidates_by_block.items():
        ranked = sorted(candidates, key=lambda s: s.rank)
        baseline = _baseline(ui_scores_by_block.get(block_key), ranked[0].block_length_min, config)

        for candidate in ranked:
            if selected_by_hour[candidate.hour_key] >= config.max_smart_slots_per_hour:
                continue
            waste_reduction = baseline.waste_total_min - candidate.waste_total_min
            fewer_fragments = candidate.bad_fragments < baseline.bad_fragments
            if waste_reduction >= config.min_waste_reduction_min or fewer_fragments:
                selected[candidate.slot.slot_key] = candidate.slot.model_copy(update={"is_smart": True})
                selected_by_hour[candidate.hour_key] += 1

    return list(selected.values())


def _baseline(
    ui_scores: list[SlotScore] | None,
    block_length_min: int,
    config: SmartSlotConfig,
) -> Baseline:
    """Best grid slot of the block, or the untouched block when it has none."""
    if ui_scores:
        best = min(ui_scores, key=lambda s: s.rank)
        return Baseline(best.waste_total_min, best.bad_fragments)
    return Baseline(
        waste_total_min=block_length_min,
        bad_fragments=1 if 0 < block_length_min < config.min_gap_min else 0,
    )


class _SlotScorer:
    """Scores a slot against the staff free-interval block it falls in."""

    def __init__(
        self,
        staff_availability: dict[str, list[Interval]],
        origin: datetime,
        step_ui: timedelta,
        max_offset: timedelta,
        min_gap_min: int,
        buffer: timedelta,
        tz: ZoneInfo,
    ):
        self.staff_availability = staff_availability
        self.origin = origin
        self.step_ui = step_ui
        self.max_offset = max_offset
        self.min_gap_min = min_gap_min
        self.buffer = buffer
        self.tz = tz

    def score(self, slot: AvailabilitySlot, is_ui_slot: bool) -> SlotScore | None:
        intervals = self.staff_availability.get(slot.staff_id)
        if not intervals:
            return None

        reserved_start = slot.reserved_from
        effective_end = slot.reserved_to + self.buffer
        block = next(
            (i for i in intervals if reserved_start >= i.start and effective_end <= i.end),
            None,
        )
        if block is None:
            return None

        waste_before = max(0, _minutes(reserved_start - block.start))
        waste_after = max(0, _minutes(block.end - effective_end))
        bad_fragments = self._is_fragment(waste_before) + self._is_fragment(waste_after)

        distance_penalty = 0
        if not is_ui_slot:
            offset = (slot.start - self.origin) % self.step_ui
            distance = min(offset, self.step_ui - offset)
            if not distance or distance > self.max_offset:
                return None
            distance_penalty = _minutes(distance)

        return SlotScore(
            slot=slot,
            waste_before_min=waste_before,
            waste_after_min=waste_after,
            bad_fragments=bad_fragments,
            distance_penalty_min=distance_penalty,
            hour_key=slot.start.astimezone(self.tz).strftime("%Y-%m-%dT%H"),
            block_key=f"{slot.staff_id}:{block.start.isoformat()}:{block.end.isoformat()}",
            block_length_min=max(0, _minutes(block.duration)),
        )

    def _is_fragment(self, idle_min: int) -> int:
        return 1 if 0 < idle_min < self.min_gap_min else 0


def _minutes(delta: timedelta) -> int:
    return round(delta.total_seconds() / 60)
