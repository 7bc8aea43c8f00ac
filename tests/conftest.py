# tests/conftest.py

import fakeredis
import pytest

from booking_slots.services.holds import HoldManager, MemoryHoldStore
from booking_slots.services.slots.config import AvailabilityConfig

from .factories import DAY


class FakeClock:
    """Callable clock in epoch seconds, moved by hand."""

    def __init__(self, start: float):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock(DAY.timestamp())


@pytest.fixture
def redis():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def availability_config():
    return AvailabilityConfig(slot_granularity_minutes=5, cache_ttl_seconds=60)


@pytest.fixture
def memory_store(clock):
    return MemoryHoldStore(clock=clock)


@pytest.fixture
def hold_manager(memory_store, clock):
    return HoldManager(memory_store, clock=clock)
