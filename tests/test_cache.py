# tests/test_cache.py

import pytest
from redis.exceptions import ConnectionError

from booking_slots.services.slots.cache import (
    CacheKeyParams,
    SlotCache,
    make_cache_key,
    serialize_slots,
)
from booking_slots.services.slots.config import AvailabilityConfig
from booking_slots.services.slots.engine import compute_availability

from .factories import LOCATION_ID, base_request, haircut


def params(**overrides) -> CacheKeyParams:
    data = dict(
        location_id=LOCATION_ID,
        window_from="2025-03-03T08:00:00.000Z",
        window_to="2025-03-03T18:00:00.000Z",
        service_ids=["svc-b", "svc-a"],
    )
    data.update(overrides)
    return CacheKeyParams(**data)


@pytest.fixture
def slots():
    return compute_availability(base_request(services=[haircut()]), AvailabilityConfig())[:5]


class TestCacheKey:
    def test_service_order_does_not_matter(self):
        assert make_cache_key(params(service_ids=["svc-a", "svc-b"])) == make_cache_key(params())

    def test_layout(self):
        assert make_cache_key(params()) == (
            "availability:v1:loc-1:2025-03-03T08:00:00.000Z:2025-03-03T18:00:00.000Z"
            ":-:svc-a,svc-b:-:-:-:-:-"
        )

    @pytest.mark.parametrize("field,value", [
        ("staff_id", "staff-lina"),
        ("mode", "internal"),
        ("slot_granularity_minutes", 15),
        ("smart_slots_key", "smart:off"),
        ("device_id", "device-1"),
        ("color_precheck", "extra-15"),
    ])
    def test_each_parameter_changes_the_key(self, field, value):
        assert make_cache_key(params(**{field: value})) != make_cache_key(params())

    def test_non_positive_granularity_is_missing(self):
        assert make_cache_key(params(slot_granularity_minutes=0)) == make_cache_key(params())


class TestSlotCache:
    def test_round_trip(self, redis, availability_config, slots):
        cache = SlotCache(redis, availability_config)
        key = make_cache_key(params())

        cache.write(key, slots)

        assert cache.read(key) == slots
        assert 0 < redis.ttl(key) <= 60

    def test_wire_format_is_camel_case(self, slots):
        assert '"slotKey"' in serialize_slots(slots)
        assert '"reservedFrom"' in serialize_slots(slots)

    def test_explicit_ttl(self, redis, availability_config, slots):
        cache = SlotCache(redis, availability_config)
        cache.write("k", slots, ttl_seconds=5)
        assert 0 < redis.ttl("k") <= 5

    def test_miss(self, redis, availability_config):
        assert SlotCache(redis, availability_config).read("absent") is None

    def test_zero_ttl_disables(self, redis, slots):
        cache = SlotCache(redis, AvailabilityConfig(cache_ttl_seconds=0))

        cache.write("k", slots)

        assert not cache.enabled
        assert redis.get("k") is None
        assert cache.read("k") is None

    def test_without_redis(self, availability_config, slots):
        cache = SlotCache(None, availability_config)
        cache.write("k", slots)
        assert cache.read("k") is None
        assert cache.invalidate(LOCATION_ID) == 0

    def test_malformed_entry_is_a_miss(self, redis, availability_config):
        redis.set("k", "{not json")
        assert SlotCache(redis, availability_config).read("k") is None

    def test_redis_errors_are_a_miss(self, redis, availability_config, slots, monkeypatch):
        def fail(*args, **kwargs):
            raise ConnectionError("down")

        monkeypatch.setattr(redis, "get", fail)
        monkeypatch.setattr(redis, "set", fail)
        cache = SlotCache(redis, availability_config)

        cache.write("k", slots)
        assert cache.read("k") is None

    def test_invalidate_location(self, redis, availability_config, slots):
        cache = SlotCache(redis, availability_config)
        cache.write(make_cache_key(params()), slots)
        cache.write(make_cache_key(params(staff_id="staff-lina")), slots)
        other = make_cache_key(params(location_id="loc-2"))
        cache.write(other, slots)

        assert cache.invalidate(LOCATION_ID) == 2
        assert cache.read(other) == slots
