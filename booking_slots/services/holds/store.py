# booking_slots/services/holds/store.py
"""
Hold storage backends.

Key format:
    booking-hold:{slot_key}       → token       (TTL = hold lifetime)
    booking-hold-meta:{slot_key}  → metadata    (same TTL)

Slot keys start with "{location_id}|", so metadata of a location is found
with SCAN MATCH booking-hold-meta:{location_id}|*.

Two implementations with identical ownership semantics:
- RedisHoldStore: shared across processes. SET NX PX for acquire,
  server-side Lua for compare-token-then-mutate.
- MemoryHoldStore: single process only, for setups without Redis.

Expiry is checked on read; there is no sweeper.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable

from pydantic import ValidationError
from redis import Redis
from redis.exceptions import ConnectionError, RedisError, TimeoutError

from ...config import Settings, get_settings
from ...redis_client import get_redis_client
from ...schemas.holds import SlotHoldMetadata

logger = logging.getLogger(__name__)


HOLD_PREFIX = "booking-hold"
HOLD_META_PREFIX = "booking-hold-meta"

RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
  return redis.call("del", KEYS[1])
end
return 0
"""

EXTEND_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
  return redis.call("pexpire", KEYS[1], ARGV[2])
end
return 0
"""


def hold_key(slot_key: str) -> str:
    return f"{HOLD_PREFIX}:{slot_key}"


def hold_meta_key(slot_key: str) -> str:
    return f"{HOLD_META_PREFIX}:{slot_key}"


class HoldStore(ABC):
    """
    Storage capability behind the hold manager.

    All operations report failure through their return value, never by
    raising: acquire/release/extend → False, reads → None / empty.
    """

    @abstractmethod
    def acquire(self, slot_key: str, token: str, ttl_ms: int) -> bool:
        """Set the hold only if absent."""

    @abstractmethod
    def release(self, slot_key: str, token: str) -> bool:
        """Delete the hold only if `token` owns it."""

    @abstractmethod
    def extend(self, slot_key: str, token: str, ttl_ms: int) -> bool:
        """Reset the TTL only if `token` owns the hold."""

    @abstractmethod
    def get(self, slot_key: str) -> str | None:
        """Current token of a live hold."""

    @abstractmethod
    def get_many(self, slot_keys: list[str]) -> list[str | None]:
        """Tokens for several slot keys, same order."""

    @abstractmethod
    def put_metadata(self, metadata: SlotHoldMetadata, ttl_ms: int) -> None: ...

    @abstractmethod
    def get_metadata(self, slot_key: str) -> SlotHoldMetadata | None: ...

    @abstractmethod
    def delete_metadata(self, slot_key: str) -> None: ...

    @abstractmethod
    def scan_by_location(self, location_id: str) -> list[SlotHoldMetadata]:
        """Metadata of every live hold of a location."""


# ── Redis ────────────────────────────────────────────────────────────────


class RedisHoldStore(HoldStore):
    """Shared hold store. Safe across processes."""

    def __init__(
        self,
        redis: Redis,
        max_attempts: int = 10,
        retry_delay_ms: int = 50,
    ):
        self.redis = redis
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = max(0, retry_delay_ms) / 1000
        self._release = redis.register_script(RELEASE_SCRIPT)
        self._extend = redis.register_script(EXTEND_SCRIPT)

    def acquire(self, slot_key: str, token: str, ttl_ms: int) -> bool:
        key = hold_key(slot_key)
        # Retries only cover an unreachable store; a held key fails at once
        for attempt in range(1, self.max_attempts + 1):
            try:
                return bool(self.redis.set(key, token, px=ttl_ms, nx=True))
            except (ConnectionError, TimeoutError) as e:
                logger.warning(f"Hold acquire attempt {attempt}/{self.max_attempts} failed: {e}")
                if attempt < self.max_attempts:
                    time.sleep(self.retry_delay)
            except RedisError as e:
                logger.error(f"Hold acquire failed for {key}: {e}")
                return False

        logger.error(f"Hold store unreachable, giving up on {key}")
        return False

    def release(self, slot_key: str, token: str) -> bool:
        try:
            return self._release(keys=[hold_key(slot_key)], args=[token]) == 1
        except RedisError as e:
            logger.error(f"Hold release failed for {slot_key}: {e}")
            return False

    def extend(self, slot_key: str, token: str, ttl_ms: int) -> bool:
        try:
            return self._extend(keys=[hold_key(slot_key)], args=[token, ttl_ms]) == 1
        except RedisError as e:
            logger.error(f"Hold extend failed for {slot_key}: {e}")
            return False

    def get(self, slot_key: str) -> str | None:
        try:
            return _decode(self.redis.get(hold_key(slot_key)))
        except RedisError as e:
            logger.error(f"Hold lookup failed for {slot_key}: {e}")
            return None

    def get_many(self, slot_keys: list[str]) -> list[str | None]:
        if not slot_keys:
            return []
        try:
            values = self.redis.mget([hold_key(k) for k in slot_keys])
        except RedisError as e:
            logger.warning(f"Held slot lookup failed: {e}")
            return [None] * len(slot_keys)
        return [_decode(v) for v in values]

    def put_metadata(self, metadata: SlotHoldMetadata, ttl_ms: int) -> None:
        if ttl_ms <= 0:
            return
        try:
            self.redis.set(
                hold_meta_key(metadata.slot_key),
                metadata.model_dump_json(by_alias=True),
                px=ttl_ms,
            )
        except RedisError as e:
            logger.warning(f"Hold metadata write failed for {metadata.slot_key}: {e}")

    def get_metadata(self, slot_key: str) -> SlotHoldMetadata | None:
        try:
            raw = _decode(self.redis.get(hold_meta_key(slot_key)))
        except RedisError as e:
            logger.warning(f"Hold metadata read failed for {slot_key}: {e}")
            return None
        return _parse_metadata(raw)

    def delete_metadata(self, slot_key: str) -> None:
        try:
            self.redis.delete(hold_meta_key(slot_key))
        except RedisError as e:
            logger.warning(f"Hold metadata delete failed for {slot_key}: {e}")

    def scan_by_location(self, location_id: str) -> list[SlotHoldMetadata]:
        pattern = f"{HOLD_META_PREFIX}:{location_id}|*"
        try:
            keys = list(self.redis.scan_iter(match=pattern, count=200))
            if not keys:
                return []
            values = self.redis.mget(keys)
        except RedisError as e:
            logger.warning(f"Hold metadata scan failed for location {location_id}: {e}")
            return []

        result = []
        for value in values:
            metadata = _parse_metadata(_decode(value))
            if metadata is not None:
                result.append(metadata)
        return result


def _decode(value) -> str | None:
    if value is None:
        return None
    return value.decode() if isinstance(value, bytes) else value


def _parse_metadata(raw: str | None) -> SlotHoldMetadata | None:
    if not raw:
        return None
    try:
        return SlotHoldMetadata.model_validate_json(raw)
    except ValidationError:
        logger.warning("Skipping malformed hold metadata")
        return None


# ── In-memory ────────────────────────────────────────────────────────────


class MemoryHoldStore(HoldStore):
    """
    Single-process hold store.

    Same ownership checks as RedisHoldStore, but only protects callers
    sharing this instance.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._lock = threading.Lock()
        # slot_key → (token, expires_at seconds)
        self._holds: dict[str, tuple[str, float]] = {}
        self._metadata: dict[str, tuple[SlotHoldMetadata, float]] = {}

    def _live_token(self, slot_key: str, now: float) -> str | None:
        entry = self._holds.get(slot_key)
        if entry is None:
            return None
        token, expires_at = entry
        if expires_at <= now:
            del self._holds[slot_key]
            return None
        return token

    def acquire(self, slot_key: str, token: str, ttl_ms: int) -> bool:
        with self._lock:
            now = self.clock()
            if self._live_token(slot_key, now) is not None:
                return False
            self._holds[slot_key] = (token, now + ttl_ms / 1000)
            return True

    def release(self, slot_key: str, token: str) -> bool:
        with self._lock:
            if self._live_token(slot_key, self.clock()) != token:
                return False
            del self._holds[slot_key]
            return True

    def extend(self, slot_key: str, token: str, ttl_ms: int) -> bool:
        with self._lock:
            now = self.clock()
            if self._live_token(slot_key, now) != token:
                return False
            self._holds[slot_key] = (token, now + ttl_ms / 1000)
            return True

    def get(self, slot_key: str) -> str | None:
        with self._lock:
            return self._live_token(slot_key, self.clock())

    def get_many(self, slot_keys: list[str]) -> list[str | None]:
        with self._lock:
            now = self.clock()
            return [self._live_token(k, now) for k in slot_keys]

    def put_metadata(self, metadata: SlotHoldMetadata, ttl_ms: int) -> None:
        if ttl_ms <= 0:
            return
        with self._lock:
            self._metadata[metadata.slot_key] = (metadata, self.clock() + ttl_ms / 1000)

    def get_metadata(self, slot_key: str) -> SlotHoldMetadata | None:
        with self._lock:
            entry = self._metadata.get(slot_key)
            if entry is None:
                return None
            metadata, expires_at = entry
            if expires_at <= self.clock():
                del self._metadata[slot_key]
                return None
            return metadata

    def delete_metadata(self, slot_key: str) -> None:
        with self._lock:
            self._metadata.pop(slot_key, None)

    def scan_by_location(self, location_id: str) -> list[SlotHoldMetadata]:
        with self._lock:
            now = self.clock()
            expired = [k for k, (_, exp) in self._metadata.items() if exp <= now]
            for key in expired:
                del self._metadata[key]
            return [
                metadata for metadata, _ in self._metadata.values()
                if metadata.location_id == location_id
            ]


# ── Selection ────────────────────────────────────────────────────────────


def build_hold_store(
    settings: Settings | None = None,
    redis: Redis | None = None,
) -> HoldStore:
    """
    Pick the hold store at startup.

    Redis when configured; otherwise the in-memory store, unless
    hold_store_required is set.
    """
    settings = settings or get_settings()
    if redis is None and settings.redis_url:
        redis = get_redis_client()

    if redis is not None:
        return RedisHoldStore(
            redis,
            max_attempts=settings.lock_max_attempts,
            retry_delay_ms=settings.lock_retry_delay_ms,
        )

    if settings.hold_store_required:
        raise RuntimeError("REDIS_URL not set but HOLD_STORE_REQUIRED is enabled")

    logger.warning("No shared store configured, slot holds only protect this process")
    return MemoryHoldStore()
