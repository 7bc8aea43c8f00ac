# booking_slots/config.py

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    redis_url: str | None = None
    redis_socket_timeout: float = 2.0

    # 0 disables the availability cache
    availability_cache_ttl_seconds: int = 0

    hold_ttl_seconds: int = 300
    hold_store_required: bool = False
    lock_max_attempts: int = 10
    lock_retry_delay_ms: int = 50

    slot_granularity_minutes: int = 5

    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        extra="ignore",
    )

    @property
    def hold_ttl_ms(self) -> int:
        return self.hold_ttl_seconds * 1000


@lru_cache
def get_settings() -> Settings:
    return Settings()
