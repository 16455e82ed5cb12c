"""Environment-driven runtime settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    database_path: Path
    log_level: str
    decision_log_level: str
    series_max_occurrences: int
    booking_max_attempts: int
    store_busy_timeout_seconds: float
    default_max_concurrent: int
    seed_demo_facilities: bool


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings once per process; tests derive variants with `replace`."""
    return Settings(
        app_name=os.getenv("APP_NAME", "Facility Booking Engine"),
        app_version=os.getenv("APP_VERSION", "1.0.0"),
        database_path=Path(os.getenv("BOOKING_DATABASE_PATH", "data/bookings.db")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        decision_log_level=os.getenv("DECISION_LOG_LEVEL", "INFO"),
        series_max_occurrences=int(os.getenv("SERIES_MAX_OCCURRENCES", "366")),
        booking_max_attempts=int(os.getenv("BOOKING_MAX_ATTEMPTS", "3")),
        store_busy_timeout_seconds=float(os.getenv("STORE_BUSY_TIMEOUT_SECONDS", "5.0")),
        default_max_concurrent=int(os.getenv("DEFAULT_MAX_CONCURRENT", "1")),
        seed_demo_facilities=_env_bool("SEED_DEMO_FACILITIES", True),
    )
