"""Application settings loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


_ENV_PREFIX = "BOOKING_"


def _env_str(name: str, default: str) -> str:
    return os.getenv(f"{_ENV_PREFIX}{name}", default)


def _env_int(name: str, default: int) -> int:
    raw_value = os.getenv(f"{_ENV_PREFIX}{name}")
    if raw_value is None or not raw_value.strip():
        return default
    try:
        return int(raw_value)
    except ValueError as exc:
        raise ValueError(f"{_ENV_PREFIX}{name} must be an integer") from exc


def _env_float(name: str, default: float) -> float:
    raw_value = os.getenv(f"{_ENV_PREFIX}{name}")
    if raw_value is None or not raw_value.strip():
        return default
    try:
        return float(raw_value)
    except ValueError as exc:
        raise ValueError(f"{_ENV_PREFIX}{name} must be a number") from exc


def _env_bool(name: str, default: bool) -> bool:
    raw_value = os.getenv(f"{_ENV_PREFIX}{name}")
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """Immutable runtime configuration shared by every layer."""

    app_name: str
    app_version: str
    log_level: str
    database_path: Path
    database_timeout_seconds: float
    business_open_hour: int
    business_close_hour: int
    alternatives_horizon_days: int
    alternatives_max_results: int
    alternatives_step_minutes: int
    occupancy_lookback_minutes: int
    default_booking_duration_minutes: int
    default_blocked_duration_minutes: int
    booking_reference_prefix: str
    seed_demo_data: bool


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings once per process; call ``cache_clear`` to reload."""
    return Settings(
        app_name=_env_str("APP_NAME", "Prestation Booking Engine"),
        app_version=_env_str("APP_VERSION", "1.0.0"),
        log_level=_env_str("LOG_LEVEL", "INFO"),
        database_path=Path(_env_str("DATABASE_PATH", "data/bookings.db")),
        database_timeout_seconds=_env_float("DATABASE_TIMEOUT_SECONDS", 5.0),
        business_open_hour=_env_int("BUSINESS_OPEN_HOUR", 8),
        business_close_hour=_env_int("BUSINESS_CLOSE_HOUR", 20),
        alternatives_horizon_days=_env_int("ALTERNATIVES_HORIZON_DAYS", 7),
        alternatives_max_results=_env_int("ALTERNATIVES_MAX_RESULTS", 3),
        alternatives_step_minutes=_env_int("ALTERNATIVES_STEP_MINUTES", 60),
        occupancy_lookback_minutes=_env_int("OCCUPANCY_LOOKBACK_MINUTES", 24 * 60),
        default_booking_duration_minutes=_env_int("DEFAULT_BOOKING_DURATION_MINUTES", 120),
        default_blocked_duration_minutes=_env_int("DEFAULT_BLOCKED_DURATION_MINUTES", 60),
        booking_reference_prefix=_env_str("REFERENCE_PREFIX", "9"),
        seed_demo_data=_env_bool("SEED_DEMO_DATA", True),
    )
