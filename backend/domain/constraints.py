"""Domain-level validation rules for availability search and booking input."""

from __future__ import annotations

from dataclasses import dataclass

from backend.domain.models import BusinessHours


@dataclass(frozen=True)
class SearchConfig:
    business_hours: BusinessHours
    horizon_days: int
    max_results: int
    step_minutes: int


@dataclass(frozen=True)
class EngineConfig:
    search: SearchConfig
    occupancy_lookback_minutes: int
    default_booking_duration_minutes: int
    default_blocked_duration_minutes: int


def validate_business_hours(hours: BusinessHours) -> None:
    if not 0 <= hours.open_hour <= 23:
        raise ValueError("open_hour must be between 0 and 23")
    if not 1 <= hours.close_hour <= 24:
        raise ValueError("close_hour must be between 1 and 24")
    if hours.open_hour >= hours.close_hour:
        raise ValueError("open_hour must be less than close_hour")


def validate_search_config(config: SearchConfig) -> None:
    validate_business_hours(config.business_hours)
    if config.horizon_days <= 0:
        raise ValueError("horizon_days must be > 0")
    if config.max_results <= 0:
        raise ValueError("max_results must be > 0")
    if config.step_minutes <= 0:
        raise ValueError("step_minutes must be > 0")
    if 60 % config.step_minutes != 0 and config.step_minutes % 60 != 0:
        raise ValueError("step_minutes must divide or be a multiple of 60")


def validate_engine_config(config: EngineConfig) -> None:
    validate_search_config(config.search)
    if config.occupancy_lookback_minutes < 0:
        raise ValueError("occupancy_lookback_minutes must be >= 0")
    if config.default_booking_duration_minutes <= 0:
        raise ValueError("default_booking_duration_minutes must be > 0")
    if config.default_blocked_duration_minutes <= 0:
        raise ValueError("default_blocked_duration_minutes must be > 0")


def validate_duration(duration_minutes: int) -> None:
    if duration_minutes <= 0:
        raise ValueError("duration_minutes must be > 0")
    if duration_minutes > 24 * 60:
        raise ValueError("duration_minutes cannot span more than one day")
