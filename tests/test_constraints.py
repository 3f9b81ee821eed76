"""Tests for search and engine configuration validation.

Covers every branch of validate_search_config() and validate_engine_config().
"""

from __future__ import annotations

from dataclasses import replace

import pytest

from backend.domain.constraints import (
    EngineConfig,
    SearchConfig,
    validate_duration,
    validate_engine_config,
    validate_search_config,
)
from backend.domain.models import BusinessHours
from backend.services.availability_service import validate_settings
from backend.utils.config import get_settings


def valid_search(**overrides) -> SearchConfig:
    """Return a valid baseline SearchConfig, optionally overriding fields."""
    defaults = {
        "business_hours": BusinessHours(open_hour=8, close_hour=20),
        "horizon_days": 7,
        "max_results": 3,
        "step_minutes": 60,
    }
    defaults.update(overrides)
    return SearchConfig(**defaults)


def valid_engine(**overrides) -> EngineConfig:
    defaults = {
        "search": valid_search(),
        "occupancy_lookback_minutes": 1440,
        "default_booking_duration_minutes": 120,
        "default_blocked_duration_minutes": 60,
    }
    defaults.update(overrides)
    return EngineConfig(**defaults)


# --- Baseline pass ---

def test_valid_config_passes() -> None:
    """A fully valid config must not raise."""
    validate_engine_config(valid_engine())


def test_default_settings_pass() -> None:
    validate_settings(get_settings())


# --- business hours ---

def test_open_hour_out_of_range_raises() -> None:
    with pytest.raises(ValueError):
        validate_search_config(valid_search(business_hours=BusinessHours(open_hour=24, close_hour=24)))


def test_close_hour_out_of_range_raises() -> None:
    with pytest.raises(ValueError):
        validate_search_config(valid_search(business_hours=BusinessHours(open_hour=8, close_hour=25)))


def test_open_not_before_close_raises() -> None:
    with pytest.raises(ValueError):
        validate_search_config(valid_search(business_hours=BusinessHours(open_hour=12, close_hour=12)))


# --- horizon / results / step ---

@pytest.mark.parametrize("field", ["horizon_days", "max_results", "step_minutes"])
def test_non_positive_search_bounds_raise(field: str) -> None:
    with pytest.raises(ValueError):
        validate_search_config(valid_search(**{field: 0}))


@pytest.mark.parametrize("step", [15, 30, 60, 120])
def test_step_aligned_with_the_hour_passes(step: int) -> None:
    validate_search_config(valid_search(step_minutes=step))


def test_step_not_aligned_with_the_hour_raises() -> None:
    with pytest.raises(ValueError):
        validate_search_config(valid_search(step_minutes=45))


# --- engine fields ---

def test_negative_lookback_raises() -> None:
    with pytest.raises(ValueError):
        validate_engine_config(valid_engine(occupancy_lookback_minutes=-1))


def test_zero_lookback_passes() -> None:
    validate_engine_config(valid_engine(occupancy_lookback_minutes=0))


@pytest.mark.parametrize(
    "field",
    ["default_booking_duration_minutes", "default_blocked_duration_minutes"],
)
def test_non_positive_default_durations_raise(field: str) -> None:
    with pytest.raises(ValueError):
        validate_engine_config(valid_engine(**{field: 0}))


def test_settings_with_inverted_hours_fail_validation() -> None:
    settings = replace(get_settings(), business_open_hour=20, business_close_hour=8)
    with pytest.raises(ValueError):
        validate_settings(settings)


# --- duration ---

@pytest.mark.parametrize("duration", [0, -15, 24 * 60 + 1])
def test_invalid_durations_raise(duration: int) -> None:
    with pytest.raises(ValueError):
        validate_duration(duration)


def test_full_day_duration_passes() -> None:
    validate_duration(24 * 60)
