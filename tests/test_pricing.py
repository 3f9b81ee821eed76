"""Tests for quote arithmetic and tariff unit quantities."""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal

import pytest

from backend.domain.models import TariffUnit
from backend.domain.pricing import compute_quote, default_duration_minutes, quantity_for_duration
from backend.repository.data_repository import DataRepository
from backend.services.pricing_service import (
    ListingNotFoundError,
    PricingService,
    PricingValidationError,
)
from backend.utils.config import get_settings


def _build_test_settings(tmp_path, filename: str):
    base = get_settings()
    return replace(base, database_path=tmp_path / filename, seed_demo_data=False)


def test_total_and_deposit_for_hourly_rate() -> None:
    quote = compute_quote(100, 3, 30)
    assert quote.total == Decimal("300.00")
    assert quote.deposit == Decimal("90")
    assert quote.balance == Decimal("210.00")


def test_missing_deposit_percent_means_no_deposit() -> None:
    quote = compute_quote(80, 2)
    assert quote.total == Decimal("160.00")
    assert quote.deposit == Decimal("0")


def test_deposit_rounds_half_up_to_whole_units() -> None:
    # 45 * 10% = 4.5 -> 5
    assert compute_quote(45, 1, 10).deposit == Decimal("5")
    # 44 * 10% = 4.4 -> 4
    assert compute_quote(44, 1, 10).deposit == Decimal("4")


@pytest.mark.parametrize("quantity", [0, -1, "0"])
def test_non_positive_quantity_yields_zero_quote(quantity) -> None:
    quote = compute_quote(100, quantity, 30)
    assert quote.total == Decimal("0")
    assert quote.deposit == Decimal("0")


def test_negative_rate_is_rejected() -> None:
    with pytest.raises(ValueError):
        compute_quote(-1, 2, 10)


@pytest.mark.parametrize("percent", [-0.5, 100.5, 150])
def test_out_of_range_percent_is_rejected(percent) -> None:
    with pytest.raises(ValueError):
        compute_quote(100, 1, percent)


def test_quote_is_deterministic() -> None:
    assert compute_quote("72.50", "1.5", "33") == compute_quote(Decimal("72.50"), Decimal("1.5"), 33)


def test_deposit_never_exceeds_total() -> None:
    quote = compute_quote("2.5", 1, 100)
    assert quote.total == Decimal("2.50")
    assert quote.deposit <= quote.total


def test_float_inputs_do_not_leak_binary_noise() -> None:
    quote = compute_quote(0.1, 3, 0)
    assert quote.total == Decimal("0.30")


@pytest.mark.parametrize(
    ("tariff_unit", "duration", "expected"),
    [
        (TariffUnit.HOUR, 90, Decimal("1.50")),
        (TariffUnit.HALF_DAY, 240, Decimal("1.00")),
        (TariffUnit.DAY, 240, Decimal("0.50")),
        (TariffUnit.SESSION, 180, Decimal("1")),
        (TariffUnit.FLAT_RATE, 30, Decimal("1")),
        (TariffUnit.HOUR, 0, Decimal("0")),
    ],
)
def test_quantity_for_duration(tariff_unit: TariffUnit, duration: int, expected: Decimal) -> None:
    assert quantity_for_duration(tariff_unit, duration) == expected


def test_default_durations_per_tariff_unit() -> None:
    assert default_duration_minutes(TariffUnit.HOUR) == 60
    assert default_duration_minutes(TariffUnit.HALF_DAY) == 240
    assert default_duration_minutes(TariffUnit.DAY) == 480
    assert default_duration_minutes(TariffUnit.SESSION, session_hours=2) == 120
    assert default_duration_minutes(TariffUnit.FLAT_RATE) == 60


def test_service_wraps_invalid_inputs(tmp_path) -> None:
    settings = _build_test_settings(tmp_path, "pricing_invalid.db")
    service = PricingService(repository=DataRepository(settings), settings=settings)
    with pytest.raises(PricingValidationError):
        service.quote(100, 1, 101)


def test_listing_preview_uses_listing_rate_and_default_duration(tmp_path) -> None:
    settings = _build_test_settings(tmp_path, "pricing_listing.db")
    repository = DataRepository(settings)
    repository.initialize_database()
    listing = repository.create_listing(
        provider_id="provider-a",
        title="Cours de yoga",
        unit_rate=Decimal("60"),
        tariff_unit=TariffUnit.SESSION,
        deposit_percent=Decimal("25"),
        session_hours=2,
    )
    service = PricingService(repository=repository, settings=settings)

    fetched, quote = service.preview_listing_quote(listing.listing_id)

    assert fetched == listing
    assert quote.quantity == Decimal("1")
    assert quote.total == Decimal("60.00")
    assert quote.deposit == Decimal("15")


def test_unknown_listing_raises_not_found(tmp_path) -> None:
    settings = _build_test_settings(tmp_path, "pricing_missing.db")
    repository = DataRepository(settings)
    repository.initialize_database()
    service = PricingService(repository=repository, settings=settings)
    with pytest.raises(ListingNotFoundError):
        service.preview_listing_quote(999)
