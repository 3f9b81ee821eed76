"""Quote computation shared by the live preview and the booking commit path."""

from __future__ import annotations

from typing import Optional

from backend.domain.models import Listing, PriceQuote, TariffUnit
from backend.domain.pricing import (
    Numeric,
    compute_quote,
    default_duration_minutes,
    quantity_for_duration,
)
from backend.repository.data_repository import DataRepository, RepositoryUnavailableError
from backend.utils.config import Settings, get_settings
from backend.utils.logger import format_fields, get_logger


logger = get_logger(__name__)


class PricingError(Exception):
    """Base exception for pricing failures."""


class PricingValidationError(PricingError):
    """Raised when a rate, quantity or deposit percent is out of range."""


class ListingNotFoundError(PricingError):
    """Raised when a listing id does not exist in persisted state."""


class PricingUnavailableError(PricingError):
    """Raised when listing data could not be read from the store."""


class PricingService:
    """Single entry point for every total/deposit computation."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)

    def quote(
        self,
        unit_rate: Numeric,
        quantity: Numeric,
        deposit_percent: Optional[Numeric] = None,
    ) -> PriceQuote:
        try:
            return compute_quote(unit_rate, quantity, deposit_percent)
        except (ArithmeticError, ValueError) as exc:
            raise PricingValidationError(str(exc)) from exc

    def get_listing(self, listing_id: int) -> Listing:
        try:
            listing = self._repository.get_listing(listing_id)
        except RepositoryUnavailableError as exc:
            raise PricingUnavailableError(str(exc)) from exc
        if listing is None:
            raise ListingNotFoundError(f"listing_id {listing_id} not found")
        return listing

    def default_duration(self, listing: Listing) -> int:
        return default_duration_minutes(listing.tariff_unit, listing.session_hours)

    def quote_for_duration(
        self,
        unit_rate: Numeric,
        tariff_unit: TariffUnit,
        duration_minutes: int,
        deposit_percent: Optional[Numeric] = None,
    ) -> PriceQuote:
        quantity = quantity_for_duration(tariff_unit, duration_minutes)
        return self.quote(unit_rate, quantity, deposit_percent)

    def quote_listing(self, listing: Listing, duration_minutes: Optional[int]) -> PriceQuote:
        """Quote a listing; an unset duration falls back to the listing default."""
        resolved_duration = (
            duration_minutes if duration_minutes is not None else self.default_duration(listing)
        )
        quote = self.quote_for_duration(
            listing.unit_rate,
            listing.tariff_unit,
            resolved_duration,
            listing.deposit_percent,
        )
        logger.info(
            "Quote computed | %s",
            format_fields(
                listing_id=listing.listing_id,
                duration_minutes=resolved_duration,
                quantity=quote.quantity,
                total=quote.total,
                deposit=quote.deposit,
            ),
        )
        return quote

    def preview_listing_quote(
        self,
        listing_id: int,
        duration_minutes: Optional[int] = None,
    ) -> tuple[Listing, PriceQuote]:
        listing = self.get_listing(listing_id)
        return listing, self.quote_listing(listing, duration_minutes)
