"""Booking commit gate: final availability re-check plus store-guarded write."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from backend.domain.interfaces import BookingWriter
from backend.domain.models import (
    AlternativeSlot,
    AvailabilityResult,
    BlockedPeriod,
    Booking,
    BookingAttemptState,
    BookingMetadata,
    BookingRecord,
    BookingStatus,
    Listing,
    PriceQuote,
    TariffUnit,
    TimeSlot,
)
from backend.domain.pricing import compute_quote
from backend.repository.data_repository import (
    DataRepository,
    OverlappingBookingError,
    RepositoryUnavailableError,
)
from backend.services.availability_service import (
    AvailabilityService,
    AvailabilityValidationError,
    OccupancyUnavailableError,
)
from backend.services.pricing_service import PricingService, PricingValidationError
from backend.services.slot_finder_service import AlternativeSlotFinder
from backend.utils.config import Settings, get_settings
from backend.utils.logger import format_fields, get_logger


logger = get_logger(__name__)


class BookingError(Exception):
    """Base exception for booking workflow failures."""


class BookingValidationError(BookingError):
    """Raised when booking input is invalid or a quote is stale."""


class BookingNotFoundError(BookingError):
    """Raised when a booking id does not exist in persisted state."""


class BookingConflictError(BookingError):
    """Raised when the slot is taken, either at check time or at write time."""

    def __init__(self, message: str, *, detected_by_store: bool = False) -> None:
        super().__init__(message)
        self.detected_by_store = detected_by_store


class BookingStoreUnavailableError(BookingError):
    """Raised when occupancy or the writer could not be reached; retryable."""


@dataclass(frozen=True)
class BookingAttemptOutcome:
    state: BookingAttemptState
    booking: Optional[Booking] = None
    alternatives: tuple[AlternativeSlot, ...] = field(default_factory=tuple)
    message: Optional[str] = None


def initial_status(quote: PriceQuote) -> BookingStatus:
    """Bookings without a deposit are settled; the rest await the deposit."""
    if quote.deposit == Decimal("0"):
        return BookingStatus.PAID
    return BookingStatus.PENDING


class BookingService:
    """Coordinates quote -> re-check -> write for a single booking attempt."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        availability_service: Optional[AvailabilityService] = None,
        slot_finder: Optional[AlternativeSlotFinder] = None,
        pricing_service: Optional[PricingService] = None,
        settings: Optional[Settings] = None,
        writer: Optional[BookingWriter] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._writer = writer or self._repository
        self._availability_service = availability_service or AvailabilityService(
            occupancy_provider=self._repository,
            settings=self._settings,
        )
        self._slot_finder = slot_finder or AlternativeSlotFinder(
            availability_service=self._availability_service,
            settings=self._settings,
        )
        self._pricing_service = pricing_service or PricingService(
            repository=self._repository,
            settings=self._settings,
        )

    def _ensure_available(
        self,
        provider_id: str,
        slot: TimeSlot,
        *,
        exclude_booking_id: Optional[int] = None,
    ) -> None:
        try:
            result = self._availability_service.check_availability(
                provider_id,
                slot,
                exclude_booking_id=exclude_booking_id,
            )
        except AvailabilityValidationError as exc:
            raise BookingValidationError(str(exc)) from exc
        except OccupancyUnavailableError as exc:
            raise BookingStoreUnavailableError(str(exc)) from exc
        if result is AvailabilityResult.UNAVAILABLE:
            logger.info(
                "Booking pre-check conflict | %s",
                format_fields(provider_id=provider_id, start=slot.start.isoformat()),
            )
            raise BookingConflictError(
                f"slot {slot.start.isoformat()} is no longer available for provider {provider_id}"
            )

    @staticmethod
    def _ensure_quote_consistent(quote: PriceQuote) -> None:
        try:
            recomputed = compute_quote(quote.unit_rate, quote.quantity, quote.deposit_percent)
        except (ArithmeticError, ValueError) as exc:
            raise BookingValidationError(str(exc)) from exc
        if recomputed.total != quote.total or recomputed.deposit != quote.deposit:
            raise BookingValidationError(
                "quote totals do not match unit_rate, quantity and deposit_percent"
            )

    def commit_booking(
        self,
        provider_id: str,
        slot: TimeSlot,
        quote: PriceQuote,
        metadata: Optional[BookingMetadata] = None,
        *,
        listing_id: Optional[int] = None,
        tariff_unit: Optional[TariffUnit] = None,
    ) -> Booking:
        """Persist a booking or raise ``BookingConflictError``.

        The availability re-check only fails fast; the writer's transactional
        overlap guard is what guarantees a single winner when two commits race.
        """
        self._ensure_quote_consistent(quote)
        self._ensure_available(provider_id, slot)

        record = BookingRecord(
            provider_id=provider_id,
            listing_id=listing_id,
            slot=slot,
            quote=quote,
            status=initial_status(quote),
            tariff_unit=tariff_unit,
            metadata=metadata or BookingMetadata(),
        )
        try:
            booking = self._writer.insert_booking(record)
        except OverlappingBookingError as exc:
            logger.info(
                "Booking write conflict | %s",
                format_fields(provider_id=provider_id, start=slot.start.isoformat()),
            )
            raise BookingConflictError(str(exc), detected_by_store=True) from exc
        except RepositoryUnavailableError as exc:
            logger.warning(
                "Booking write failed | %s",
                format_fields(provider_id=provider_id, error=exc),
            )
            raise BookingStoreUnavailableError(str(exc)) from exc

        logger.info(
            "Booking committed | %s",
            format_fields(
                booking_id=booking.booking_id,
                reference=booking.reference,
                provider_id=provider_id,
                start=booking.start.isoformat(),
                duration_minutes=booking.duration_minutes,
                status=booking.status.value,
            ),
        )
        return booking

    def book_listing(
        self,
        listing_id: int,
        slot: TimeSlot,
        metadata: Optional[BookingMetadata] = None,
        *,
        expected_total: Optional[Decimal] = None,
        expected_deposit: Optional[Decimal] = None,
    ) -> Booking:
        listing = self._pricing_service.get_listing(listing_id)
        return self.commit_listing(
            listing,
            slot,
            metadata,
            expected_total=expected_total,
            expected_deposit=expected_deposit,
        )

    def commit_listing(
        self,
        listing: Listing,
        slot: TimeSlot,
        metadata: Optional[BookingMetadata] = None,
        *,
        expected_total: Optional[Decimal] = None,
        expected_deposit: Optional[Decimal] = None,
    ) -> Booking:
        """Quote an already-loaded listing exactly as the preview does, then commit."""
        try:
            quote = self._pricing_service.quote_listing(listing, slot.duration_minutes)
        except PricingValidationError as exc:
            raise BookingValidationError(str(exc)) from exc
        if (expected_total is not None and expected_total != quote.total) or (
            expected_deposit is not None and expected_deposit != quote.deposit
        ):
            raise BookingValidationError(
                "displayed price is stale; refresh the quote before confirming"
            )
        return self.commit_booking(
            listing.provider_id,
            slot,
            quote,
            metadata,
            listing_id=listing.listing_id,
            tariff_unit=listing.tariff_unit,
        )

    def attempt_booking(
        self,
        listing: Listing,
        slot: TimeSlot,
        metadata: Optional[BookingMetadata] = None,
        *,
        expected_total: Optional[Decimal] = None,
        expected_deposit: Optional[Decimal] = None,
        not_before: Optional[datetime] = None,
    ) -> BookingAttemptOutcome:
        """Drive one attempt to a terminal state.

        A conflict is seeded with alternatives for the next attempt; transient
        store failures end in ``FAILED`` with the reason attached. Input
        validation errors are raised to the caller unchanged.
        """
        listing_id = listing.listing_id
        logger.info(
            "Booking attempt | %s",
            format_fields(
                listing_id=listing_id,
                start=slot.start.isoformat(),
                state=BookingAttemptState.VALIDATING.value,
            ),
        )
        try:
            booking = self.commit_listing(
                listing,
                slot,
                metadata,
                expected_total=expected_total,
                expected_deposit=expected_deposit,
            )
        except BookingConflictError as exc:
            try:
                alternatives = self._slot_finder.find_alternatives(
                    listing.provider_id,
                    slot.start.date(),
                    slot.duration_minutes,
                    not_before=not_before,
                )
            except OccupancyUnavailableError as search_exc:
                return self._finish(
                    listing_id,
                    BookingAttemptOutcome(
                        state=BookingAttemptState.FAILED,
                        message=str(search_exc),
                    ),
                )
            return self._finish(
                listing_id,
                BookingAttemptOutcome(
                    state=BookingAttemptState.CONFLICTED,
                    alternatives=tuple(alternatives),
                    message=str(exc),
                ),
            )
        except BookingStoreUnavailableError as exc:
            return self._finish(
                listing_id,
                BookingAttemptOutcome(state=BookingAttemptState.FAILED, message=str(exc)),
            )
        return self._finish(
            listing_id,
            BookingAttemptOutcome(state=BookingAttemptState.COMMITTED, booking=booking),
        )

    @staticmethod
    def _finish(listing_id: int, outcome: BookingAttemptOutcome) -> BookingAttemptOutcome:
        logger.info(
            "Booking attempt finished | %s",
            format_fields(
                listing_id=listing_id,
                state=outcome.state.value,
                alternatives=len(outcome.alternatives) if outcome.alternatives else None,
            ),
        )
        return outcome

    def get_booking(self, booking_id: int) -> Booking:
        try:
            booking = self._repository.get_booking(booking_id)
        except RepositoryUnavailableError as exc:
            raise BookingStoreUnavailableError(str(exc)) from exc
        if booking is None:
            raise BookingNotFoundError(f"booking_id {booking_id} not found")
        return booking

    def reschedule_booking(self, booking_id: int, slot: TimeSlot) -> Booking:
        """Move an active booking; its own current interval is not a conflict."""
        booking = self.get_booking(booking_id)
        if not booking.status.is_active:
            raise BookingValidationError("cancelled bookings cannot be rescheduled")

        self._ensure_available(booking.provider_id, slot, exclude_booking_id=booking_id)
        try:
            if booking.tariff_unit is None:
                # No tariff unit: the quantity is an item count, not a duration.
                quote = self._pricing_service.quote(
                    booking.unit_rate,
                    booking.quantity,
                    booking.deposit_percent,
                )
            else:
                quote = self._pricing_service.quote_for_duration(
                    booking.unit_rate,
                    booking.tariff_unit,
                    slot.duration_minutes,
                    booking.deposit_percent,
                )
        except PricingValidationError as exc:
            raise BookingValidationError(str(exc)) from exc

        try:
            updated = self._repository.reschedule_booking(booking_id, slot, quote)
        except OverlappingBookingError as exc:
            raise BookingConflictError(str(exc), detected_by_store=True) from exc
        except RepositoryUnavailableError as exc:
            raise BookingStoreUnavailableError(str(exc)) from exc
        if updated is None:
            raise BookingNotFoundError(f"booking_id {booking_id} not found")
        logger.info(
            "Booking rescheduled | %s",
            format_fields(booking_id=booking_id, start=slot.start.isoformat()),
        )
        return updated

    def cancel_booking(self, booking_id: int) -> Booking:
        """Release the slot; cancelling twice is a no-op."""
        booking = self.get_booking(booking_id)
        if booking.status is BookingStatus.CANCELLED:
            return booking
        try:
            cancelled = self._repository.update_booking_status(
                booking_id,
                BookingStatus.CANCELLED,
            )
        except RepositoryUnavailableError as exc:
            raise BookingStoreUnavailableError(str(exc)) from exc
        if cancelled is None:
            raise BookingNotFoundError(f"booking_id {booking_id} not found")
        logger.info(
            "Booking cancelled | %s",
            format_fields(booking_id=booking_id, provider_id=booking.provider_id),
        )
        return cancelled

    def block_period(
        self,
        provider_id: str,
        start: datetime,
        end: Optional[datetime] = None,
        reason: Optional[str] = None,
    ) -> BlockedPeriod:
        if not provider_id or not provider_id.strip():
            raise BookingValidationError("provider_id must be a non-empty string")
        if end is not None and end <= start:
            raise BookingValidationError("blocked period end must be after its start")
        try:
            return self._repository.create_blocked_period(provider_id, start, end, reason)
        except RepositoryUnavailableError as exc:
            raise BookingStoreUnavailableError(str(exc)) from exc

    def list_blocked_periods(
        self,
        provider_id: str,
        window_start: datetime,
        window_end: datetime,
    ) -> list[BlockedPeriod]:
        if not provider_id or not provider_id.strip():
            raise BookingValidationError("provider_id must be a non-empty string")
        if window_end <= window_start:
            raise BookingValidationError("window end must be after its start")
        try:
            return self._repository.list_blocked_periods(provider_id, window_start, window_end)
        except RepositoryUnavailableError as exc:
            raise BookingStoreUnavailableError(str(exc)) from exc
