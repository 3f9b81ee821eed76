"""HTTP controller layer for booking commits and provider calendar blocks."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator, model_validator

from backend.controllers.availability_controller import AlternativeSlotResponse, to_local_naive
from backend.controllers.dependencies import (
    get_booking_service,
    get_pricing_service,
    get_slot_finder,
)
from backend.domain.models import (
    AlternativeSlot,
    BlockedPeriod,
    Booking,
    BookingAttemptState,
    BookingMetadata,
    TimeSlot,
)
from backend.services.availability_service import OccupancyUnavailableError
from backend.services.booking_service import (
    BookingConflictError,
    BookingNotFoundError,
    BookingService,
    BookingStoreUnavailableError,
    BookingValidationError,
)
from backend.services.pricing_service import (
    ListingNotFoundError,
    PricingService,
    PricingUnavailableError,
)
from backend.services.slot_finder_service import AlternativeSlotFinder
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["bookings"])


class CreateBookingRequest(BaseModel):
    listing_id: int = Field(gt=0)
    start: datetime
    duration_minutes: Optional[int] = Field(default=None, gt=0, le=24 * 60)
    client_id: Optional[str] = None
    client_name: Optional[str] = Field(default=None, max_length=200)
    client_email: Optional[str] = Field(default=None, max_length=320)
    location: Optional[str] = Field(default=None, max_length=500)
    participants: Optional[int] = Field(default=None, ge=1)
    comment: Optional[str] = Field(default=None, max_length=2000)
    expected_total: Optional[Decimal] = Field(default=None, ge=0)
    expected_deposit: Optional[Decimal] = Field(default=None, ge=0)

    @field_validator("start")
    @classmethod
    def normalize_start(cls, value: datetime) -> datetime:
        return to_local_naive(value)

    def metadata(self) -> BookingMetadata:
        return BookingMetadata(
            client_id=self.client_id,
            client_name=self.client_name,
            client_email=self.client_email,
            location=self.location,
            participants=self.participants,
            comment=self.comment,
        )


class RescheduleBookingRequest(BaseModel):
    start: datetime
    duration_minutes: int = Field(gt=0, le=24 * 60)

    @field_validator("start")
    @classmethod
    def normalize_start(cls, value: datetime) -> datetime:
        return to_local_naive(value)


class BookingResponse(BaseModel):
    booking_id: int = Field(gt=0)
    reference: int
    provider_id: str
    listing_id: Optional[int] = None
    start: datetime
    end: datetime
    duration_minutes: int
    status: str
    unit_rate: Decimal
    tariff_unit: Optional[str] = None
    quantity: Decimal
    deposit_percent: Decimal
    total: Decimal
    deposit: Decimal
    client_name: Optional[str] = None
    location: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingResponse":
        return cls(
            booking_id=booking.booking_id,
            reference=booking.reference,
            provider_id=booking.provider_id,
            listing_id=booking.listing_id,
            start=booking.start,
            end=booking.end,
            duration_minutes=booking.duration_minutes,
            status=booking.status.value,
            unit_rate=booking.unit_rate,
            tariff_unit=booking.tariff_unit.value if booking.tariff_unit else None,
            quantity=booking.quantity,
            deposit_percent=booking.deposit_percent,
            total=booking.total,
            deposit=booking.deposit,
            client_name=booking.metadata.client_name,
            location=booking.metadata.location,
            created_at=booking.created_at,
        )


class BlockPeriodRequest(BaseModel):
    start: datetime
    end: Optional[datetime] = None
    reason: Optional[str] = Field(default=None, max_length=500)

    @field_validator("start", "end")
    @classmethod
    def normalize_instants(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_local_naive(value) if value is not None else None

    @model_validator(mode="after")
    def validate_order(self) -> "BlockPeriodRequest":
        if self.end is not None and self.end <= self.start:
            raise ValueError("end must be after start")
        return self


class BlockedPeriodResponse(BaseModel):
    blocked_id: int
    provider_id: str
    start: datetime
    end: datetime
    reason: Optional[str] = None

    @classmethod
    def from_blocked(cls, blocked: BlockedPeriod) -> "BlockedPeriodResponse":
        return cls(
            blocked_id=blocked.blocked_id,
            provider_id=blocked.provider_id,
            start=blocked.start,
            end=blocked.end,
            reason=blocked.reason,
        )


def _conflict_detail(message: str, alternatives: tuple[AlternativeSlot, ...] | list[AlternativeSlot]) -> dict[str, Any]:
    return {
        "message": message,
        "alternatives": [
            AlternativeSlotResponse.from_slot(slot).model_dump(mode="json")
            for slot in alternatives
        ],
    }


@router.post(
    "/bookings",
    response_model=BookingResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_booking(
    payload: CreateBookingRequest,
    booking_service: BookingService = Depends(get_booking_service),
    pricing_service: PricingService = Depends(get_pricing_service),
) -> BookingResponse:
    """Commit a booking; 409 responses carry the next free slots."""
    try:
        listing = pricing_service.get_listing(payload.listing_id)
        duration = payload.duration_minutes or pricing_service.default_duration(listing)
        outcome = booking_service.attempt_booking(
            listing,
            TimeSlot(start=payload.start, duration_minutes=duration),
            payload.metadata(),
            expected_total=payload.expected_total,
            expected_deposit=payload.expected_deposit,
            not_before=datetime.now(),
        )
    except ListingNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except BookingValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except PricingUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected booking failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create booking",
        ) from exc

    if outcome.state is BookingAttemptState.CONFLICTED:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=_conflict_detail(outcome.message or "slot unavailable", outcome.alternatives),
        )
    if outcome.state is BookingAttemptState.FAILED or outcome.booking is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=outcome.message or "booking store unavailable",
        )
    return BookingResponse.from_booking(outcome.booking)


@router.get(
    "/bookings/{booking_id}",
    response_model=BookingResponse,
    status_code=status.HTTP_200_OK,
)
async def get_booking(
    booking_id: int,
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        return BookingResponse.from_booking(booking_service.get_booking(booking_id))
    except BookingNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except BookingStoreUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc


@router.post(
    "/bookings/{booking_id}/cancel",
    response_model=BookingResponse,
    status_code=status.HTTP_200_OK,
)
async def cancel_booking(
    booking_id: int,
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        return BookingResponse.from_booking(booking_service.cancel_booking(booking_id))
    except BookingNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except BookingStoreUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc


@router.post(
    "/bookings/{booking_id}/reschedule",
    response_model=BookingResponse,
    status_code=status.HTTP_200_OK,
)
async def reschedule_booking(
    booking_id: int,
    payload: RescheduleBookingRequest,
    booking_service: BookingService = Depends(get_booking_service),
    finder: AlternativeSlotFinder = Depends(get_slot_finder),
) -> BookingResponse:
    slot = TimeSlot(start=payload.start, duration_minutes=payload.duration_minutes)
    try:
        return BookingResponse.from_booking(booking_service.reschedule_booking(booking_id, slot))
    except BookingNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except BookingValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except BookingStoreUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
    except BookingConflictError as exc:
        conflict = exc

    try:
        booking = booking_service.get_booking(booking_id)
        alternatives = finder.find_alternatives(
            booking.provider_id,
            slot.start.date(),
            slot.duration_minutes,
            exclude_booking_id=booking_id,
            not_before=datetime.now(),
        )
    except (BookingStoreUnavailableError, OccupancyUnavailableError) as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
    raise HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail=_conflict_detail(str(conflict), alternatives),
    )


@router.post(
    "/providers/{provider_id}/blocked_periods",
    response_model=BlockedPeriodResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_blocked_period(
    provider_id: str,
    payload: BlockPeriodRequest,
    booking_service: BookingService = Depends(get_booking_service),
) -> BlockedPeriodResponse:
    try:
        blocked = booking_service.block_period(
            provider_id,
            payload.start,
            payload.end,
            payload.reason,
        )
        return BlockedPeriodResponse.from_blocked(blocked)
    except BookingValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except BookingStoreUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc


@router.get(
    "/providers/{provider_id}/blocked_periods",
    response_model=list[BlockedPeriodResponse],
    status_code=status.HTTP_200_OK,
)
async def list_blocked_periods(
    provider_id: str,
    start: datetime = Query(...),
    end: datetime = Query(...),
    booking_service: BookingService = Depends(get_booking_service),
) -> list[BlockedPeriodResponse]:
    """Blocked periods intersecting ``[start, end)``, earliest first."""
    try:
        blocked = booking_service.list_blocked_periods(
            provider_id,
            to_local_naive(start),
            to_local_naive(end),
        )
        return [BlockedPeriodResponse.from_blocked(item) for item in blocked]
    except BookingValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except BookingStoreUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
