"""HTTP controller layer for availability checks, alternatives and quotes."""

from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator, model_validator

from backend.controllers.dependencies import (
    get_availability_service,
    get_pricing_service,
    get_slot_finder,
)
from backend.domain.interfaces import OccupancySnapshot
from backend.domain.models import AlternativeSlot, BusinessHours, OccupiedInterval, PriceQuote, TimeSlot
from backend.services.availability_service import (
    AvailabilityService,
    AvailabilityValidationError,
    OccupancyUnavailableError,
)
from backend.services.pricing_service import (
    ListingNotFoundError,
    PricingService,
    PricingUnavailableError,
    PricingValidationError,
)
from backend.services.slot_finder_service import AlternativeSlotFinder
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["availability"])


def to_local_naive(value: datetime) -> datetime:
    """Every instant is handled in the single local timezone, without tzinfo."""
    if value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


class CheckAvailabilityRequest(BaseModel):
    """Input DTO validated before entering service layer."""

    provider_id: str = Field(min_length=1)
    start: datetime
    duration_minutes: int = Field(gt=0, le=24 * 60)
    exclude_booking_id: Optional[int] = Field(default=None, gt=0)

    @field_validator("start")
    @classmethod
    def normalize_start(cls, value: datetime) -> datetime:
        return to_local_naive(value)


class CheckAvailabilityResponse(BaseModel):
    provider_id: str
    start: datetime
    end: datetime
    status: Literal["available", "unavailable"]


class AlternativesRequest(BaseModel):
    provider_id: str = Field(min_length=1)
    anchor_date: date
    duration_minutes: int = Field(gt=0, le=24 * 60)
    open_hour: Optional[int] = Field(default=None, ge=0, le=23)
    close_hour: Optional[int] = Field(default=None, ge=1, le=24)
    horizon_days: Optional[int] = Field(default=None, gt=0, le=60)
    max_results: Optional[int] = Field(default=None, gt=0, le=20)
    exclude_booking_id: Optional[int] = Field(default=None, gt=0)
    not_before: Optional[datetime] = None

    @field_validator("not_before")
    @classmethod
    def normalize_not_before(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_local_naive(value) if value is not None else None

    @model_validator(mode="after")
    def validate_business_hours_pair(self) -> "AlternativesRequest":
        if (self.open_hour is None) != (self.close_hour is None):
            raise ValueError("open_hour and close_hour must be provided together")
        if self.open_hour is not None and self.open_hour >= self.close_hour:
            raise ValueError("open_hour must be less than close_hour")
        return self


class AlternativeSlotResponse(BaseModel):
    date: date
    time: time
    duration_minutes: int = Field(gt=0)
    display_label: str

    @classmethod
    def from_slot(cls, slot: AlternativeSlot) -> "AlternativeSlotResponse":
        return cls(
            date=slot.date,
            time=slot.time,
            duration_minutes=slot.duration_minutes,
            display_label=slot.display_label,
        )


class AlternativesResponse(BaseModel):
    alternatives: list[AlternativeSlotResponse]


class QuoteRequest(BaseModel):
    """Either a listing (plus optional duration) or raw pricing inputs."""

    listing_id: Optional[int] = Field(default=None, gt=0)
    duration_minutes: Optional[int] = Field(default=None, ge=0, le=24 * 60)
    unit_rate: Optional[Decimal] = Field(default=None, ge=0)
    quantity: Optional[Decimal] = None
    deposit_percent: Optional[Decimal] = Field(default=None, ge=0, le=100)

    @model_validator(mode="after")
    def validate_source(self) -> "QuoteRequest":
        if self.listing_id is None and (self.unit_rate is None or self.quantity is None):
            raise ValueError("provide listing_id, or unit_rate and quantity")
        return self


class QuoteResponse(BaseModel):
    listing_id: Optional[int] = None
    unit_rate: Decimal
    quantity: Decimal
    deposit_percent: Decimal
    total: Decimal
    deposit: Decimal
    balance: Decimal

    @classmethod
    def from_quote(cls, quote: PriceQuote, listing_id: Optional[int] = None) -> "QuoteResponse":
        return cls(
            listing_id=listing_id,
            unit_rate=quote.unit_rate,
            quantity=quote.quantity,
            deposit_percent=quote.deposit_percent,
            total=quote.total,
            deposit=quote.deposit,
            balance=quote.balance,
        )


class OccupiedIntervalResponse(BaseModel):
    kind: Literal["booking", "blocked"]
    start: datetime
    end: datetime
    status: Optional[str] = None
    source_id: Optional[int] = None

    @classmethod
    def from_interval(cls, interval: OccupiedInterval) -> "OccupiedIntervalResponse":
        return cls(
            kind=interval.kind.value,
            start=interval.start,
            end=interval.end,
            status=interval.status.value if interval.status else None,
            source_id=interval.source_id,
        )


class OccupancyResponse(BaseModel):
    provider_id: str
    day: date
    intervals: list[OccupiedIntervalResponse]

    @classmethod
    def from_snapshot(
        cls,
        provider_id: str,
        day: date,
        snapshot: OccupancySnapshot,
    ) -> "OccupancyResponse":
        intervals = sorted(snapshot.occupying(), key=lambda item: (item.start, item.kind.value))
        return cls(
            provider_id=provider_id,
            day=day,
            intervals=[OccupiedIntervalResponse.from_interval(item) for item in intervals],
        )


@router.post(
    "/availability/check",
    response_model=CheckAvailabilityResponse,
    status_code=status.HTTP_200_OK,
)
async def check_availability(
    payload: CheckAvailabilityRequest,
    service: AvailabilityService = Depends(get_availability_service),
) -> CheckAvailabilityResponse:
    """Verdict for one slot; an unreachable store is a 503, never 'available'."""
    try:
        slot = TimeSlot(start=payload.start, duration_minutes=payload.duration_minutes)
        result = service.check_availability(
            payload.provider_id,
            slot,
            exclude_booking_id=payload.exclude_booking_id,
        )
        return CheckAvailabilityResponse(
            provider_id=payload.provider_id,
            start=slot.start,
            end=slot.end,
            status=result.value,
        )
    except AvailabilityValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except OccupancyUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected availability check failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to check availability",
        ) from exc


@router.post(
    "/availability/alternatives",
    response_model=AlternativesResponse,
    status_code=status.HTTP_200_OK,
)
async def find_alternatives(
    payload: AlternativesRequest,
    finder: AlternativeSlotFinder = Depends(get_slot_finder),
) -> AlternativesResponse:
    """Earliest free slots; an empty list means the horizon is exhausted."""
    business_hours = None
    if payload.open_hour is not None and payload.close_hour is not None:
        business_hours = BusinessHours(open_hour=payload.open_hour, close_hour=payload.close_hour)
    try:
        alternatives = finder.find_alternatives(
            payload.provider_id,
            payload.anchor_date,
            payload.duration_minutes,
            business_hours=business_hours,
            horizon_days=payload.horizon_days,
            max_results=payload.max_results,
            exclude_booking_id=payload.exclude_booking_id,
            not_before=payload.not_before,
        )
        return AlternativesResponse(
            alternatives=[AlternativeSlotResponse.from_slot(slot) for slot in alternatives]
        )
    except AvailabilityValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except OccupancyUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected alternative search failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to search alternative slots",
        ) from exc


@router.post(
    "/quotes",
    response_model=QuoteResponse,
    status_code=status.HTTP_200_OK,
)
async def preview_quote(
    payload: QuoteRequest,
    service: PricingService = Depends(get_pricing_service),
) -> QuoteResponse:
    """Live price preview, computed exactly as the booking commit computes it."""
    try:
        if payload.listing_id is not None:
            listing, quote = service.preview_listing_quote(
                payload.listing_id,
                payload.duration_minutes,
            )
            return QuoteResponse.from_quote(quote, listing_id=listing.listing_id)
        quote = service.quote(payload.unit_rate, payload.quantity, payload.deposit_percent)
        return QuoteResponse.from_quote(quote)
    except PricingValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except ListingNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except PricingUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected quote failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to compute quote",
        ) from exc


@router.get(
    "/providers/{provider_id}/occupancy",
    response_model=OccupancyResponse,
    status_code=status.HTTP_200_OK,
)
async def get_occupancy(
    provider_id: str,
    day: date = Query(...),
    service: AvailabilityService = Depends(get_availability_service),
) -> OccupancyResponse:
    try:
        snapshot = service.day_occupancy(provider_id, day)
        return OccupancyResponse.from_snapshot(provider_id, day, snapshot)
    except AvailabilityValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except OccupancyUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
