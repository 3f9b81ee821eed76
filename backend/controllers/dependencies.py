"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request, status

from backend.services.availability_service import AvailabilityService
from backend.services.booking_service import BookingService
from backend.services.pricing_service import PricingService
from backend.services.slot_finder_service import AlternativeSlotFinder


def _require_state(request: Request, attribute: str, label: str) -> Any:
    service = getattr(request.app.state, attribute, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} is not initialized",
        )
    return service


def get_availability_service(request: Request) -> AvailabilityService:
    return _require_state(request, "availability_service", "Availability service")


def get_slot_finder(request: Request) -> AlternativeSlotFinder:
    return _require_state(request, "slot_finder", "Alternative slot finder")


def get_pricing_service(request: Request) -> PricingService:
    return _require_state(request, "pricing_service", "Pricing service")


def get_booking_service(request: Request) -> BookingService:
    service = getattr(request.app.state, "booking_service", None)
    if service is None:
        repository = getattr(request.app.state, "repository", None)
        availability_service = getattr(request.app.state, "availability_service", None)
        slot_finder = getattr(request.app.state, "slot_finder", None)
        pricing_service = getattr(request.app.state, "pricing_service", None)
        if (
            repository is not None
            and availability_service is not None
            and slot_finder is not None
            and pricing_service is not None
        ):
            service = BookingService(
                repository=repository,
                availability_service=availability_service,
                slot_finder=slot_finder,
                pricing_service=pricing_service,
            )
            request.app.state.booking_service = service
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Booking service is not initialized",
        )
    return service
