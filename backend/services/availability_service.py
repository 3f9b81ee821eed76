"""Availability checks of a requested slot against a provider's occupancy."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Optional

from backend.domain.constraints import (
    EngineConfig,
    SearchConfig,
    validate_duration,
    validate_engine_config,
)
from backend.domain.interfaces import OccupancyProvider, OccupancySnapshot
from backend.domain.intervals import first_overlap
from backend.domain.models import AvailabilityResult, BusinessHours, TimeSlot
from backend.repository.data_repository import DataRepository, RepositoryUnavailableError
from backend.utils.config import Settings, get_settings
from backend.utils.logger import format_fields, get_logger


logger = get_logger(__name__)


class AvailabilityError(Exception):
    """Base exception for availability workflow failures."""


class AvailabilityValidationError(AvailabilityError):
    """Raised when a request is malformed before any query runs."""


class OccupancyUnavailableError(AvailabilityError):
    """Raised when occupancy could not be fetched; availability is unknown."""


def build_engine_config(settings: Settings) -> EngineConfig:
    return EngineConfig(
        search=SearchConfig(
            business_hours=BusinessHours(
                open_hour=settings.business_open_hour,
                close_hour=settings.business_close_hour,
            ),
            horizon_days=settings.alternatives_horizon_days,
            max_results=settings.alternatives_max_results,
            step_minutes=settings.alternatives_step_minutes,
        ),
        occupancy_lookback_minutes=settings.occupancy_lookback_minutes,
        default_booking_duration_minutes=settings.default_booking_duration_minutes,
        default_blocked_duration_minutes=settings.default_blocked_duration_minutes,
    )


def validate_settings(settings: Settings) -> None:
    """Fail startup early when configured search/occupancy values are unusable."""
    validate_engine_config(build_engine_config(settings))


class AvailabilityService:
    """Decides whether a slot is free for a provider."""

    def __init__(
        self,
        occupancy_provider: Optional[OccupancyProvider] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._occupancy_provider = occupancy_provider or DataRepository(self._settings)

    @property
    def lookback(self) -> timedelta:
        return timedelta(minutes=self._settings.occupancy_lookback_minutes)

    @staticmethod
    def evaluate(slot: TimeSlot, snapshot: OccupancySnapshot) -> AvailabilityResult:
        """Pure verdict for ``slot`` over an already-fetched snapshot."""
        blocking = first_overlap(slot, snapshot.bookings)
        if blocking is None:
            blocking = first_overlap(slot, snapshot.blocked)
        if blocking is None:
            return AvailabilityResult.AVAILABLE
        return AvailabilityResult.UNAVAILABLE

    def occupancy_window(self, slot: TimeSlot) -> tuple[datetime, datetime]:
        """Fetch window for ``slot``, widened backwards by the look-back margin.

        The margin guarantees that an interval starting before the requested
        start but still running into it is fetched even from providers that
        filter on start instants only.
        """
        return slot.start - self.lookback, slot.end

    def fetch_snapshot(
        self,
        provider_id: str,
        window_start: datetime,
        window_end: datetime,
        *,
        exclude_booking_id: Optional[int] = None,
    ) -> OccupancySnapshot:
        try:
            return self._occupancy_provider.fetch_occupancy(
                provider_id,
                window_start,
                window_end,
                exclude_booking_id=exclude_booking_id,
            )
        except RepositoryUnavailableError as exc:
            logger.warning(
                "Occupancy fetch failed | %s",
                format_fields(provider_id=provider_id, error=exc),
            )
            raise OccupancyUnavailableError(
                f"Occupancy for provider {provider_id} is unavailable; retry later"
            ) from exc

    def check_availability(
        self,
        provider_id: str,
        slot: TimeSlot,
        *,
        exclude_booking_id: Optional[int] = None,
    ) -> AvailabilityResult:
        _validate_provider_id(provider_id)
        try:
            validate_duration(slot.duration_minutes)
        except ValueError as exc:
            raise AvailabilityValidationError(str(exc)) from exc

        window_start, window_end = self.occupancy_window(slot)
        snapshot = self.fetch_snapshot(
            provider_id,
            window_start,
            window_end,
            exclude_booking_id=exclude_booking_id,
        )
        result = self.evaluate(slot, snapshot)
        logger.info(
            "Availability checked | %s",
            format_fields(
                provider_id=provider_id,
                start=slot.start.isoformat(),
                duration_minutes=slot.duration_minutes,
                exclude_booking_id=exclude_booking_id,
                result=result.value,
            ),
        )
        return result

    def day_occupancy(self, provider_id: str, day: date) -> OccupancySnapshot:
        """Everything occupying ``day`` for a provider, for calendar views."""
        _validate_provider_id(provider_id)
        day_start = datetime.combine(day, time.min)
        return self.fetch_snapshot(provider_id, day_start, day_start + timedelta(days=1))


def _validate_provider_id(provider_id: str) -> None:
    if not provider_id or not provider_id.strip():
        raise AvailabilityValidationError("provider_id must be a non-empty string")
