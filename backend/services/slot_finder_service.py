"""Bounded search for free alternative slots inside business hours."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from math import ceil
from typing import Optional

from backend.domain.constraints import SearchConfig, validate_duration, validate_search_config
from backend.domain.models import (
    AlternativeSlot,
    AvailabilityResult,
    BusinessHours,
    TimeSlot,
)
from backend.services.availability_service import (
    AvailabilityService,
    AvailabilityValidationError,
)
from backend.utils.config import Settings, get_settings
from backend.utils.logger import format_fields, get_logger


logger = get_logger(__name__)

_WEEKDAYS_FR = (
    "lundi",
    "mardi",
    "mercredi",
    "jeudi",
    "vendredi",
    "samedi",
    "dimanche",
)
_MONTHS_FR = (
    "janvier",
    "février",
    "mars",
    "avril",
    "mai",
    "juin",
    "juillet",
    "août",
    "septembre",
    "octobre",
    "novembre",
    "décembre",
)


def format_slot_label(start: datetime) -> str:
    """Human-readable label, e.g. ``dimanche 15 juin à 10:00``."""
    weekday = _WEEKDAYS_FR[start.weekday()]
    month = _MONTHS_FR[start.month - 1]
    return f"{weekday} {start.day} {month} à {start:%H:%M}"


def candidate_starts(
    day: date,
    duration_minutes: int,
    business_hours: BusinessHours,
    step_minutes: int,
) -> list[datetime]:
    """Chronological candidate starts for one day.

    Start hours run from ``open_hour`` to ``close_hour - ceil(duration / 60)``
    inclusive, so every candidate ends at or before closing time.
    """
    last_start_hour = business_hours.close_hour - ceil(duration_minutes / 60)
    if last_start_hour < business_hours.open_hour:
        return []

    midnight = datetime.combine(day, time.min)
    first_offset = business_hours.open_hour * 60
    last_offset = last_start_hour * 60
    return [
        midnight + timedelta(minutes=offset)
        for offset in range(first_offset, last_offset + 1, step_minutes)
    ]


class AlternativeSlotFinder:
    """Proposes the earliest free slots when a requested one is taken."""

    def __init__(
        self,
        availability_service: Optional[AvailabilityService] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._availability_service = availability_service or AvailabilityService(
            settings=self._settings
        )

    def _resolve_config(
        self,
        business_hours: Optional[BusinessHours],
        horizon_days: Optional[int],
        max_results: Optional[int],
    ) -> SearchConfig:
        config = SearchConfig(
            business_hours=business_hours
            or BusinessHours(
                open_hour=self._settings.business_open_hour,
                close_hour=self._settings.business_close_hour,
            ),
            horizon_days=(
                horizon_days
                if horizon_days is not None
                else self._settings.alternatives_horizon_days
            ),
            max_results=(
                max_results
                if max_results is not None
                else self._settings.alternatives_max_results
            ),
            step_minutes=self._settings.alternatives_step_minutes,
        )
        try:
            validate_search_config(config)
        except ValueError as exc:
            raise AvailabilityValidationError(str(exc)) from exc
        return config

    def find_alternatives(
        self,
        provider_id: str,
        anchor_date: date,
        duration_minutes: int,
        *,
        business_hours: Optional[BusinessHours] = None,
        horizon_days: Optional[int] = None,
        max_results: Optional[int] = None,
        exclude_booking_id: Optional[int] = None,
        not_before: Optional[datetime] = None,
    ) -> list[AlternativeSlot]:
        """Return up to ``max_results`` free slots, earliest first.

        Occupancy is fetched once per searched day and every candidate is
        judged by the same evaluation the availability check uses. An empty
        list means nothing is free within the horizon; it is not an error.
        """
        if not provider_id or not provider_id.strip():
            raise AvailabilityValidationError("provider_id must be a non-empty string")
        try:
            validate_duration(duration_minutes)
        except ValueError as exc:
            raise AvailabilityValidationError(str(exc)) from exc
        config = self._resolve_config(business_hours, horizon_days, max_results)

        alternatives: list[AlternativeSlot] = []
        for day_offset in range(config.horizon_days):
            day = anchor_date + timedelta(days=day_offset)
            starts = candidate_starts(
                day,
                duration_minutes,
                config.business_hours,
                config.step_minutes,
            )
            if not_before is not None:
                starts = [start for start in starts if start >= not_before]
            if not starts:
                continue

            day_slots = [TimeSlot(start=start, duration_minutes=duration_minutes) for start in starts]
            window_start = day_slots[0].start - self._availability_service.lookback
            window_end = day_slots[-1].end
            snapshot = self._availability_service.fetch_snapshot(
                provider_id,
                window_start,
                window_end,
                exclude_booking_id=exclude_booking_id,
            )

            for slot in day_slots:
                if self._availability_service.evaluate(slot, snapshot) is not AvailabilityResult.AVAILABLE:
                    continue
                alternatives.append(
                    AlternativeSlot(
                        date=slot.start.date(),
                        time=slot.start.time(),
                        duration_minutes=duration_minutes,
                        display_label=format_slot_label(slot.start),
                    )
                )
                if len(alternatives) >= config.max_results:
                    break
            if len(alternatives) >= config.max_results:
                break

        logger.info(
            "Alternative search completed | %s",
            format_fields(
                provider_id=provider_id,
                anchor_date=anchor_date.isoformat(),
                duration_minutes=duration_minutes,
                horizon_days=config.horizon_days,
                found=len(alternatives),
            ),
        )
        return alternatives
