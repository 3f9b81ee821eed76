from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional

import pytest

from backend.domain.interfaces import OccupancySnapshot
from backend.domain.models import (
    AvailabilityResult,
    BookingMetadata,
    BookingRecord,
    BookingStatus,
    OccupiedInterval,
    TariffUnit,
    TimeSlot,
)
from backend.domain.pricing import compute_quote
from backend.repository.data_repository import DataRepository, RepositoryUnavailableError
from backend.services.availability_service import (
    AvailabilityService,
    AvailabilityValidationError,
    OccupancyUnavailableError,
)
from backend.utils.config import get_settings


PROVIDER = "provider-a"
DAY = datetime(2030, 6, 15)


def _build_test_settings(tmp_path, filename: str):
    base = get_settings()
    return replace(base, database_path=tmp_path / filename, seed_demo_data=False)


def _insert_booking(
    repository: DataRepository,
    start: datetime,
    duration_minutes: int,
    status: BookingStatus = BookingStatus.PENDING,
    provider_id: str = PROVIDER,
):
    return repository.insert_booking(
        BookingRecord(
            provider_id=provider_id,
            listing_id=None,
            slot=TimeSlot(start=start, duration_minutes=duration_minutes),
            quote=compute_quote(Decimal("100"), Decimal("1"), Decimal("0")),
            status=status,
            tariff_unit=TariffUnit.HOUR,
            metadata=BookingMetadata(),
        )
    )


def _build_service(tmp_path, filename: str) -> tuple[AvailabilityService, DataRepository]:
    settings = _build_test_settings(tmp_path, filename)
    repository = DataRepository(settings)
    repository.initialize_database()
    return AvailabilityService(occupancy_provider=repository, settings=settings), repository


def test_overlapping_slot_is_unavailable_and_adjacent_slot_is_free(tmp_path):
    service, repository = _build_service(tmp_path, "availability_overlap.db")
    _insert_booking(repository, DAY.replace(hour=10), 120)

    overlapping = TimeSlot(start=DAY.replace(hour=11), duration_minutes=60)
    adjacent = TimeSlot(start=DAY.replace(hour=12), duration_minutes=60)

    assert service.check_availability(PROVIDER, overlapping) is AvailabilityResult.UNAVAILABLE
    assert service.check_availability(PROVIDER, adjacent) is AvailabilityResult.AVAILABLE


def test_slot_ending_when_booking_starts_is_free(tmp_path):
    service, repository = _build_service(tmp_path, "availability_touching.db")
    _insert_booking(repository, DAY.replace(hour=10), 120)

    before = TimeSlot(start=DAY.replace(hour=9), duration_minutes=60)
    assert service.check_availability(PROVIDER, before) is AvailabilityResult.AVAILABLE


def test_long_booking_that_started_days_earlier_is_detected(tmp_path):
    service, repository = _build_service(tmp_path, "availability_long.db")
    _insert_booking(repository, DAY - timedelta(days=1, hours=4), 24 * 60)

    # started 2030-06-13 20:00, ends 2030-06-14 20:00
    slot = TimeSlot(start=DAY - timedelta(hours=5), duration_minutes=60)
    assert service.check_availability(PROVIDER, slot) is AvailabilityResult.UNAVAILABLE


def test_cancelled_bookings_do_not_occupy(tmp_path):
    service, repository = _build_service(tmp_path, "availability_cancelled.db")
    booking = _insert_booking(repository, DAY.replace(hour=10), 120)
    repository.update_booking_status(booking.booking_id, BookingStatus.CANCELLED)

    slot = TimeSlot(start=DAY.replace(hour=10), duration_minutes=120)
    assert service.check_availability(PROVIDER, slot) is AvailabilityResult.AVAILABLE


def test_paid_bookings_occupy(tmp_path):
    service, repository = _build_service(tmp_path, "availability_paid.db")
    _insert_booking(repository, DAY.replace(hour=10), 60, status=BookingStatus.PAID)

    slot = TimeSlot(start=DAY.replace(hour=10, minute=30), duration_minutes=60)
    assert service.check_availability(PROVIDER, slot) is AvailabilityResult.UNAVAILABLE


def test_blocked_period_makes_slot_unavailable(tmp_path):
    service, repository = _build_service(tmp_path, "availability_blocked.db")
    repository.create_blocked_period(PROVIDER, DAY.replace(hour=12), reason="Pause")

    inside = TimeSlot(start=DAY.replace(hour=11, minute=30), duration_minutes=60)
    after = TimeSlot(start=DAY.replace(hour=13), duration_minutes=60)
    assert service.check_availability(PROVIDER, inside) is AvailabilityResult.UNAVAILABLE
    assert service.check_availability(PROVIDER, after) is AvailabilityResult.AVAILABLE


def test_other_provider_bookings_are_ignored(tmp_path):
    service, repository = _build_service(tmp_path, "availability_isolated.db")
    _insert_booking(repository, DAY.replace(hour=10), 120, provider_id="provider-b")

    slot = TimeSlot(start=DAY.replace(hour=10), duration_minutes=120)
    assert service.check_availability(PROVIDER, slot) is AvailabilityResult.AVAILABLE


def test_excluded_booking_does_not_conflict_with_itself(tmp_path):
    service, repository = _build_service(tmp_path, "availability_exclude.db")
    booking = _insert_booking(repository, DAY.replace(hour=10), 120)

    shifted = TimeSlot(start=DAY.replace(hour=11), duration_minutes=120)
    assert service.check_availability(PROVIDER, shifted) is AvailabilityResult.UNAVAILABLE
    assert (
        service.check_availability(PROVIDER, shifted, exclude_booking_id=booking.booking_id)
        is AvailabilityResult.AVAILABLE
    )


def test_shrinking_a_free_slot_keeps_it_free(tmp_path):
    service, repository = _build_service(tmp_path, "availability_shrinking.db")
    _insert_booking(repository, DAY.replace(hour=14), 60)

    start = DAY.replace(hour=10)
    assert service.check_availability(PROVIDER, TimeSlot(start, 240)) is AvailabilityResult.AVAILABLE
    for duration in (180, 120, 60, 15):
        assert (
            service.check_availability(PROVIDER, TimeSlot(start, duration))
            is AvailabilityResult.AVAILABLE
        )


def test_repeated_checks_are_idempotent(tmp_path):
    service, repository = _build_service(tmp_path, "availability_repeat.db")
    _insert_booking(repository, DAY.replace(hour=10), 120)

    slot = TimeSlot(start=DAY.replace(hour=11), duration_minutes=30)
    results = {service.check_availability(PROVIDER, slot) for _ in range(3)}
    assert results == {AvailabilityResult.UNAVAILABLE}
    assert repository.count_bookings(PROVIDER) == 1


@pytest.mark.parametrize("provider_id", ["", "   "])
def test_blank_provider_is_rejected(tmp_path, provider_id: str):
    service, _ = _build_service(tmp_path, "availability_blank.db")
    with pytest.raises(AvailabilityValidationError):
        service.check_availability(provider_id, TimeSlot(DAY, 60))


def test_duration_over_one_day_is_rejected(tmp_path):
    service, _ = _build_service(tmp_path, "availability_too_long.db")
    with pytest.raises(AvailabilityValidationError):
        service.check_availability(PROVIDER, TimeSlot(DAY, 24 * 60 + 1))


def test_store_failure_is_reported_not_treated_as_available(monkeypatch, tmp_path):
    service, repository = _build_service(tmp_path, "availability_outage.db")

    def _unreachable(*args, **kwargs):
        raise RepositoryUnavailableError("database is locked")

    monkeypatch.setattr(repository, "fetch_occupancy", _unreachable)
    with pytest.raises(OccupancyUnavailableError):
        service.check_availability(PROVIDER, TimeSlot(DAY.replace(hour=10), 60))


class _StartFilteringProvider:
    """Provider that only returns intervals whose start falls inside the window."""

    def __init__(self, intervals: list[OccupiedInterval]) -> None:
        self._intervals = intervals
        self.windows: list[tuple[datetime, datetime]] = []

    def fetch_occupancy(
        self,
        provider_id: str,
        window_start: datetime,
        window_end: datetime,
        *,
        exclude_booking_id: Optional[int] = None,
    ) -> OccupancySnapshot:
        self.windows.append((window_start, window_end))
        return OccupancySnapshot(
            bookings=tuple(
                interval
                for interval in self._intervals
                if window_start <= interval.start < window_end
            )
        )


def test_lookback_catches_bookings_started_before_the_slot(tmp_path):
    settings = _build_test_settings(tmp_path, "availability_lookback.db")
    provider = _StartFilteringProvider(
        [OccupiedInterval(start=DAY.replace(hour=9), duration_minutes=180, source_id=7)]
    )
    service = AvailabilityService(occupancy_provider=provider, settings=settings)

    slot = TimeSlot(start=DAY.replace(hour=11), duration_minutes=30)
    assert service.check_availability(PROVIDER, slot) is AvailabilityResult.UNAVAILABLE
    window_start, window_end = provider.windows[-1]
    assert window_start == slot.start - timedelta(minutes=settings.occupancy_lookback_minutes)
    assert window_end == slot.end


def test_day_occupancy_lists_bookings_and_blocks(tmp_path):
    service, repository = _build_service(tmp_path, "availability_day.db")
    _insert_booking(repository, DAY.replace(hour=10), 120)
    _insert_booking(repository, DAY.replace(hour=8) + timedelta(days=1), 60)
    repository.create_blocked_period(PROVIDER, DAY.replace(hour=12), DAY.replace(hour=13))

    snapshot = service.day_occupancy(PROVIDER, date(2030, 6, 15))

    assert [interval.start.hour for interval in snapshot.bookings] == [10]
    assert [interval.start.hour for interval in snapshot.blocked] == [12]


def test_verdict_never_returns_to_available_as_occupancy_grows(tmp_path):
    service, repository = _build_service(tmp_path, "availability_growing.db")
    slot = TimeSlot(start=DAY.replace(hour=12), duration_minutes=60)

    # (insert step, whether it overlaps 12:00-13:00)
    steps = [
        (lambda: _insert_booking(repository, DAY.replace(hour=8), 60), False),
        (lambda: repository.create_blocked_period(
            PROVIDER, DAY.replace(hour=14), DAY.replace(hour=15)), False),
        (lambda: _insert_booking(repository, DAY.replace(hour=11), 60), False),
        (lambda: repository.create_blocked_period(
            PROVIDER, DAY.replace(hour=13), DAY.replace(hour=14)), False),
        (lambda: _insert_booking(
            repository, DAY.replace(hour=12), 60, status=BookingStatus.CANCELLED), False),
        (lambda: _insert_booking(repository, DAY.replace(hour=12, minute=30), 30), True),
        (lambda: _insert_booking(repository, DAY.replace(hour=16), 60), False),
        (lambda: repository.create_blocked_period(
            PROVIDER, DAY.replace(hour=11, minute=45), DAY.replace(hour=12, minute=15)), True),
        (lambda: _insert_booking(repository, DAY.replace(hour=17), 60), False),
    ]

    verdict = service.check_availability(PROVIDER, slot)
    assert verdict is AvailabilityResult.AVAILABLE
    seen_overlap = False
    for insert, overlapping in steps:
        insert()
        seen_overlap = seen_overlap or overlapping
        previous, verdict = verdict, service.check_availability(PROVIDER, slot)
        if previous is AvailabilityResult.UNAVAILABLE:
            assert verdict is AvailabilityResult.UNAVAILABLE
        expected = AvailabilityResult.UNAVAILABLE if seen_overlap else AvailabilityResult.AVAILABLE
        assert verdict is expected


def test_blocked_period_with_sub_minute_end_still_covers_its_last_minute(tmp_path):
    service, repository = _build_service(tmp_path, "availability_blocked_seconds.db")
    repository.create_blocked_period(
        PROVIDER,
        DAY.replace(hour=10),
        DAY.replace(hour=10, minute=59, second=30),
    )

    last_minute = TimeSlot(start=DAY.replace(hour=10, minute=59), duration_minutes=30)
    after = TimeSlot(start=DAY.replace(hour=11), duration_minutes=30)
    assert service.check_availability(PROVIDER, last_minute) is AvailabilityResult.UNAVAILABLE
    assert service.check_availability(PROVIDER, after) is AvailabilityResult.AVAILABLE
