"""Storage contracts the availability engine depends on."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Protocol

from backend.domain.models import Booking, BookingRecord, OccupiedInterval


@dataclass(frozen=True)
class OccupancySnapshot:
    """Bookings and blocked periods intersecting one fetch window."""

    bookings: tuple[OccupiedInterval, ...] = field(default_factory=tuple)
    blocked: tuple[OccupiedInterval, ...] = field(default_factory=tuple)

    def occupying(self) -> tuple[OccupiedInterval, ...]:
        return tuple(
            interval
            for interval in (*self.bookings, *self.blocked)
            if interval.is_occupying
        )


class OccupancyProvider(Protocol):
    def fetch_occupancy(
        self,
        provider_id: str,
        window_start: datetime,
        window_end: datetime,
        *,
        exclude_booking_id: Optional[int] = None,
    ) -> OccupancySnapshot:
        """Return every record whose interval intersects the window."""
        ...


class BookingWriter(Protocol):
    def insert_booking(self, record: BookingRecord) -> Booking:
        """Persist a booking or raise ``OverlappingBookingError``."""
        ...
