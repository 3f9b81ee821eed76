"""Domain models for appointment availability, pricing and bookings."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum
from math import ceil
from typing import Optional


class AvailabilityResult(str, Enum):
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"


class BookingStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"

    @property
    def is_active(self) -> bool:
        return self is not BookingStatus.CANCELLED


class IntervalKind(str, Enum):
    BOOKING = "booking"
    BLOCKED = "blocked"


class TariffUnit(str, Enum):
    HOUR = "heure"
    HALF_DAY = "demi_journee"
    DAY = "jour"
    SESSION = "seance"
    FLAT_RATE = "forfait"


class BookingAttemptState(str, Enum):
    """Per-attempt lifecycle; the last three states are terminal."""

    DRAFTING = "drafting"
    VALIDATING = "validating"
    COMMITTED = "committed"
    CONFLICTED = "conflicted"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in {
            BookingAttemptState.COMMITTED,
            BookingAttemptState.CONFLICTED,
            BookingAttemptState.FAILED,
        }


@dataclass(frozen=True)
class TimeSlot:
    """A requested start instant plus a strictly positive duration."""

    start: datetime
    duration_minutes: int

    def __post_init__(self) -> None:
        if self.duration_minutes <= 0:
            raise ValueError("duration_minutes must be > 0")

    @property
    def end(self) -> datetime:
        return self.start + timedelta(minutes=self.duration_minutes)


@dataclass(frozen=True)
class OccupiedInterval:
    """A booking or a blocked period that makes a provider busy."""

    start: datetime
    duration_minutes: int
    kind: IntervalKind = IntervalKind.BOOKING
    status: Optional[BookingStatus] = None
    source_id: Optional[int] = None

    @property
    def end(self) -> datetime:
        return self.start + timedelta(minutes=self.duration_minutes)

    @property
    def is_occupying(self) -> bool:
        if self.kind is IntervalKind.BLOCKED:
            return True
        return self.status is None or self.status.is_active


@dataclass(frozen=True)
class BusinessHours:
    open_hour: int
    close_hour: int


@dataclass(frozen=True)
class AlternativeSlot:
    date: date
    time: time
    duration_minutes: int
    display_label: str

    @property
    def start(self) -> datetime:
        return datetime.combine(self.date, self.time)

    def to_time_slot(self) -> TimeSlot:
        return TimeSlot(start=self.start, duration_minutes=self.duration_minutes)


@dataclass(frozen=True)
class PriceQuote:
    unit_rate: Decimal
    quantity: Decimal
    deposit_percent: Decimal
    total: Decimal
    deposit: Decimal

    @property
    def balance(self) -> Decimal:
        return self.total - self.deposit


@dataclass(frozen=True)
class Listing:
    listing_id: int
    provider_id: str
    title: str
    unit_rate: Decimal
    tariff_unit: TariffUnit
    deposit_percent: Decimal
    session_hours: Optional[int] = None


@dataclass(frozen=True)
class BlockedPeriod:
    blocked_id: int
    provider_id: str
    start: datetime
    end: datetime
    reason: Optional[str] = None

    def to_interval(self) -> OccupiedInterval:
        # Whole minutes, rounded up so the interval never ends before the stored end.
        minutes = ceil((self.end - self.start).total_seconds() / 60)
        return OccupiedInterval(
            start=self.start,
            duration_minutes=minutes,
            kind=IntervalKind.BLOCKED,
            source_id=self.blocked_id,
        )


@dataclass(frozen=True)
class BookingMetadata:
    """Caller-supplied context persisted alongside a booking."""

    client_id: Optional[str] = None
    client_name: Optional[str] = None
    client_email: Optional[str] = None
    location: Optional[str] = None
    participants: Optional[int] = None
    comment: Optional[str] = None


@dataclass(frozen=True)
class BookingRecord:
    """Row handed to the booking writer; ids and references are store-assigned."""

    provider_id: str
    listing_id: Optional[int]
    slot: TimeSlot
    quote: PriceQuote
    status: BookingStatus
    tariff_unit: Optional[TariffUnit]
    metadata: BookingMetadata


@dataclass(frozen=True)
class Booking:
    booking_id: int
    reference: int
    provider_id: str
    listing_id: Optional[int]
    start: datetime
    duration_minutes: int
    status: BookingStatus
    unit_rate: Decimal
    tariff_unit: Optional[TariffUnit]
    quantity: Decimal
    deposit_percent: Decimal
    total: Decimal
    deposit: Decimal
    metadata: BookingMetadata
    created_at: datetime

    @property
    def end(self) -> datetime:
        return self.start + timedelta(minutes=self.duration_minutes)

    @property
    def slot(self) -> TimeSlot:
        return TimeSlot(start=self.start, duration_minutes=self.duration_minutes)
