"""Repository layer responsible for all database access."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Iterator, List, Optional

from backend.domain.interfaces import OccupancySnapshot
from backend.domain.models import (
    BlockedPeriod,
    Booking,
    BookingMetadata,
    BookingRecord,
    BookingStatus,
    IntervalKind,
    Listing,
    OccupiedInterval,
    PriceQuote,
    TariffUnit,
    TimeSlot,
)
from backend.domain.pricing import compute_quote, quantity_for_duration
from backend.utils.config import Settings, get_settings
from backend.utils.logger import format_fields, get_logger


logger = get_logger(__name__)

_TIMESTAMP_SPEC = "seconds"
_REFERENCE_INCREMENT_WIDTH = 10_000


class RepositoryError(Exception):
    """Base exception for persistence failures."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the store cannot be reached or a lock wait timed out."""


class OverlappingBookingError(RepositoryError):
    """Raised when the store rejects a booking that overlaps occupied time."""


def _to_db(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone().replace(tzinfo=None)
    return value.replace(microsecond=0).isoformat(timespec=_TIMESTAMP_SPEC)


def _from_db(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _optional_decimal(value: Optional[str]) -> Decimal:
    return Decimal(value) if value is not None else Decimal("0")


class DataRepository:
    """Encapsulates SQLite access so business logic stays storage-agnostic.

    Every connection runs in autocommit mode; writes that must be atomic open
    an explicit ``BEGIN IMMEDIATE`` transaction, which takes the database write
    lock up front and therefore serialises concurrent writers across threads
    and processes. Overlap between active bookings and blocked periods is
    enforced by triggers so that no writer can bypass it.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        try:
            connection = sqlite3.connect(
                self._db_path,
                timeout=self._settings.database_timeout_seconds,
                isolation_level=None,
            )
        except sqlite3.Error as exc:
            raise RepositoryUnavailableError(f"Booking store unreachable: {exc}") from exc
        connection.row_factory = sqlite3.Row
        try:
            connection.execute("PRAGMA foreign_keys = ON;")
            yield connection
        except sqlite3.OperationalError as exc:
            raise RepositoryUnavailableError(f"Booking store unavailable: {exc}") from exc
        finally:
            connection.close()

    @contextmanager
    def _transaction(self, connection: sqlite3.Connection) -> Iterator[sqlite3.Cursor]:
        cursor = connection.cursor()
        cursor.execute("BEGIN IMMEDIATE;")
        try:
            yield cursor
        except BaseException:
            if connection.in_transaction:
                connection.execute("ROLLBACK;")
            raise
        connection.execute("COMMIT;")

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            with self._connection() as conn:
                cursor = conn.cursor()
                cursor.execute("PRAGMA journal_mode = WAL;")

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Listings (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        provider_id TEXT NOT NULL,
                        title TEXT NOT NULL,
                        unit_rate TEXT NOT NULL,
                        tariff_unit TEXT NOT NULL,
                        deposit_percent TEXT NOT NULL DEFAULT '0',
                        session_hours INTEGER,
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Bookings (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        reference INTEGER NOT NULL UNIQUE,
                        provider_id TEXT NOT NULL,
                        listing_id INTEGER,
                        start_at TEXT NOT NULL,
                        duration_minutes INTEGER,
                        end_at TEXT NOT NULL,
                        status TEXT NOT NULL DEFAULT 'pending',
                        unit_rate TEXT NOT NULL,
                        tariff_unit TEXT,
                        quantity TEXT NOT NULL,
                        deposit_percent TEXT NOT NULL DEFAULT '0',
                        total TEXT NOT NULL,
                        deposit TEXT NOT NULL,
                        client_id TEXT,
                        client_name TEXT,
                        client_email TEXT,
                        location TEXT,
                        participants INTEGER,
                        comment TEXT,
                        created_at TEXT NOT NULL,
                        CHECK (end_at > start_at),
                        FOREIGN KEY (listing_id) REFERENCES Listings(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS BlockedPeriods (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        provider_id TEXT NOT NULL,
                        start_at TEXT NOT NULL,
                        end_at TEXT NOT NULL,
                        reason TEXT,
                        CHECK (end_at > start_at)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_bookings_provider_window
                    ON Bookings(provider_id, status, start_at, end_at);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_blocked_provider_window
                    ON BlockedPeriods(provider_id, start_at, end_at);
                    """
                )

                cursor.execute(
                    """
                    CREATE TRIGGER IF NOT EXISTS trg_bookings_no_overlap_insert
                    BEFORE INSERT ON Bookings
                    WHEN NEW.status != 'cancelled'
                    BEGIN
                        SELECT RAISE(ABORT, 'booking_overlap')
                        WHERE EXISTS (
                            SELECT 1 FROM Bookings AS b
                            WHERE b.provider_id = NEW.provider_id
                              AND b.status != 'cancelled'
                              AND b.start_at < NEW.end_at
                              AND b.end_at > NEW.start_at
                        );
                        SELECT RAISE(ABORT, 'blocked_overlap')
                        WHERE EXISTS (
                            SELECT 1 FROM BlockedPeriods AS p
                            WHERE p.provider_id = NEW.provider_id
                              AND p.start_at < NEW.end_at
                              AND p.end_at > NEW.start_at
                        );
                    END;
                    """
                )
                cursor.execute(
                    """
                    CREATE TRIGGER IF NOT EXISTS trg_bookings_no_overlap_update
                    BEFORE UPDATE OF start_at, end_at, status ON Bookings
                    WHEN NEW.status != 'cancelled'
                    BEGIN
                        SELECT RAISE(ABORT, 'booking_overlap')
                        WHERE EXISTS (
                            SELECT 1 FROM Bookings AS b
                            WHERE b.provider_id = NEW.provider_id
                              AND b.id != NEW.id
                              AND b.status != 'cancelled'
                              AND b.start_at < NEW.end_at
                              AND b.end_at > NEW.start_at
                        );
                        SELECT RAISE(ABORT, 'blocked_overlap')
                        WHERE EXISTS (
                            SELECT 1 FROM BlockedPeriods AS p
                            WHERE p.provider_id = NEW.provider_id
                              AND p.start_at < NEW.end_at
                              AND p.end_at > NEW.start_at
                        );
                    END;
                    """
                )
            logger.info("Database initialized at %s", self._db_path)
        except (sqlite3.Error, RepositoryUnavailableError) as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    def seed_demo_data_if_empty(self) -> int:
        """Seed one demo provider with listings and bookings when empty.

        Returns the number of bookings inserted (0 when data already exists).
        """
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) AS count FROM Listings;")
            if int(cursor.fetchone()["count"]) > 0:
                logger.info("Demo data already present; skipping seed")
                return 0

        provider_id = "provider-demo"
        hourly = self.create_listing(
            provider_id=provider_id,
            title="Reportage photo",
            unit_rate=Decimal("100"),
            tariff_unit=TariffUnit.HOUR,
            deposit_percent=Decimal("30"),
        )
        self.create_listing(
            provider_id=provider_id,
            title="Séance portrait",
            unit_rate=Decimal("250"),
            tariff_unit=TariffUnit.SESSION,
            deposit_percent=Decimal("0"),
            session_hours=2,
        )

        tomorrow = (datetime.now() + timedelta(days=1)).replace(
            hour=0, minute=0, second=0, microsecond=0
        )
        seeded = 0
        for start_hour, duration in ((10, 120), (15, 60)):
            slot = TimeSlot(
                start=tomorrow.replace(hour=start_hour),
                duration_minutes=duration,
            )
            quote = compute_quote(
                hourly.unit_rate,
                quantity_for_duration(hourly.tariff_unit, duration),
                hourly.deposit_percent,
            )
            self.insert_booking(
                BookingRecord(
                    provider_id=provider_id,
                    listing_id=hourly.listing_id,
                    slot=slot,
                    quote=quote,
                    status=BookingStatus.PENDING,
                    tariff_unit=hourly.tariff_unit,
                    metadata=BookingMetadata(client_name="Client démo"),
                )
            )
            seeded += 1
        self.create_blocked_period(
            provider_id=provider_id,
            start=tomorrow.replace(hour=12),
            end=tomorrow.replace(hour=13),
            reason="Pause déjeuner",
        )
        logger.info("Demo seed completed with %s bookings", seeded)
        return seeded

    def fetch_occupancy(
        self,
        provider_id: str,
        window_start: datetime,
        window_end: datetime,
        *,
        exclude_booking_id: Optional[int] = None,
    ) -> OccupancySnapshot:
        """Return active bookings and blocked periods intersecting the window.

        Intersection uses the stored end instant, so a record starting before
        ``window_start`` but ending inside the window is always returned.
        """
        start_value = _to_db(window_start)
        end_value = _to_db(window_end)
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT id, start_at, duration_minutes, end_at, status
                FROM Bookings
                WHERE provider_id = ?
                  AND status != 'cancelled'
                  AND start_at < ?
                  AND end_at > ?
                  AND (? IS NULL OR id != ?)
                ORDER BY start_at ASC, id ASC;
                """,
                (provider_id, end_value, start_value, exclude_booking_id, exclude_booking_id),
            )
            bookings = tuple(
                OccupiedInterval(
                    start=_from_db(row["start_at"]),
                    duration_minutes=self._stored_duration(row),
                    kind=IntervalKind.BOOKING,
                    status=BookingStatus(row["status"]),
                    source_id=int(row["id"]),
                )
                for row in cursor.fetchall()
            )

            cursor.execute(
                """
                SELECT id, provider_id, start_at, end_at, reason
                FROM BlockedPeriods
                WHERE provider_id = ?
                  AND start_at < ?
                  AND end_at > ?
                ORDER BY start_at ASC, id ASC;
                """,
                (provider_id, end_value, start_value),
            )
            blocked = tuple(
                self._row_to_blocked(row).to_interval() for row in cursor.fetchall()
            )
        return OccupancySnapshot(bookings=bookings, blocked=blocked)

    def _stored_duration(self, row: sqlite3.Row) -> int:
        if row["duration_minutes"] is not None:
            return int(row["duration_minutes"])
        return self._settings.default_booking_duration_minutes

    def insert_booking(self, record: BookingRecord) -> Booking:
        """Insert a booking atomically, allocating its daily reference number."""
        created_at = datetime.now().replace(microsecond=0)
        with self._connection() as conn:
            try:
                with self._transaction(conn) as cursor:
                    reference = self._next_reference(cursor, created_at)
                    cursor.execute(
                        """
                        INSERT INTO Bookings (
                            reference, provider_id, listing_id, start_at,
                            duration_minutes, end_at, status, unit_rate,
                            tariff_unit, quantity, deposit_percent, total, deposit, client_id,
                            client_name, client_email, location, participants,
                            comment, created_at
                        )
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                        """,
                        (
                            reference,
                            record.provider_id,
                            record.listing_id,
                            _to_db(record.slot.start),
                            record.slot.duration_minutes,
                            _to_db(record.slot.end),
                            record.status.value,
                            str(record.quote.unit_rate),
                            record.tariff_unit.value if record.tariff_unit else None,
                            str(record.quote.quantity),
                            str(record.quote.deposit_percent),
                            str(record.quote.total),
                            str(record.quote.deposit),
                            record.metadata.client_id,
                            record.metadata.client_name,
                            record.metadata.client_email,
                            record.metadata.location,
                            record.metadata.participants,
                            record.metadata.comment,
                            _to_db(created_at),
                        ),
                    )
                    booking_id = int(cursor.lastrowid)
            except sqlite3.IntegrityError as exc:
                raise self._translate_integrity_error(exc, record.provider_id) from exc
        booking = self.get_booking(booking_id)
        if booking is None:
            raise RepositoryError(f"booking {booking_id} vanished after insert")
        return booking

    def _next_reference(self, cursor: sqlite3.Cursor, created_at: datetime) -> int:
        prefix = int(f"{self._settings.booking_reference_prefix}{created_at:%y%m%d}")
        base = prefix * _REFERENCE_INCREMENT_WIDTH
        cursor.execute(
            """
            SELECT MAX(reference) AS last_reference
            FROM Bookings
            WHERE reference > ? AND reference < ?;
            """,
            (base, base + _REFERENCE_INCREMENT_WIDTH),
        )
        row = cursor.fetchone()
        if row is None or row["last_reference"] is None:
            return base + 1
        return int(row["last_reference"]) + 1

    @staticmethod
    def _translate_integrity_error(
        exc: sqlite3.IntegrityError,
        provider_id: str,
    ) -> RepositoryError:
        message = str(exc)
        if "booking_overlap" in message or "blocked_overlap" in message:
            logger.info(
                "Store rejected overlapping booking | %s",
                format_fields(provider_id=provider_id, reason=message),
            )
            return OverlappingBookingError(
                f"provider {provider_id} already has an occupied interval in this range"
            )
        return RepositoryError(f"Booking write rejected: {message}")

    def reschedule_booking(
        self,
        booking_id: int,
        slot: TimeSlot,
        quote: PriceQuote,
    ) -> Optional[Booking]:
        """Move a booking and reprice it; returns None when it does not exist.

        The update trigger ignores the row being moved, so shifting a booking
        within its own former interval is allowed.
        """
        with self._connection() as conn:
            try:
                with self._transaction(conn) as cursor:
                    cursor.execute(
                        """
                        UPDATE Bookings
                        SET start_at = ?, duration_minutes = ?, end_at = ?,
                            quantity = ?, total = ?, deposit = ?
                        WHERE id = ?;
                        """,
                        (
                            _to_db(slot.start),
                            slot.duration_minutes,
                            _to_db(slot.end),
                            str(quote.quantity),
                            str(quote.total),
                            str(quote.deposit),
                            booking_id,
                        ),
                    )
                    updated = cursor.rowcount
            except sqlite3.IntegrityError as exc:
                raise self._translate_integrity_error(exc, f"booking:{booking_id}") from exc
        if not updated:
            return None
        return self.get_booking(booking_id)

    def update_booking_status(self, booking_id: int, status: BookingStatus) -> Optional[Booking]:
        """Set a booking status; returns None when the booking does not exist."""
        with self._connection() as conn:
            try:
                with self._transaction(conn) as cursor:
                    cursor.execute(
                        "UPDATE Bookings SET status = ? WHERE id = ?;",
                        (status.value, booking_id),
                    )
                    updated = cursor.rowcount
            except sqlite3.IntegrityError as exc:
                raise self._translate_integrity_error(exc, f"booking:{booking_id}") from exc
        if not updated:
            return None
        return self.get_booking(booking_id)

    def get_booking(self, booking_id: int) -> Optional[Booking]:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM Bookings WHERE id = ?;", (booking_id,))
            row = cursor.fetchone()
            if row is None:
                return None
            return self._row_to_booking(row)

    def count_bookings(self, provider_id: Optional[str] = None) -> int:
        """Return persisted booking count for diagnostics and tests."""
        with self._connection() as conn:
            cursor = conn.cursor()
            if provider_id is None:
                cursor.execute("SELECT COUNT(*) AS count FROM Bookings;")
            else:
                cursor.execute(
                    "SELECT COUNT(*) AS count FROM Bookings WHERE provider_id = ?;",
                    (provider_id,),
                )
            return int(cursor.fetchone()["count"])

    def _row_to_booking(self, row: sqlite3.Row) -> Booking:
        tariff_unit = row["tariff_unit"]
        return Booking(
            booking_id=int(row["id"]),
            reference=int(row["reference"]),
            provider_id=str(row["provider_id"]),
            listing_id=int(row["listing_id"]) if row["listing_id"] is not None else None,
            start=_from_db(row["start_at"]),
            duration_minutes=self._stored_duration(row),
            status=BookingStatus(row["status"]),
            unit_rate=_optional_decimal(row["unit_rate"]),
            tariff_unit=TariffUnit(tariff_unit) if tariff_unit else None,
            quantity=_optional_decimal(row["quantity"]),
            deposit_percent=_optional_decimal(row["deposit_percent"]),
            total=_optional_decimal(row["total"]),
            deposit=_optional_decimal(row["deposit"]),
            metadata=BookingMetadata(
                client_id=row["client_id"],
                client_name=row["client_name"],
                client_email=row["client_email"],
                location=row["location"],
                participants=row["participants"],
                comment=row["comment"],
            ),
            created_at=_from_db(row["created_at"]),
        )

    def create_blocked_period(
        self,
        provider_id: str,
        start: datetime,
        end: Optional[datetime] = None,
        reason: Optional[str] = None,
    ) -> BlockedPeriod:
        """Insert a blocked period; a missing end uses the default block length."""
        resolved_end = end or start + timedelta(
            minutes=self._settings.default_blocked_duration_minutes
        )
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO BlockedPeriods (provider_id, start_at, end_at, reason)
                VALUES (?, ?, ?, ?);
                """,
                (provider_id, _to_db(start), _to_db(resolved_end), reason),
            )
            blocked_id = int(cursor.lastrowid)
        return BlockedPeriod(
            blocked_id=blocked_id,
            provider_id=provider_id,
            start=start.replace(microsecond=0),
            end=resolved_end.replace(microsecond=0),
            reason=reason,
        )

    def list_blocked_periods(
        self,
        provider_id: str,
        window_start: datetime,
        window_end: datetime,
    ) -> List[BlockedPeriod]:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT id, provider_id, start_at, end_at, reason
                FROM BlockedPeriods
                WHERE provider_id = ? AND start_at < ? AND end_at > ?
                ORDER BY start_at ASC, id ASC;
                """,
                (provider_id, _to_db(window_end), _to_db(window_start)),
            )
            return [self._row_to_blocked(row) for row in cursor.fetchall()]

    @staticmethod
    def _row_to_blocked(row: sqlite3.Row) -> BlockedPeriod:
        return BlockedPeriod(
            blocked_id=int(row["id"]),
            provider_id=str(row["provider_id"]),
            start=_from_db(row["start_at"]),
            end=_from_db(row["end_at"]),
            reason=row["reason"],
        )

    def create_listing(
        self,
        provider_id: str,
        title: str,
        unit_rate: Decimal,
        tariff_unit: TariffUnit,
        deposit_percent: Decimal = Decimal("0"),
        session_hours: Optional[int] = None,
    ) -> Listing:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO Listings (
                    provider_id, title, unit_rate, tariff_unit,
                    deposit_percent, session_hours
                )
                VALUES (?, ?, ?, ?, ?, ?);
                """,
                (
                    provider_id,
                    title,
                    str(unit_rate),
                    tariff_unit.value,
                    str(deposit_percent),
                    session_hours,
                ),
            )
            listing_id = int(cursor.lastrowid)
        return Listing(
            listing_id=listing_id,
            provider_id=provider_id,
            title=title,
            unit_rate=unit_rate,
            tariff_unit=tariff_unit,
            deposit_percent=deposit_percent,
            session_hours=session_hours,
        )

    def get_listing(self, listing_id: int) -> Optional[Listing]:
        """Fetch listing pricing for quotes and booking commits."""
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT id, provider_id, title, unit_rate, tariff_unit,
                       deposit_percent, session_hours
                FROM Listings
                WHERE id = ?;
                """,
                (listing_id,),
            )
            row = cursor.fetchone()
            if row is None:
                return None
            return Listing(
                listing_id=int(row["id"]),
                provider_id=str(row["provider_id"]),
                title=str(row["title"]),
                unit_rate=Decimal(row["unit_rate"]),
                tariff_unit=TariffUnit(row["tariff_unit"]),
                deposit_percent=Decimal(row["deposit_percent"]),
                session_hours=row["session_hours"],
            )
