"""Repository layer responsible for all booking store access."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional, Protocol

from booking_engine.domain.constraints import evaluate_availability
from booking_engine.domain.models import (
    Booking,
    BookingChanges,
    BookingStatus,
    CapacityPolicy,
    Facility,
    NewBooking,
    ReservationOutcome,
    TimeWindow,
    as_utc,
)
from booking_engine.utils.config import Settings, get_settings
from booking_engine.utils.logger import get_logger


logger = get_logger(__name__)

_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S.%f"


class BookingStoreError(Exception):
    """Base failure raised by the booking store."""


class StoreUnavailableError(BookingStoreError):
    """Raised when the database cannot be reached or a statement fails."""


class ConcurrentBookingConflictError(BookingStoreError):
    """Raised when the write lock could not be taken within the busy timeout."""


class BookingStore(Protocol):
    """Store boundary the availability checker and the scheduler depend on.

    `find_overlapping` is advisory. The two `*_if_available` writes must count
    and commit under one lock so capacity is never exceeded.
    """

    def find_overlapping(self, facility_id: int, window: TimeWindow) -> List[Booking]:
        ...

    def insert_if_available(
        self,
        new_booking: NewBooking,
        capacity_policy: CapacityPolicy,
    ) -> ReservationOutcome:
        ...

    def update_window_if_available(
        self,
        booking_id: int,
        window: TimeWindow,
        capacity_policy: CapacityPolicy,
        changes: Optional[BookingChanges] = None,
    ) -> Optional[ReservationOutcome]:
        ...

    def get_booking(self, booking_id: int) -> Optional[Booking]:
        ...

    def list_bookings(
        self,
        facility_id: int,
        window: Optional[TimeWindow] = None,
        include_cancelled: bool = False,
    ) -> List[Booking]:
        ...

    def list_series_bookings(self, series_id: str) -> List[Booking]:
        ...

    def cancel_booking(self, booking_id: int) -> Optional[Booking]:
        ...

    def cancel_series(self, series_id: str) -> int:
        ...


def _to_db_timestamp(value: datetime) -> str:
    # Fixed-width text keeps lexical order equal to chronological order.
    return as_utc(value).strftime(_TIMESTAMP_FORMAT)


def _from_db_timestamp(value: str) -> datetime:
    return datetime.strptime(value, _TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def _is_lock_error(exc: sqlite3.OperationalError) -> bool:
    message = str(exc).lower()
    return "locked" in message or "busy" in message


def _row_to_booking(row: sqlite3.Row) -> Booking:
    return Booking(
        booking_id=int(row["id"]),
        facility_id=int(row["facility_id"]),
        window=TimeWindow(
            start=_from_db_timestamp(str(row["start_time"])),
            end=_from_db_timestamp(str(row["end_time"])),
        ),
        status=BookingStatus(str(row["status"])),
        title=str(row["title"]),
        booking_type=str(row["booking_type"]),
        notes=row["notes"],
        series_id=row["series_id"],
    )


def _row_to_facility(row: sqlite3.Row) -> Facility:
    return Facility(
        facility_id=int(row["id"]),
        club_id=int(row["club_id"]),
        name=str(row["name"]),
        facility_type=str(row["facility_type"]),
        capacity_policy=CapacityPolicy(max_concurrent=int(row["max_concurrent_bookings"])),
    )


_BOOKING_COLUMNS = """
    id, facility_id, title, booking_type, notes,
    start_time, end_time, status, series_id
"""


class BookingRepository:
    """Encapsulates SQLite access so scheduling logic stays storage-agnostic.

    Every mutation that depends on occupancy runs inside `BEGIN IMMEDIATE`,
    which takes the database write lock before the overlap count is read.
    Two writers therefore never observe the same free slot.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(
            self._db_path,
            timeout=self._settings.store_busy_timeout_seconds,
            isolation_level=None,
        )
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    @contextmanager
    def _reading(self) -> Iterator[sqlite3.Connection]:
        connection: Optional[sqlite3.Connection] = None
        try:
            connection = self._connect()
            yield connection
        except sqlite3.Error as exc:
            logger.exception("Booking store read failed")
            raise StoreUnavailableError(f"Booking store read failed: {exc}") from exc
        finally:
            if connection is not None:
                connection.close()

    @contextmanager
    def _write_transaction(self) -> Iterator[sqlite3.Connection]:
        connection: Optional[sqlite3.Connection] = None
        try:
            connection = self._connect()
            connection.execute("BEGIN IMMEDIATE;")
            try:
                yield connection
                connection.execute("COMMIT;")
            except BaseException:
                if connection.in_transaction:
                    connection.execute("ROLLBACK;")
                raise
        except sqlite3.OperationalError as exc:
            if _is_lock_error(exc):
                raise ConcurrentBookingConflictError(
                    "Booking store is busy; the write lock could not be acquired"
                ) from exc
            logger.exception("Booking store write failed")
            raise StoreUnavailableError(f"Booking store write failed: {exc}") from exc
        except sqlite3.Error as exc:
            logger.exception("Booking store write failed")
            raise StoreUnavailableError(f"Booking store write failed: {exc}") from exc
        finally:
            if connection is not None:
                connection.close()

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            connection = self._connect()
            try:
                connection.execute("PRAGMA journal_mode = WAL;")
                connection.execute(
                    """
                    CREATE TABLE IF NOT EXISTS facilities (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        club_id INTEGER NOT NULL,
                        name TEXT NOT NULL,
                        facility_type TEXT NOT NULL,
                        max_concurrent_bookings INTEGER NOT NULL DEFAULT 1
                            CHECK (max_concurrent_bookings > 0),
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    );
                    """
                )
                connection.execute(
                    """
                    CREATE TABLE IF NOT EXISTS bookings (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        facility_id INTEGER NOT NULL,
                        title TEXT NOT NULL,
                        booking_type TEXT NOT NULL DEFAULT 'booking',
                        notes TEXT,
                        start_time TEXT NOT NULL,
                        end_time TEXT NOT NULL,
                        status TEXT NOT NULL DEFAULT 'confirmed'
                            CHECK (status IN ('confirmed', 'pending', 'cancelled')),
                        series_id TEXT,
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                        CHECK (start_time < end_time),
                        FOREIGN KEY (facility_id) REFERENCES facilities(id)
                    );
                    """
                )
                connection.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_bookings_facility_window
                    ON bookings(facility_id, start_time, end_time);
                    """
                )
                connection.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_bookings_series
                    ON bookings(series_id);
                    """
                )
                connection.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_facilities_club
                    ON facilities(club_id);
                    """
                )
            finally:
                connection.close()
            logger.info("Booking store initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"Database initialization failed: {exc}") from exc

    def seed_demo_facilities_if_empty(self) -> int:
        """Insert a small demo club layout when no facility exists yet."""
        demo_facilities = [
            (1, "Main Field", "field", 1),
            (1, "Training Hall", "hall", 2),
            (1, "Tennis Courts", "court", 3),
        ]
        with self._write_transaction() as conn:
            row = conn.execute("SELECT COUNT(*) AS count FROM facilities;").fetchone()
            if int(row["count"]) > 0:
                logger.info("Facilities already present; skipping demo seed")
                return 0
            conn.executemany(
                """
                INSERT INTO facilities (club_id, name, facility_type, max_concurrent_bookings)
                VALUES (?, ?, ?, ?);
                """,
                demo_facilities,
            )
        logger.info("Seeded %s demo facilities", len(demo_facilities))
        return len(demo_facilities)

    def create_facility(
        self,
        club_id: int,
        name: str,
        facility_type: str,
        capacity_policy: CapacityPolicy,
    ) -> Facility:
        with self._write_transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO facilities (club_id, name, facility_type, max_concurrent_bookings)
                VALUES (?, ?, ?, ?);
                """,
                (club_id, name, facility_type, capacity_policy.max_concurrent),
            )
            facility_id = int(cursor.lastrowid)
        return Facility(
            facility_id=facility_id,
            club_id=club_id,
            name=name,
            facility_type=facility_type,
            capacity_policy=capacity_policy,
        )

    def get_facility(self, facility_id: int) -> Optional[Facility]:
        with self._reading() as conn:
            row = conn.execute(
                """
                SELECT id, club_id, name, facility_type, max_concurrent_bookings
                FROM facilities
                WHERE id = ?;
                """,
                (facility_id,),
            ).fetchone()
            if row is None:
                return None
            return _row_to_facility(row)

    def list_facilities(self, club_id: int) -> list[Facility]:
        with self._reading() as conn:
            rows = conn.execute(
                """
                SELECT id, club_id, name, facility_type, max_concurrent_bookings
                FROM facilities
                WHERE club_id = ?
                ORDER BY id ASC;
                """,
                (club_id,),
            ).fetchall()
            return [_row_to_facility(row) for row in rows]

    @staticmethod
    def _select_overlapping(
        conn: sqlite3.Connection,
        facility_id: int,
        window: TimeWindow,
    ) -> list[Booking]:
        rows = conn.execute(
            f"""
            SELECT {_BOOKING_COLUMNS}
            FROM bookings
            WHERE facility_id = ?
              AND status != 'cancelled'
              AND start_time < ?
              AND end_time > ?
            ORDER BY start_time ASC, id ASC;
            """,
            (facility_id, _to_db_timestamp(window.end), _to_db_timestamp(window.start)),
        ).fetchall()
        return [_row_to_booking(row) for row in rows]

    def find_overlapping(self, facility_id: int, window: TimeWindow) -> List[Booking]:
        """Return active bookings of `facility_id` that overlap `window`."""
        with self._reading() as conn:
            return self._select_overlapping(conn, facility_id, window)

    def get_booking(self, booking_id: int) -> Optional[Booking]:
        with self._reading() as conn:
            row = conn.execute(
                f"SELECT {_BOOKING_COLUMNS} FROM bookings WHERE id = ?;",
                (booking_id,),
            ).fetchone()
            if row is None:
                return None
            return _row_to_booking(row)

    def list_bookings(
        self,
        facility_id: int,
        window: Optional[TimeWindow] = None,
        include_cancelled: bool = False,
    ) -> list[Booking]:
        query = f"SELECT {_BOOKING_COLUMNS} FROM bookings WHERE facility_id = ?"
        params: list[object] = [facility_id]
        if window is not None:
            query += " AND start_time < ? AND end_time > ?"
            params.extend([_to_db_timestamp(window.end), _to_db_timestamp(window.start)])
        if not include_cancelled:
            query += " AND status != 'cancelled'"
        query += " ORDER BY start_time ASC, id ASC;"
        with self._reading() as conn:
            return [_row_to_booking(row) for row in conn.execute(query, params).fetchall()]

    def list_series_bookings(self, series_id: str) -> list[Booking]:
        with self._reading() as conn:
            rows = conn.execute(
                f"""
                SELECT {_BOOKING_COLUMNS}
                FROM bookings
                WHERE series_id = ?
                ORDER BY start_time ASC, id ASC;
                """,
                (series_id,),
            ).fetchall()
            return [_row_to_booking(row) for row in rows]

    def insert_if_available(
        self,
        new_booking: NewBooking,
        capacity_policy: CapacityPolicy,
    ) -> ReservationOutcome:
        """Count overlapping bookings and insert only if one more still fits."""
        with self._write_transaction() as conn:
            overlapping = self._select_overlapping(conn, new_booking.facility_id, new_booking.window)
            availability = evaluate_availability(overlapping, capacity_policy)
            if not availability.available:
                return ReservationOutcome(availability=availability)

            details = new_booking.details
            cursor = conn.execute(
                """
                INSERT INTO bookings (
                    facility_id, title, booking_type, notes,
                    start_time, end_time, status, series_id
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    new_booking.facility_id,
                    details.title,
                    details.booking_type,
                    details.notes,
                    _to_db_timestamp(new_booking.window.start),
                    _to_db_timestamp(new_booking.window.end),
                    details.status.value,
                    new_booking.series_id,
                ),
            )
            booking = Booking(
                booking_id=int(cursor.lastrowid),
                facility_id=new_booking.facility_id,
                window=new_booking.window,
                status=details.status,
                title=details.title,
                booking_type=details.booking_type,
                notes=details.notes,
                series_id=new_booking.series_id,
            )
        return ReservationOutcome(availability=availability, booking=booking)

    def update_window_if_available(
        self,
        booking_id: int,
        window: TimeWindow,
        capacity_policy: CapacityPolicy,
        changes: Optional[BookingChanges] = None,
    ) -> Optional[ReservationOutcome]:
        """Move an active booking to `window` if capacity allows.

        `capacity_policy` belongs to the target facility, which is
        `changes.facility_id` when set and the booking's own facility
        otherwise. Metadata in `changes` is written in the same transaction.
        Returns None when the booking no longer exists or was cancelled.
        """
        changes = changes or BookingChanges()
        with self._write_transaction() as conn:
            row = conn.execute(
                f"SELECT {_BOOKING_COLUMNS} FROM bookings WHERE id = ?;",
                (booking_id,),
            ).fetchone()
            if row is None:
                return None
            current = _row_to_booking(row)
            if not current.is_active:
                return None

            updated = replace(
                current,
                facility_id=changes.facility_id or current.facility_id,
                window=window,
                title=changes.title if changes.title is not None else current.title,
                booking_type=(
                    changes.booking_type
                    if changes.booking_type is not None
                    else current.booking_type
                ),
                notes=changes.notes if changes.notes is not None else current.notes,
            )
            overlapping = self._select_overlapping(conn, updated.facility_id, window)
            availability = evaluate_availability(
                overlapping,
                capacity_policy,
                exclude_booking_id=booking_id,
            )
            if not availability.available:
                return ReservationOutcome(availability=availability)

            conn.execute(
                """
                UPDATE bookings
                SET facility_id = ?, start_time = ?, end_time = ?,
                    title = ?, booking_type = ?, notes = ?,
                    updated_at = CURRENT_TIMESTAMP
                WHERE id = ?;
                """,
                (
                    updated.facility_id,
                    _to_db_timestamp(window.start),
                    _to_db_timestamp(window.end),
                    updated.title,
                    updated.booking_type,
                    updated.notes,
                    booking_id,
                ),
            )
        return ReservationOutcome(availability=availability, booking=updated)

    def cancel_booking(self, booking_id: int) -> Optional[Booking]:
        """Mark a booking cancelled; rows are never deleted."""
        with self._write_transaction() as conn:
            conn.execute(
                """
                UPDATE bookings
                SET status = 'cancelled', updated_at = CURRENT_TIMESTAMP
                WHERE id = ? AND status != 'cancelled';
                """,
                (booking_id,),
            )
            row = conn.execute(
                f"SELECT {_BOOKING_COLUMNS} FROM bookings WHERE id = ?;",
                (booking_id,),
            ).fetchone()
        if row is None:
            return None
        return _row_to_booking(row)

    def cancel_series(self, series_id: str) -> int:
        with self._write_transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE bookings
                SET status = 'cancelled', updated_at = CURRENT_TIMESTAMP
                WHERE series_id = ? AND status != 'cancelled';
                """,
                (series_id,),
            )
            return int(cursor.rowcount)

    def count_bookings(self, facility_id: Optional[int] = None) -> int:
        """Return persisted booking rows, cancelled included, for diagnostics and tests."""
        with self._reading() as conn:
            if facility_id is None:
                row = conn.execute("SELECT COUNT(*) AS count FROM bookings;").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) AS count FROM bookings WHERE facility_id = ?;",
                    (facility_id,),
                ).fetchone()
            return int(row["count"])
