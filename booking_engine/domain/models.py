"""Domain models for facility availability and recurring bookings."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Optional


class InvalidWindowError(ValueError):
    """Raised when a time window does not satisfy start < end."""


class InvalidCapacityPolicyError(ValueError):
    """Raised when a facility capacity limit is not a positive integer."""


def as_utc(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class TimeWindow:
    """Half-open interval [start, end) in UTC."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", as_utc(self.start))
        object.__setattr__(self, "end", as_utc(self.end))
        if self.start >= self.end:
            raise InvalidWindowError(
                f"window start {self.start.isoformat()} must be before end {self.end.isoformat()}"
            )

    def overlaps(self, other: TimeWindow) -> bool:
        return self.start < other.end and other.start < self.end

    def contains(self, point: datetime) -> bool:
        return self.start <= as_utc(point) < self.end

    def duration(self) -> timedelta:
        return self.end - self.start

    def shifted_to(self, start: datetime) -> TimeWindow:
        """Return a window of the same duration beginning at `start`."""
        return TimeWindow(start=start, end=as_utc(start) + self.duration())


@dataclass(frozen=True)
class CapacityPolicy:
    max_concurrent: int = 1

    def __post_init__(self) -> None:
        if isinstance(self.max_concurrent, bool) or not isinstance(self.max_concurrent, int):
            raise InvalidCapacityPolicyError("max_concurrent must be an integer")
        if self.max_concurrent < 1:
            raise InvalidCapacityPolicyError("max_concurrent must be >= 1")


@dataclass(frozen=True)
class Facility:
    facility_id: int
    club_id: int
    name: str
    facility_type: str
    capacity_policy: CapacityPolicy


class BookingStatus(str, Enum):
    CONFIRMED = "confirmed"
    PENDING = "pending"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class BookingDetails:
    """Caller-supplied metadata copied onto every created occurrence."""

    title: str
    booking_type: str = "booking"
    notes: Optional[str] = None
    status: BookingStatus = BookingStatus.CONFIRMED


@dataclass(frozen=True)
class NewBooking:
    """Booking that has passed validation but has not been persisted yet."""

    facility_id: int
    window: TimeWindow
    details: BookingDetails
    series_id: Optional[str] = None


@dataclass(frozen=True)
class BookingChanges:
    """Edit applied to an existing booking; None leaves a field unchanged."""

    facility_id: Optional[int] = None
    title: Optional[str] = None
    booking_type: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class Booking:
    booking_id: int
    facility_id: int
    window: TimeWindow
    status: BookingStatus
    title: str
    booking_type: str = "booking"
    notes: Optional[str] = None
    series_id: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status is not BookingStatus.CANCELLED


class RecurrencePattern(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


@dataclass(frozen=True)
class RecurrenceRule:
    pattern: RecurrencePattern
    until: date


class AvailabilityReason(str, Enum):
    OK = "ok"
    CAPACITY_EXCEEDED = "capacity_exceeded"
    CONCURRENT_CONFLICT = "concurrent_conflict"


@dataclass(frozen=True)
class AvailabilityResult:
    available: bool
    current_bookings: int
    max_concurrent: int
    reason: AvailabilityReason
    conflicting_booking_ids: tuple[int, ...] = ()

    @property
    def message(self) -> str:
        occupancy = f"{self.current_bookings}/{self.max_concurrent} bookings"
        if self.available:
            return f"{occupancy} - available"
        if self.reason is AvailabilityReason.CONCURRENT_CONFLICT:
            return f"{occupancy} when last read - slot is contended, check availability again"
        return f"{occupancy} - not available"


@dataclass(frozen=True)
class ReservationOutcome:
    """Result of one atomic check-and-write against the booking store."""

    availability: AvailabilityResult
    booking: Optional[Booking] = None


@dataclass(frozen=True)
class SkippedOccurrence:
    window: TimeWindow
    reason: AvailabilityReason
    availability: Optional[AvailabilityResult] = None


@dataclass(frozen=True)
class SeriesResult:
    series_id: str
    created: list[Booking] = field(default_factory=list)
    skipped: list[SkippedOccurrence] = field(default_factory=list)

    @property
    def created_count(self) -> int:
        return len(self.created)
