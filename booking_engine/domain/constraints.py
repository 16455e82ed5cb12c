"""Domain-level capacity rules shared by the checker and the booking store."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from booking_engine.domain.models import (
    AvailabilityReason,
    AvailabilityResult,
    Booking,
    CapacityPolicy,
)


@dataclass(frozen=True)
class SchedulingConfig:
    series_max_occurrences: int
    booking_max_attempts: int
    store_busy_timeout_seconds: float


def validate_scheduling_config(config: SchedulingConfig) -> None:
    if config.series_max_occurrences <= 0:
        raise ValueError("series_max_occurrences must be > 0")
    if config.booking_max_attempts <= 0:
        raise ValueError("booking_max_attempts must be > 0")
    if config.store_busy_timeout_seconds <= 0:
        raise ValueError("store_busy_timeout_seconds must be > 0")


def evaluate_availability(
    overlapping: Iterable[Booking],
    capacity_policy: CapacityPolicy,
    exclude_booking_id: Optional[int] = None,
) -> AvailabilityResult:
    """Decide whether one more booking fits beside `overlapping`.

    Cancelled bookings and the booking being edited never count. The slot is
    free while the remaining count is strictly below `max_concurrent`.
    """
    counted = [
        booking
        for booking in overlapping
        if booking.is_active and booking.booking_id != exclude_booking_id
    ]
    current_count = len(counted)
    available = current_count < capacity_policy.max_concurrent
    return AvailabilityResult(
        available=available,
        current_bookings=current_count,
        max_concurrent=capacity_policy.max_concurrent,
        reason=AvailabilityReason.OK if available else AvailabilityReason.CAPACITY_EXCEEDED,
        conflicting_booking_ids=tuple(sorted(booking.booking_id for booking in counted)),
    )
