"""Business logic for read-only facility availability checks."""

from __future__ import annotations

from typing import Optional

from booking_engine.domain.constraints import evaluate_availability
from booking_engine.domain.models import AvailabilityResult, CapacityPolicy, TimeWindow
from booking_engine.repository.booking_repository import BookingRepository, BookingStore
from booking_engine.utils.config import Settings, get_settings
from booking_engine.utils.logger import describe_window, get_logger


logger = get_logger(__name__)


class AvailabilityService:
    """Answers whether one more booking would stay within facility capacity.

    `check` never writes; it may observe a slightly stale count. The binding
    decision is taken by the store when a booking is actually inserted.
    """

    def __init__(
        self,
        repository: Optional[BookingStore] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository: BookingStore = repository or BookingRepository(self._settings)

    def check(
        self,
        facility_id: int,
        window: TimeWindow,
        capacity_policy: CapacityPolicy,
        exclude_booking_id: Optional[int] = None,
    ) -> AvailabilityResult:
        overlapping = self._repository.find_overlapping(facility_id, window)
        result = evaluate_availability(
            overlapping,
            capacity_policy,
            exclude_booking_id=exclude_booking_id,
        )
        logger.debug(
            "Availability facility=%s window=%s exclude=%s -> %s (%s/%s)",
            facility_id,
            describe_window(window),
            exclude_booking_id,
            result.reason.value,
            result.current_bookings,
            result.max_concurrent,
        )
        return result
