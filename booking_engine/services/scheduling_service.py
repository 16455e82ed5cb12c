"""Creation, rescheduling and cancellation of single and recurring bookings."""

from __future__ import annotations

from dataclasses import replace
from typing import Callable, Optional, TypeVar
from uuid import uuid4

from booking_engine.domain.constraints import (
    SchedulingConfig,
    evaluate_availability,
    validate_scheduling_config,
)
from booking_engine.domain.models import (
    AvailabilityReason,
    AvailabilityResult,
    Booking,
    BookingChanges,
    BookingDetails,
    CapacityPolicy,
    NewBooking,
    RecurrenceRule,
    ReservationOutcome,
    SeriesResult,
    SkippedOccurrence,
    TimeWindow,
)
from booking_engine.repository.booking_repository import (
    BookingRepository,
    BookingStore,
    ConcurrentBookingConflictError,
)
from booking_engine.services.recurrence_service import RecurrenceExpander
from booking_engine.utils.config import Settings, get_settings
from booking_engine.utils.logger import describe_window, get_decision_logger, get_logger


logger = get_logger(__name__)
decisions = get_decision_logger()

OutcomeT = TypeVar("OutcomeT")


class SchedulingError(Exception):
    """Base exception for booking workflow failures."""


class CapacityExceededError(SchedulingError):
    """Raised when a single booking or reschedule does not fit the facility."""

    def __init__(self, availability: AvailabilityResult) -> None:
        super().__init__(availability.message)
        self.availability = availability


class BookingNotFoundError(SchedulingError):
    """Raised when a booking id does not exist in persisted state."""


class BookingStateError(SchedulingError):
    """Raised when a booking cannot change because it is cancelled."""


class BookingSchedulingService:
    """Turns proposed bookings into persisted ones through atomic store writes.

    Each occurrence is checked and inserted in one store transaction. Series
    are best-effort: an occurrence that does not fit is reported in
    `skipped` while its siblings are still created.
    """

    def __init__(
        self,
        repository: Optional[BookingStore] = None,
        settings: Optional[Settings] = None,
        expander: Optional[RecurrenceExpander] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository: BookingStore = repository or BookingRepository(self._settings)
        self._expander = expander or RecurrenceExpander(settings=self._settings)
        self._config = SchedulingConfig(
            series_max_occurrences=self._settings.series_max_occurrences,
            booking_max_attempts=self._settings.booking_max_attempts,
            store_busy_timeout_seconds=self._settings.store_busy_timeout_seconds,
        )
        validate_scheduling_config(self._config)

    def _with_conflict_retry(
        self,
        operation: Callable[[], OutcomeT],
        description: str,
    ) -> OutcomeT:
        attempts = self._config.booking_max_attempts
        attempt = 1
        while True:
            try:
                return operation()
            except ConcurrentBookingConflictError:
                if attempt >= attempts:
                    raise
                attempt += 1
                logger.warning(
                    "Concurrent write on %s; retrying (attempt %s of %s)",
                    description,
                    attempt,
                    attempts,
                )

    def _conflict_result(
        self,
        facility_id: int,
        window: TimeWindow,
        capacity_policy: CapacityPolicy,
        exclude_booking_id: Optional[int] = None,
    ) -> AvailabilityResult:
        """Rejection for a write that never got the lock.

        The occupancy comes from a fresh read so callers see what the slot
        held when we gave up, not an assumed full count.
        """
        observed = evaluate_availability(
            self._repository.find_overlapping(facility_id, window),
            capacity_policy,
            exclude_booking_id=exclude_booking_id,
        )
        return replace(
            observed,
            available=False,
            reason=AvailabilityReason.CONCURRENT_CONFLICT,
        )

    def _reserve(
        self,
        new_booking: NewBooking,
        capacity_policy: CapacityPolicy,
    ) -> ReservationOutcome:
        description = f"facility={new_booking.facility_id} {describe_window(new_booking.window)}"
        try:
            return self._with_conflict_retry(
                lambda: self._repository.insert_if_available(new_booking, capacity_policy),
                description,
            )
        except ConcurrentBookingConflictError:
            logger.warning("Giving up on %s after repeated write conflicts", description)
            return ReservationOutcome(
                availability=self._conflict_result(
                    new_booking.facility_id,
                    new_booking.window,
                    capacity_policy,
                )
            )

    def validate_series(self, first_window: TimeWindow, rule: RecurrenceRule) -> int:
        """Return the occurrence count, raising `SeriesTooLargeError` past the cap.

        Touches no store, so callers can reject oversized rules before I/O.
        """
        return self._expander.count(first_window, rule)

    def create_booking(
        self,
        facility_id: int,
        window: TimeWindow,
        capacity_policy: CapacityPolicy,
        details: BookingDetails,
    ) -> Booking:
        outcome = self._reserve(
            NewBooking(facility_id=facility_id, window=window, details=details),
            capacity_policy,
        )
        if outcome.booking is None:
            decisions.info(
                "reject facility=%s window=%s reason=%s (%s)",
                facility_id,
                describe_window(window),
                outcome.availability.reason.value,
                outcome.availability.message,
            )
            raise CapacityExceededError(outcome.availability)
        decisions.info(
            "accept booking=%s facility=%s window=%s",
            outcome.booking.booking_id,
            facility_id,
            describe_window(window),
        )
        return outcome.booking

    def create_series(
        self,
        facility_id: int,
        first_window: TimeWindow,
        rule: RecurrenceRule,
        capacity_policy: CapacityPolicy,
        details: BookingDetails,
    ) -> SeriesResult:
        occurrences = self._expander.expand(first_window, rule)
        result = SeriesResult(series_id=uuid4().hex)

        for window in occurrences:
            outcome = self._reserve(
                NewBooking(
                    facility_id=facility_id,
                    window=window,
                    details=details,
                    series_id=result.series_id,
                ),
                capacity_policy,
            )
            if outcome.booking is not None:
                result.created.append(outcome.booking)
                continue
            decisions.info(
                "skip series=%s window=%s reason=%s",
                result.series_id,
                describe_window(window),
                outcome.availability.reason.value,
            )
            result.skipped.append(
                SkippedOccurrence(
                    window=window,
                    reason=outcome.availability.reason,
                    availability=outcome.availability,
                )
            )

        logger.info(
            "Series %s for facility=%s: %s created, %s skipped",
            result.series_id,
            facility_id,
            result.created_count,
            len(result.skipped),
        )
        return result

    def get_booking(self, booking_id: int) -> Booking:
        booking = self._repository.get_booking(booking_id)
        if booking is None:
            raise BookingNotFoundError(f"booking_id {booking_id} not found")
        return booking

    def list_bookings(
        self,
        facility_id: int,
        window: Optional[TimeWindow] = None,
        include_cancelled: bool = False,
    ) -> list[Booking]:
        return self._repository.list_bookings(
            facility_id,
            window=window,
            include_cancelled=include_cancelled,
        )

    def reschedule_booking(
        self,
        booking_id: int,
        window: TimeWindow,
        capacity_policy: CapacityPolicy,
        changes: Optional[BookingChanges] = None,
    ) -> Booking:
        """Move a booking to a new window, excluding itself from the capacity count.

        When `changes.facility_id` names another facility, `capacity_policy`
        must be that facility's policy and the count runs against it.
        """
        current = self.get_booking(booking_id)
        if not current.is_active:
            raise BookingStateError(f"booking_id {booking_id} is cancelled and cannot be edited")
        target_facility_id = (changes.facility_id if changes else None) or current.facility_id

        try:
            outcome = self._with_conflict_retry(
                lambda: self._repository.update_window_if_available(
                    booking_id,
                    window,
                    capacity_policy,
                    changes,
                ),
                f"booking={booking_id}",
            )
        except ConcurrentBookingConflictError as exc:
            raise CapacityExceededError(
                self._conflict_result(
                    target_facility_id,
                    window,
                    capacity_policy,
                    exclude_booking_id=booking_id,
                )
            ) from exc

        if outcome is None:
            raise BookingStateError(f"booking_id {booking_id} was cancelled concurrently")
        if outcome.booking is None:
            decisions.info(
                "reject booking=%s facility=%s window=%s reason=%s (%s)",
                booking_id,
                target_facility_id,
                describe_window(window),
                outcome.availability.reason.value,
                outcome.availability.message,
            )
            raise CapacityExceededError(outcome.availability)

        decisions.info(
            "move booking=%s facility=%s window=%s",
            booking_id,
            target_facility_id,
            describe_window(window),
        )
        return outcome.booking

    def cancel_booking(self, booking_id: int) -> Booking:
        booking = self._with_conflict_retry(
            lambda: self._repository.cancel_booking(booking_id),
            f"booking={booking_id}",
        )
        if booking is None:
            raise BookingNotFoundError(f"booking_id {booking_id} not found")
        logger.info("Booking %s cancelled", booking_id)
        return booking

    def get_series(self, series_id: str) -> list[Booking]:
        bookings = self._repository.list_series_bookings(series_id)
        if not bookings:
            raise BookingNotFoundError(f"series_id {series_id} not found")
        return bookings

    def cancel_series(self, series_id: str) -> int:
        self.get_series(series_id)
        cancelled = self._with_conflict_retry(
            lambda: self._repository.cancel_series(series_id),
            f"series={series_id}",
        )
        logger.info("Series %s: %s occurrence(s) cancelled", series_id, cancelled)
        return cancelled
