"""HTTP controller layer for availability checks and booking lifecycle."""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from booking_engine.controllers.dependencies import (
    get_availability_service,
    get_facility_service,
    get_scheduling_service,
)
from booking_engine.domain.models import (
    AvailabilityResult,
    Booking,
    BookingChanges,
    BookingDetails,
    BookingStatus,
    Facility,
    InvalidWindowError,
    RecurrencePattern,
    RecurrenceRule,
    SeriesResult,
    TimeWindow,
    as_utc,
)
from booking_engine.repository.booking_repository import StoreUnavailableError
from booking_engine.services.availability_service import AvailabilityService
from booking_engine.services.facility_service import FacilityNotFoundError, FacilityService
from booking_engine.services.recurrence_service import SeriesTooLargeError
from booking_engine.services.scheduling_service import (
    BookingNotFoundError,
    BookingSchedulingService,
    BookingStateError,
    CapacityExceededError,
)
from booking_engine.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(prefix="/clubs/{club_id}", tags=["bookings"])


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class WindowPayload(CamelModel):
    start_time: datetime
    end_time: datetime

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_to_utc(cls, value: datetime) -> datetime:
        return as_utc(value)


class AvailabilityRequest(WindowPayload):
    facility_id: int = Field(gt=0)
    exclude_booking_id: Optional[int] = Field(default=None, gt=0)


class AvailabilityResponse(CamelModel):
    available: bool
    message: str
    reason: str
    max_concurrent: int = Field(ge=1)
    current_bookings: int = Field(ge=0)
    conflicting_booking_ids: list[int] = Field(default_factory=list)


class CreateBookingRequest(WindowPayload):
    """Input DTO validated once at ingress; the engine only sees typed values."""

    facility_id: int = Field(gt=0)
    title: str = Field(min_length=1, max_length=255)
    booking_type: str = Field(default="booking", min_length=1, max_length=50)
    notes: Optional[str] = None
    status: BookingStatus = BookingStatus.CONFIRMED
    recurring: bool = False
    recurring_pattern: Optional[RecurrencePattern] = None
    recurring_until: Optional[date] = None

    @field_validator("status")
    @classmethod
    def reject_cancelled_status(cls, value: BookingStatus) -> BookingStatus:
        if value is BookingStatus.CANCELLED:
            raise ValueError("a new booking cannot be created as cancelled")
        return value

    @field_validator("recurring_until", mode="before")
    @classmethod
    def accept_datetime_until(cls, value: object) -> object:
        if isinstance(value, str) and "T" in value:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
        if isinstance(value, datetime):
            return value.date()
        return value

    @model_validator(mode="after")
    def validate_recurrence(self) -> "CreateBookingRequest":
        if not self.recurring:
            return self
        if self.recurring_pattern is None or self.recurring_until is None:
            raise ValueError("recurringPattern and recurringUntil are required for recurring bookings")
        if self.recurring_until < self.start_time.date():
            raise ValueError("recurringUntil must not be before the first occurrence")
        return self


class RescheduleBookingRequest(WindowPayload):
    """Edit body; omitted metadata stays unchanged and unknown fields are rejected."""

    model_config = ConfigDict(extra="forbid")

    facility_id: Optional[int] = Field(default=None, gt=0)
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    booking_type: Optional[str] = Field(default=None, min_length=1, max_length=50)
    notes: Optional[str] = None



class BookingResponse(CamelModel):
    id: int = Field(gt=0)
    facility_id: int = Field(gt=0)
    title: str
    booking_type: str
    notes: Optional[str] = None
    start_time: datetime
    end_time: datetime
    status: BookingStatus
    series_id: Optional[str] = None


class SkippedOccurrenceResponse(CamelModel):
    start_time: datetime
    end_time: datetime
    reason: str


class SeriesResponse(CamelModel):
    series_id: str
    created_count: int = Field(ge=0)
    created: list[BookingResponse]
    skipped: list[SkippedOccurrenceResponse]


class CancelSeriesResponse(CamelModel):
    series_id: str
    cancelled_count: int = Field(ge=0)


def _availability_payload(result: AvailabilityResult) -> AvailabilityResponse:
    return AvailabilityResponse(
        available=result.available,
        message=result.message,
        reason=result.reason.value,
        max_concurrent=result.max_concurrent,
        current_bookings=result.current_bookings,
        conflicting_booking_ids=list(result.conflicting_booking_ids),
    )


def _booking_payload(booking: Booking) -> BookingResponse:
    return BookingResponse(
        id=booking.booking_id,
        facility_id=booking.facility_id,
        title=booking.title,
        booking_type=booking.booking_type,
        notes=booking.notes,
        start_time=booking.window.start,
        end_time=booking.window.end,
        status=booking.status,
        series_id=booking.series_id,
    )


def _series_payload(result: SeriesResult) -> SeriesResponse:
    return SeriesResponse(
        series_id=result.series_id,
        created_count=result.created_count,
        created=[_booking_payload(booking) for booking in result.created],
        skipped=[
            SkippedOccurrenceResponse(
                start_time=item.window.start,
                end_time=item.window.end,
                reason=item.reason.value,
            )
            for item in result.skipped
        ],
    )


def _load_owned_booking(
    club_id: int,
    booking_id: int,
    scheduling_service: BookingSchedulingService,
    facility_service: FacilityService,
) -> tuple[Booking, Facility]:
    booking = scheduling_service.get_booking(booking_id)
    try:
        facility = facility_service.get_facility(club_id, booking.facility_id)
    except FacilityNotFoundError as exc:
        raise BookingNotFoundError(f"booking_id {booking_id} not found") from exc
    return booking, facility


def _rejection(exc: CapacityExceededError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail=_availability_payload(exc.availability).model_dump(by_alias=True),
    )


@router.post(
    "/availability",
    response_model=AvailabilityResponse,
    status_code=status.HTTP_200_OK,
)
async def check_availability(
    club_id: int,
    payload: AvailabilityRequest,
    availability_service: AvailabilityService = Depends(get_availability_service),
    facility_service: FacilityService = Depends(get_facility_service),
) -> AvailabilityResponse:
    """Advisory read-only check; creating a booking re-checks atomically."""
    try:
        window = TimeWindow(start=payload.start_time, end=payload.end_time)
        facility = facility_service.get_facility(club_id, payload.facility_id)
        result = availability_service.check(
            facility_id=facility.facility_id,
            window=window,
            capacity_policy=facility.capacity_policy,
            exclude_booking_id=payload.exclude_booking_id,
        )
        return _availability_payload(result)
    except InvalidWindowError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except FacilityNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except StoreUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected availability check failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to check availability",
        ) from exc


@router.post(
    "/bookings",
    response_model=Union[SeriesResponse, BookingResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_booking(
    club_id: int,
    payload: CreateBookingRequest,
    scheduling_service: BookingSchedulingService = Depends(get_scheduling_service),
    facility_service: FacilityService = Depends(get_facility_service),
) -> Union[SeriesResponse, BookingResponse]:
    try:
        window = TimeWindow(start=payload.start_time, end=payload.end_time)
        rule: Optional[RecurrenceRule] = None
        if payload.recurring:
            rule = RecurrenceRule(
                pattern=payload.recurring_pattern,
                until=payload.recurring_until,
            )
            scheduling_service.validate_series(window, rule)

        facility = facility_service.get_facility(club_id, payload.facility_id)
        details = BookingDetails(
            title=payload.title,
            booking_type=payload.booking_type,
            notes=payload.notes,
            status=payload.status,
        )
        if rule is not None:
            result = scheduling_service.create_series(
                facility_id=facility.facility_id,
                first_window=window,
                rule=rule,
                capacity_policy=facility.capacity_policy,
                details=details,
            )
            return _series_payload(result)

        booking = scheduling_service.create_booking(
            facility_id=facility.facility_id,
            window=window,
            capacity_policy=facility.capacity_policy,
            details=details,
        )
        return _booking_payload(booking)
    except (InvalidWindowError, SeriesTooLargeError) as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except FacilityNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except CapacityExceededError as exc:
        raise _rejection(exc) from exc
    except StoreUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected booking creation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create booking",
        ) from exc


@router.get(
    "/bookings/{booking_id}",
    response_model=BookingResponse,
    status_code=status.HTTP_200_OK,
)
async def get_booking(
    club_id: int,
    booking_id: int,
    scheduling_service: BookingSchedulingService = Depends(get_scheduling_service),
    facility_service: FacilityService = Depends(get_facility_service),
) -> BookingResponse:
    try:
        booking, _ = _load_owned_booking(club_id, booking_id, scheduling_service, facility_service)
        return _booking_payload(booking)
    except BookingNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except StoreUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc


@router.patch(
    "/bookings/{booking_id}",
    response_model=BookingResponse,
    status_code=status.HTTP_200_OK,
)
async def reschedule_booking(
    club_id: int,
    booking_id: int,
    payload: RescheduleBookingRequest,
    scheduling_service: BookingSchedulingService = Depends(get_scheduling_service),
    facility_service: FacilityService = Depends(get_facility_service),
) -> BookingResponse:
    """Re-check the new window with the booking itself excluded, then commit.

    A `facilityId` move is checked against the target facility, which must
    belong to the same club.
    """
    try:
        window = TimeWindow(start=payload.start_time, end=payload.end_time)
        booking, facility = _load_owned_booking(club_id, booking_id, scheduling_service, facility_service)
        if payload.facility_id is not None and payload.facility_id != booking.facility_id:
            facility = facility_service.get_facility(club_id, payload.facility_id)
        booking = scheduling_service.reschedule_booking(
            booking_id=booking_id,
            window=window,
            capacity_policy=facility.capacity_policy,
            changes=BookingChanges(
                facility_id=facility.facility_id,
                title=payload.title,
                booking_type=payload.booking_type,
                notes=payload.notes,
            ),
        )
        return _booking_payload(booking)
    except InvalidWindowError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except (BookingNotFoundError, FacilityNotFoundError) as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except CapacityExceededError as exc:
        raise _rejection(exc) from exc
    except BookingStateError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    except StoreUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected reschedule failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to reschedule booking",
        ) from exc


@router.post(
    "/bookings/{booking_id}/cancel",
    response_model=BookingResponse,
    status_code=status.HTTP_200_OK,
)
async def cancel_booking(
    club_id: int,
    booking_id: int,
    scheduling_service: BookingSchedulingService = Depends(get_scheduling_service),
    facility_service: FacilityService = Depends(get_facility_service),
) -> BookingResponse:
    try:
        _load_owned_booking(club_id, booking_id, scheduling_service, facility_service)
        return _booking_payload(scheduling_service.cancel_booking(booking_id))
    except BookingNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except StoreUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc


@router.post(
    "/series/{series_id}/cancel",
    response_model=CancelSeriesResponse,
    status_code=status.HTTP_200_OK,
)
async def cancel_series(
    club_id: int,
    series_id: str,
    scheduling_service: BookingSchedulingService = Depends(get_scheduling_service),
    facility_service: FacilityService = Depends(get_facility_service),
) -> CancelSeriesResponse:
    try:
        occurrences = scheduling_service.get_series(series_id)
        try:
            facility_service.get_facility(club_id, occurrences[0].facility_id)
        except FacilityNotFoundError as exc:
            raise BookingNotFoundError(f"series_id {series_id} not found") from exc
        cancelled = scheduling_service.cancel_series(series_id)
        return CancelSeriesResponse(series_id=series_id, cancelled_count=cancelled)
    except BookingNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except StoreUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc


@router.get(
    "/facilities/{facility_id}/bookings",
    response_model=list[BookingResponse],
    status_code=status.HTTP_200_OK,
)
async def list_facility_bookings(
    club_id: int,
    facility_id: int,
    window_from: Optional[datetime] = Query(default=None, alias="from"),
    window_to: Optional[datetime] = Query(default=None, alias="to"),
    include_cancelled: bool = Query(default=False, alias="includeCancelled"),
    scheduling_service: BookingSchedulingService = Depends(get_scheduling_service),
    facility_service: FacilityService = Depends(get_facility_service),
) -> list[BookingResponse]:
    try:
        facility = facility_service.get_facility(club_id, facility_id)
        window: Optional[TimeWindow] = None
        if window_from is not None or window_to is not None:
            if window_from is None or window_to is None:
                raise InvalidWindowError("from and to must be provided together")
            window = TimeWindow(start=window_from, end=window_to)
        bookings = scheduling_service.list_bookings(
            facility.facility_id,
            window=window,
            include_cancelled=include_cancelled,
        )
        return [_booking_payload(booking) for booking in bookings]
    except InvalidWindowError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except FacilityNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except StoreUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
