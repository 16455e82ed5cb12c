"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from booking_engine.services.availability_service import AvailabilityService
from booking_engine.services.facility_service import FacilityService
from booking_engine.services.scheduling_service import BookingSchedulingService


def _service_from_state(request: Request, attribute: str, label: str):
    service = getattr(request.app.state, attribute, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} is not initialized",
        )
    return service


def get_availability_service(request: Request) -> AvailabilityService:
    return _service_from_state(request, "availability_service", "Availability service")


def get_scheduling_service(request: Request) -> BookingSchedulingService:
    return _service_from_state(request, "scheduling_service", "Scheduling service")


def get_facility_service(request: Request) -> FacilityService:
    return _service_from_state(request, "facility_service", "Facility service")
