"""Controller layer for the club facility registry."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from booking_engine.controllers.dependencies import get_facility_service
from booking_engine.domain.models import Facility
from booking_engine.repository.booking_repository import StoreUnavailableError
from booking_engine.services.facility_service import (
    FacilityNotFoundError,
    FacilityService,
    FacilityValidationError,
)
from booking_engine.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(prefix="/clubs/{club_id}", tags=["facilities"])


class RegisterFacilityRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str = Field(min_length=1, max_length=255)
    facility_type: str = Field(min_length=1, max_length=100)
    max_concurrent_bookings: Optional[int] = Field(default=None, ge=1)


class FacilityResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: int = Field(gt=0)
    club_id: int = Field(gt=0)
    name: str
    facility_type: str
    max_concurrent_bookings: int = Field(ge=1)


def _facility_payload(facility: Facility) -> FacilityResponse:
    return FacilityResponse(
        id=facility.facility_id,
        club_id=facility.club_id,
        name=facility.name,
        facility_type=facility.facility_type,
        max_concurrent_bookings=facility.capacity_policy.max_concurrent,
    )


@router.post(
    "/facilities",
    response_model=FacilityResponse,
    status_code=status.HTTP_201_CREATED,
)
async def register_facility(
    club_id: int,
    payload: RegisterFacilityRequest,
    facility_service: FacilityService = Depends(get_facility_service),
) -> FacilityResponse:
    try:
        facility = facility_service.register_facility(
            club_id=club_id,
            name=payload.name,
            facility_type=payload.facility_type,
            max_concurrent=payload.max_concurrent_bookings,
        )
        return _facility_payload(facility)
    except FacilityValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except StoreUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected facility registration failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to register facility",
        ) from exc


@router.get(
    "/facilities",
    response_model=list[FacilityResponse],
    status_code=status.HTTP_200_OK,
)
async def list_facilities(
    club_id: int,
    facility_service: FacilityService = Depends(get_facility_service),
) -> list[FacilityResponse]:
    try:
        return [_facility_payload(facility) for facility in facility_service.list_facilities(club_id)]
    except StoreUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc


@router.get(
    "/facilities/{facility_id}",
    response_model=FacilityResponse,
    status_code=status.HTTP_200_OK,
)
async def get_facility(
    club_id: int,
    facility_id: int,
    facility_service: FacilityService = Depends(get_facility_service),
) -> FacilityResponse:
    try:
        return _facility_payload(facility_service.get_facility(club_id, facility_id))
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
