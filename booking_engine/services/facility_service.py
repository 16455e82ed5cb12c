"""Facility registry scoped by club."""

from __future__ import annotations

from typing import Optional

from booking_engine.domain.models import CapacityPolicy, Facility
from booking_engine.repository.booking_repository import BookingRepository
from booking_engine.utils.config import Settings, get_settings
from booking_engine.utils.logger import get_logger


logger = get_logger(__name__)


class FacilityError(Exception):
    """Base exception for facility registry failures."""


class FacilityNotFoundError(FacilityError):
    """Raised when a facility id is unknown within the caller's club."""


class FacilityValidationError(FacilityError):
    """Raised when facility attributes are invalid."""


class FacilityService:
    def __init__(
        self,
        repository: Optional[BookingRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or BookingRepository(self._settings)

    def register_facility(
        self,
        club_id: int,
        name: str,
        facility_type: str,
        max_concurrent: Optional[int] = None,
    ) -> Facility:
        if club_id <= 0:
            raise FacilityValidationError("club_id must be a positive integer")
        if not name.strip():
            raise FacilityValidationError("name must be non-empty")
        if not facility_type.strip():
            raise FacilityValidationError("facility_type must be non-empty")
        try:
            policy = CapacityPolicy(
                max_concurrent=(
                    max_concurrent
                    if max_concurrent is not None
                    else self._settings.default_max_concurrent
                )
            )
        except ValueError as exc:
            raise FacilityValidationError(str(exc)) from exc

        facility = self._repository.create_facility(
            club_id=club_id,
            name=name.strip(),
            facility_type=facility_type.strip(),
            capacity_policy=policy,
        )
        logger.info(
            "Facility %s registered for club=%s (max_concurrent=%s)",
            facility.facility_id,
            club_id,
            policy.max_concurrent,
        )
        return facility

    def get_facility(self, club_id: int, facility_id: int) -> Facility:
        """Load a facility, hiding facilities that belong to other clubs."""
        facility = self._repository.get_facility(facility_id)
        if facility is None or facility.club_id != club_id:
            raise FacilityNotFoundError(f"facility_id {facility_id} not found")
        return facility

    def list_facilities(self, club_id: int) -> list[Facility]:
        return self._repository.list_facilities(club_id)
