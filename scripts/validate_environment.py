#!/usr/bin/env python3
"""Validate local booking engine environment readiness."""

from __future__ import annotations

import importlib
import shutil
import sys
import tempfile
from dataclasses import replace
from datetime import date, datetime, timezone
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from booking_engine.domain.models import (
    BookingDetails,
    RecurrencePattern,
    RecurrenceRule,
    TimeWindow,
)
from booking_engine.repository.booking_repository import BookingRepository
from booking_engine.services.availability_service import AvailabilityService
from booking_engine.services.facility_service import FacilityService
from booking_engine.services.scheduling_service import BookingSchedulingService
from booking_engine.utils.config import get_settings

SEPARATOR_LINE = "=" * 44


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def main() -> int:
    results: list[str] = []
    all_passed = True
    temp_dir = tempfile.mkdtemp(prefix="booking-env-")

    # CHECK 1 - Python version >= 3.10
    if sys.version_info >= (3, 10):
        ok, line = _print_result("Python " + sys.version.split()[0], True)
    else:
        ok, line = _print_result(
            "Python version >= 3.10",
            False,
            f"found {sys.version.split()[0]}",
        )
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 2 - Required packages importable
    package_specs = ["fastapi", "uvicorn", "pydantic", "httpx", "pytest"]
    import_errors: list[str] = []
    for module_name in package_specs:
        try:
            importlib.import_module(module_name)
        except ImportError as exc:
            import_errors.append(f"{module_name} ({exc})")
    if import_errors:
        ok, line = _print_result(
            "Required packages",
            False,
            "missing/unimportable -> " + "; ".join(import_errors),
        )
    else:
        ok, line = _print_result("Required packages: all importable", True)
    results.append(line)
    all_passed = all_passed and ok

    try:
        settings = replace(
            get_settings(),
            database_path=Path(temp_dir) / "booking_validation.db",
        )
        repository = BookingRepository(settings)

        # CHECK 3 - Store initialization
        try:
            repository.initialize_database()
            ok, line = _print_result("Booking store initialization", True)
        except Exception as exc:
            ok, line = _print_result("Booking store initialization", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        facility_service = FacilityService(repository=repository, settings=settings)
        availability_service = AvailabilityService(repository=repository, settings=settings)
        scheduling_service = BookingSchedulingService(repository=repository, settings=settings)

        # CHECK 4 - Availability check against an empty facility
        try:
            facility = facility_service.register_facility(1, "Validation Court", "court", 1)
            window = TimeWindow(
                start=datetime(2024, 6, 1, 10, tzinfo=timezone.utc),
                end=datetime(2024, 6, 1, 11, tzinfo=timezone.utc),
            )
            result = availability_service.check(
                facility.facility_id,
                window,
                facility.capacity_policy,
            )
            if not result.available:
                raise RuntimeError(f"expected empty facility to be available, got {result.reason.value}")
            ok, line = _print_result("Availability check", True)
        except Exception as exc:
            ok, line = _print_result("Availability check", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 5 - Weekly series creation
        try:
            series = scheduling_service.create_series(
                facility_id=facility.facility_id,
                first_window=window,
                rule=RecurrenceRule(pattern=RecurrencePattern.WEEKLY, until=date(2024, 6, 29)),
                capacity_policy=facility.capacity_policy,
                details=BookingDetails(title="Validation series"),
            )
            if series.created_count != 5 or series.skipped:
                raise RuntimeError(
                    f"expected 5 created and 0 skipped, got {series.created_count}/{len(series.skipped)}"
                )
            ok, line = _print_result("Weekly series", True, ": 5 occurrences")
        except Exception as exc:
            ok, line = _print_result("Weekly series", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" Booking Engine Environment Validation")
    print(SEPARATOR_LINE)
    for line in results:
        print(f" {line}")
    print(SEPARATOR_LINE)
    if all_passed:
        print(" All checks passed. Environment is ready.")
        print(SEPARATOR_LINE)
        return 0
    print(" One or more checks failed.")
    print(SEPARATOR_LINE)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
