from __future__ import annotations

from dataclasses import replace

from fastapi import FastAPI
from fastapi.testclient import TestClient

from booking_engine.controllers.booking_controller import router as booking_router
from booking_engine.controllers.facility_controller import router as facility_router
from booking_engine.repository.booking_repository import BookingRepository
from booking_engine.services.availability_service import AvailabilityService
from booking_engine.services.facility_service import FacilityService
from booking_engine.services.scheduling_service import BookingSchedulingService
from booking_engine.utils.config import get_settings


def _build_test_settings(tmp_path, filename: str):
    get_settings.cache_clear()
    base = get_settings()
    return replace(
        base,
        database_path=tmp_path / filename,
        seed_demo_facilities=False,
        series_max_occurrences=60,
    )


def _build_test_app(tmp_path) -> tuple[FastAPI, BookingRepository]:
    settings = _build_test_settings(tmp_path, "booking_flow.db")
    repository = BookingRepository(settings)
    repository.initialize_database()

    app = FastAPI()
    app.include_router(facility_router)
    app.include_router(booking_router)
    app.state.repository = repository
    app.state.availability_service = AvailabilityService(repository=repository, settings=settings)
    app.state.facility_service = FacilityService(repository=repository, settings=settings)
    app.state.scheduling_service = BookingSchedulingService(repository=repository, settings=settings)
    return app, repository


def _register_facility(client: TestClient, club_id: int = 1, max_concurrent: int = 1) -> int:
    response = client.post(
        f"/clubs/{club_id}/facilities",
        json={"name": "Field F", "facilityType": "field", "maxConcurrentBookings": max_concurrent},
    )
    assert response.status_code == 201
    return response.json()["id"]


def test_booking_end_to_end_flow(tmp_path):
    app, repository = _build_test_app(tmp_path)
    client = TestClient(app)
    facility_id = _register_facility(client)

    create_response = client.post(
        "/clubs/1/bookings",
        json={
            "facilityId": facility_id,
            "startTime": "2024-06-01T10:00:00Z",
            "endTime": "2024-06-01T11:00:00Z",
            "title": "Booking A",
        },
    )
    assert create_response.status_code == 201
    booking_a = create_response.json()
    assert booking_a["status"] == "confirmed"
    assert booking_a["seriesId"] is None

    busy = client.post(
        "/clubs/1/availability",
        json={
            "facilityId": facility_id,
            "startTime": "2024-06-01T10:30:00Z",
            "endTime": "2024-06-01T11:30:00Z",
        },
    )
    assert busy.status_code == 200
    busy_payload = busy.json()
    assert busy_payload["available"] is False
    assert busy_payload["currentBookings"] == 1
    assert busy_payload["maxConcurrent"] == 1
    assert busy_payload["reason"] == "capacity_exceeded"
    assert busy_payload["conflictingBookingIds"] == [booking_a["id"]]

    free = client.post(
        "/clubs/1/availability",
        json={
            "facilityId": facility_id,
            "startTime": "2024-06-01T11:00:00Z",
            "endTime": "2024-06-01T12:00:00Z",
        },
    )
    assert free.json()["available"] is True
    assert free.json()["currentBookings"] == 0

    self_check = client.post(
        "/clubs/1/availability",
        json={
            "facilityId": facility_id,
            "startTime": "2024-06-01T10:00:00Z",
            "endTime": "2024-06-01T11:00:00Z",
            "excludeBookingId": booking_a["id"],
        },
    )
    assert self_check.json()["available"] is True

    conflict = client.post(
        "/clubs/1/bookings",
        json={
            "facilityId": facility_id,
            "startTime": "2024-06-01T10:30:00Z",
            "endTime": "2024-06-01T11:30:00Z",
            "title": "Booking B",
        },
    )
    assert conflict.status_code == 409
    assert conflict.json()["detail"]["available"] is False
    assert conflict.json()["detail"]["message"] == "1/1 bookings - not available"
    assert repository.count_bookings() == 1

    moved = client.patch(
        f"/clubs/1/bookings/{booking_a['id']}",
        json={"startTime": "2024-06-01T12:00:00Z", "endTime": "2024-06-01T13:00:00Z"},
    )
    assert moved.status_code == 200
    assert moved.json()["startTime"].startswith("2024-06-01T12:00:00")

    fetched = client.get(f"/clubs/1/bookings/{booking_a['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["endTime"].startswith("2024-06-01T13:00:00")

    cancelled = client.post(f"/clubs/1/bookings/{booking_a['id']}/cancel")
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"

    edit_cancelled = client.patch(
        f"/clubs/1/bookings/{booking_a['id']}",
        json={"startTime": "2024-06-01T15:00:00Z", "endTime": "2024-06-01T16:00:00Z"},
    )
    assert edit_cancelled.status_code == 409


def test_recurring_booking_reports_skipped_occurrences(tmp_path):
    app, _ = _build_test_app(tmp_path)
    client = TestClient(app)
    facility_id = _register_facility(client)

    blocker = client.post(
        "/clubs/1/bookings",
        json={
            "facilityId": facility_id,
            "startTime": "2024-06-15T18:00:00Z",
            "endTime": "2024-06-15T20:00:00Z",
            "title": "Tournament",
        },
    )
    assert blocker.status_code == 201

    response = client.post(
        "/clubs/1/bookings",
        json={
            "facilityId": facility_id,
            "startTime": "2024-06-01T18:00:00Z",
            "endTime": "2024-06-01T20:00:00Z",
            "title": "Weekly training",
            "recurring": True,
            "recurringPattern": "weekly",
            "recurringUntil": "2024-06-29",
        },
    )
    assert response.status_code == 201
    payload = response.json()
    assert payload["createdCount"] == 4
    assert len(payload["created"]) == 4
    assert payload["skipped"] == [
        {
            "startTime": payload["skipped"][0]["startTime"],
            "endTime": payload["skipped"][0]["endTime"],
            "reason": "capacity_exceeded",
        }
    ]
    assert payload["skipped"][0]["startTime"].startswith("2024-06-15T18:00:00")

    listing = client.get(
        f"/clubs/1/facilities/{facility_id}/bookings",
        params={"from": "2024-06-01T00:00:00Z", "to": "2024-07-01T00:00:00Z"},
    )
    assert listing.status_code == 200
    assert len(listing.json()) == 5

    cancel_series = client.post(f"/clubs/1/series/{payload['seriesId']}/cancel")
    assert cancel_series.status_code == 200
    assert cancel_series.json()["cancelledCount"] == 4


def test_invalid_requests_are_rejected(tmp_path):
    app, repository = _build_test_app(tmp_path)
    client = TestClient(app)
    facility_id = _register_facility(client)

    inverted = client.post(
        "/clubs/1/bookings",
        json={
            "facilityId": facility_id,
            "startTime": "2024-06-01T11:00:00Z",
            "endTime": "2024-06-01T10:00:00Z",
            "title": "Backwards",
        },
    )
    assert inverted.status_code == 400

    missing_pattern = client.post(
        "/clubs/1/bookings",
        json={
            "facilityId": facility_id,
            "startTime": "2024-06-01T10:00:00Z",
            "endTime": "2024-06-01T11:00:00Z",
            "title": "Daily",
            "recurring": True,
        },
    )
    assert missing_pattern.status_code == 422

    too_long = client.post(
        "/clubs/1/bookings",
        json={
            "facilityId": facility_id,
            "startTime": "2024-06-01T10:00:00Z",
            "endTime": "2024-06-01T11:00:00Z",
            "title": "Daily forever",
            "recurring": True,
            "recurringPattern": "daily",
            "recurringUntil": "2025-06-01T00:00:00Z",
        },
    )
    assert too_long.status_code == 400
    assert repository.count_bookings() == 0


def test_other_clubs_cannot_see_facilities_or_bookings(tmp_path):
    app, _ = _build_test_app(tmp_path)
    client = TestClient(app)
    facility_id = _register_facility(client, club_id=1)

    created = client.post(
        "/clubs/1/bookings",
        json={
            "facilityId": facility_id,
            "startTime": "2024-06-01T10:00:00Z",
            "endTime": "2024-06-01T11:00:00Z",
            "title": "Club one only",
        },
    )
    booking_id = created.json()["id"]

    assert client.get(f"/clubs/2/facilities/{facility_id}").status_code == 404
    assert client.get(f"/clubs/2/bookings/{booking_id}").status_code == 404
    assert client.post(f"/clubs/2/bookings/{booking_id}/cancel").status_code == 404
    foreign_check = client.post(
        "/clubs/2/availability",
        json={
            "facilityId": facility_id,
            "startTime": "2024-06-01T10:00:00Z",
            "endTime": "2024-06-01T11:00:00Z",
        },
    )
    assert foreign_check.status_code == 404


def test_create_app_initializes_store_and_seeds_demo_facilities(tmp_path):
    from app import create_app

    settings = replace(
        _build_test_settings(tmp_path, "startup.db"),
        seed_demo_facilities=True,
    )
    app = create_app(settings)

    with TestClient(app) as client:
        response = client.get("/clubs/1/facilities")
        assert response.status_code == 200
        capacities = [item["maxConcurrentBookings"] for item in response.json()]
        assert capacities == [1, 2, 3]

        assert client.get("/clubs/2/facilities").json() == []


def test_window_and_series_size_are_validated_before_facility_lookup(tmp_path):
    app, repository = _build_test_app(tmp_path)
    client = TestClient(app)
    inverted = {
        "facilityId": 999,
        "startTime": "2024-06-01T11:00:00Z",
        "endTime": "2024-06-01T10:00:00Z",
    }

    assert client.post("/clubs/1/availability", json=inverted).status_code == 400
    assert client.post("/clubs/1/bookings", json={**inverted, "title": "Backwards"}).status_code == 400
    assert (
        client.patch(
            "/clubs/1/bookings/999",
            json={"startTime": inverted["startTime"], "endTime": inverted["endTime"]},
        ).status_code
        == 400
    )

    oversized = client.post(
        "/clubs/1/bookings",
        json={
            "facilityId": 999,
            "startTime": "2024-06-01T10:00:00Z",
            "endTime": "2024-06-01T11:00:00Z",
            "title": "Daily forever",
            "recurring": True,
            "recurringPattern": "daily",
            "recurringUntil": "2025-06-01",
        },
    )
    assert oversized.status_code == 400
    assert repository.count_bookings() == 0


def test_patch_persists_metadata_and_moves_between_facilities(tmp_path):
    app, _ = _build_test_app(tmp_path)
    client = TestClient(app)
    field_id = _register_facility(client)
    hall_id = _register_facility(client)
    slot = {"startTime": "2024-06-01T10:00:00Z", "endTime": "2024-06-01T11:00:00Z"}

    original = client.post(
        "/clubs/1/bookings",
        json={"facilityId": field_id, "title": "old", **slot},
    ).json()
    hall_blocker = client.post(
        "/clubs/1/bookings",
        json={"facilityId": hall_id, "title": "Hall taken", **slot},
    ).json()

    renamed = client.patch(
        f"/clubs/1/bookings/{original['id']}",
        json={"title": "new", "notes": "bring cones", "bookingType": "training", **slot},
    )
    assert renamed.status_code == 200
    assert renamed.json()["title"] == "new"
    stored = client.get(f"/clubs/1/bookings/{original['id']}").json()
    assert stored["title"] == "new"
    assert stored["notes"] == "bring cones"
    assert stored["bookingType"] == "training"

    blocked_move = client.patch(
        f"/clubs/1/bookings/{original['id']}",
        json={"facilityId": hall_id, **slot},
    )
    assert blocked_move.status_code == 409
    assert blocked_move.json()["detail"]["conflictingBookingIds"] == [hall_blocker["id"]]
    assert client.get(f"/clubs/1/bookings/{original['id']}").json()["facilityId"] == field_id

    client.post(f"/clubs/1/bookings/{hall_blocker['id']}/cancel")
    moved = client.patch(
        f"/clubs/1/bookings/{original['id']}",
        json={"facilityId": hall_id, **slot},
    )
    assert moved.status_code == 200
    assert moved.json()["facilityId"] == hall_id
    assert moved.json()["title"] == "new"


def test_patch_rejects_unknown_fields_and_foreign_facilities(tmp_path):
    app, _ = _build_test_app(tmp_path)
    client = TestClient(app)
    facility_id = _register_facility(client, club_id=1)
    other_club_facility = _register_facility(client, club_id=2)
    slot = {"startTime": "2024-06-01T10:00:00Z", "endTime": "2024-06-01T11:00:00Z"}
    booking = client.post(
        "/clubs/1/bookings",
        json={"facilityId": facility_id, "title": "Keep", **slot},
    ).json()

    unknown = client.patch(f"/clubs/1/bookings/{booking['id']}", json={"colour": "red", **slot})
    assert unknown.status_code == 422

    foreign = client.patch(
        f"/clubs/1/bookings/{booking['id']}",
        json={"facilityId": other_club_facility, **slot},
    )
    assert foreign.status_code == 404
    assert client.get(f"/clubs/1/bookings/{booking['id']}").json()["facilityId"] == facility_id
