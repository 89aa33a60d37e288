from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient

from agenda.db.session import get_db
from agenda.main import app, get_availability_cache, get_booking_manager
from agenda.models.base import utcnow
from agenda.services.booking_manager import BookingReservationManager


def next_monday() -> date:
    today = utcnow().date()
    return today + timedelta(days=(7 - today.weekday()) % 7 or 7)


@pytest.fixture
def client(session_factory, cache):
    def override_db():
        session = session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_availability_cache] = lambda: cache
    app.dependency_overrides[get_booking_manager] = lambda: BookingReservationManager(
        session_factory, cache, lock_timeout_seconds=5
    )
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def catalog(make_provider, make_service, make_client):
    provider = make_provider(max_advance_days=14)
    service = make_service(provider, duration_minutes=30, price_cents=5000)
    customer = make_client(provider.tenant_id)
    return provider, service, customer


def booking_payload(provider, service, customer, day, time="10:00:00Z", **extra):
    payload = {
        "provider_id": str(provider.id),
        "client_id": str(customer.id),
        "service_id": str(service.id),
        "start_ts": f"{day.isoformat()}T{time}",
    }
    payload.update(extra)
    return payload


def available_starts(client, provider, service, day):
    response = client.get(
        "/api/v1/slots/available",
        params={
            "provider_id": str(provider.id),
            "service_id": str(service.id),
            "date": day.isoformat(),
        },
    )
    assert response.status_code == 200
    return [item["start_ts"][11:16] for item in response.json()["results"]]


def test_generate_search_and_book(client, catalog):
    provider, service, customer = catalog
    monday = next_monday()

    response = client.post(f"/api/v1/providers/{provider.id}/slots/generate")
    assert response.status_code == 200
    assert response.json()["report"]["generated"] > 0

    assert len(available_starts(client, provider, service, monday)) == 16

    response = client.post(
        "/api/v1/bookings", json=booking_payload(provider, service, customer, monday)
    )
    assert response.status_code == 201
    booking = response.json()["booking"]
    assert booking["status"] == "PENDING"
    assert booking["start_ts"] == f"{monday.isoformat()}T10:00:00+00:00"
    assert booking["end_ts"] == f"{monday.isoformat()}T10:30:00+00:00"

    starts = available_starts(client, provider, service, monday)
    assert "10:00" not in starts
    assert len(starts) == 15

    stats = client.get(f"/api/v1/providers/{provider.id}/slots/stats").json()["stats"]
    assert stats["by_status"]["RESERVED"] == 1


def test_search_results_include_service_details(client, catalog):
    provider, service, _ = catalog
    client.post(f"/api/v1/providers/{provider.id}/slots/generate", json={"horizon_days": 14})

    response = client.get(
        "/api/v1/slots/available",
        params={
            "provider_id": str(provider.id),
            "service_id": str(service.id),
            "date": next_monday().isoformat(),
        },
    )

    body = response.json()
    assert body["timezone"] == "UTC"
    assert body["results"][0]["duration_min"] == 30
    assert body["results"][0]["price_cents"] == 5000


def test_booking_lifecycle(client, catalog):
    provider, service, customer = catalog
    created = client.post(
        "/api/v1/bookings", json=booking_payload(provider, service, customer, next_monday())
    ).json()["booking"]
    booking_url = f"/api/v1/bookings/{created['id']}"

    assert client.get(booking_url).json()["booking"]["status"] == "PENDING"
    assert client.post(f"{booking_url}/confirm").json()["booking"]["status"] == "CONFIRMED"
    completed = client.post(f"{booking_url}/complete").json()["booking"]
    assert completed["status"] == "COMPLETED"
    assert completed["completed_at"] is not None

    response = client.post(f"{booking_url}/cancel", json={"reason": "too late"})
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "INVALID_STATE"


def test_cancel_frees_the_range(client, catalog):
    provider, service, customer = catalog
    monday = next_monday()
    payload = booking_payload(provider, service, customer, monday)
    first = client.post("/api/v1/bookings", json=payload).json()["booking"]

    conflict = client.post("/api/v1/bookings", json=payload)
    assert conflict.status_code == 409
    assert conflict.json()["detail"]["code"] == "CONFLICT"

    cancelled = client.post(f"/api/v1/bookings/{first['id']}/cancel", json={"reason": "sick"})
    assert cancelled.json()["booking"]["cancellation_reason"] == "sick"

    again = client.post("/api/v1/bookings", json=payload)
    assert again.status_code == 201


def test_rejections_carry_their_reason(client, catalog):
    provider, service, customer = catalog
    monday = next_monday()

    misaligned = client.post(
        "/api/v1/bookings", json=booking_payload(provider, service, customer, monday, "10:10:00Z")
    )
    closed = client.post(
        "/api/v1/bookings",
        json=booking_payload(provider, service, customer, monday + timedelta(days=6)),
    )

    assert misaligned.status_code == 422
    assert misaligned.json()["detail"]["code"] == "NOT_ALIGNED"
    assert closed.status_code == 422
    assert closed.json()["detail"]["code"] == "DAY_CLOSED"


def test_idempotency_key_header_replays(client, catalog):
    provider, service, customer = catalog
    payload = booking_payload(provider, service, customer, next_monday())
    headers = {"Idempotency-Key": "checkout-42"}

    first = client.post("/api/v1/bookings", json=payload, headers=headers).json()["booking"]
    second = client.post("/api/v1/bookings", json=payload, headers=headers).json()["booking"]

    assert second["id"] == first["id"]
    assert second["idempotency_key"] == "checkout-42"


def test_naive_start_is_read_in_provider_timezone(client, catalog):
    provider, service, customer = catalog
    monday = next_monday()

    response = client.post(
        "/api/v1/bookings", json=booking_payload(provider, service, customer, monday, "11:30:00")
    )

    assert response.status_code == 201
    assert response.json()["booking"]["start_local"] == f"{monday.isoformat()}T11:30:00+00:00"


def test_unknown_entities_return_404(client, catalog):
    provider, service, _ = catalog

    assert client.get(f"/api/v1/bookings/{service.id}").status_code == 404
    response = client.post(f"/api/v1/providers/{service.id}/slots/generate")
    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "NOT_FOUND"


def test_update_availability_regenerates(client, catalog):
    provider, service, _ = catalog
    monday = next_monday()
    client.post(f"/api/v1/providers/{provider.id}/slots/generate")

    response = client.put(
        f"/api/v1/providers/{provider.id}/availability",
        json={
            "windows": [{"weekday": 1, "open": "14:00", "close": "16:00"}],
            "slot_interval_minutes": 60,
            "max_advance_days": 14,
        },
    )

    assert response.status_code == 200
    assert response.json()["report"]["pruned"] > 0
    assert available_starts(client, provider, service, monday) == ["14:00", "15:00"]


def test_update_availability_rejects_bad_times(client, catalog):
    provider, _, _ = catalog

    response = client.put(
        f"/api/v1/providers/{provider.id}/availability",
        json={"windows": [{"weekday": 1, "open": "9am", "close": "16:00"}]},
    )

    assert response.status_code == 422
    assert response.json()["detail"]["code"] == "CONFIGURATION_ERROR"


def test_regenerate_endpoint(client, catalog):
    provider, _, _ = catalog
    client.post(f"/api/v1/providers/{provider.id}/slots/generate")

    report = client.post(f"/api/v1/providers/{provider.id}/slots/regenerate").json()["report"]

    assert report["pruned"] == report["generated"]


def test_list_provider_slots_shows_every_status(client, catalog):
    provider, service, customer = catalog
    monday = next_monday()
    client.post(f"/api/v1/providers/{provider.id}/slots/generate")
    client.post("/api/v1/bookings", json=booking_payload(provider, service, customer, monday))

    response = client.get(
        f"/api/v1/providers/{provider.id}/slots", params={"date": monday.isoformat()}
    )

    results = response.json()["results"]
    assert len(results) == 16
    reserved = [slot for slot in results if slot["status"] == "RESERVED"]
    assert [slot["start_ts"][11:16] for slot in reserved] == ["10:00"]
    assert reserved[0]["booking_id"] is not None
