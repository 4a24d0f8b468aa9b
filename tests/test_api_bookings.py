"""API tests for the booking endpoints."""

import pytest

from gorepair.config import settings
from gorepair.middleware.rate_limit import limiter
from gorepair.models.user import UserRole
from gorepair.services.geocoding_service import geocoding_service
from gorepair.services.ledger import BookingLedger

BASE = "/api/v1/bookings"
BASE_LAT = 12.9716
BASE_LNG = 77.5946


def booking_payload(service, **overrides):
    payload = {
        "services": [{"serviceId": service.id, "quantity": 1}],
        "address": {
            "street": "12 Residency Road",
            "city": "Bengaluru",
            "state": "Karnataka",
            "pincode": "560025",
            "location": {"latitude": BASE_LAT, "longitude": BASE_LNG},
        },
        "scheduleDate": "2026-11-02T10:00:00",
        "preferredTimeSlot": {"start": "10:00", "end": "12:00"},
        "paymentMethod": "upi",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def created(client, customer, service, auth_headers):
    response = client.post(BASE, json=booking_payload(service), headers=auth_headers(customer))
    assert response.status_code == 201
    return response.json()["data"]


class TestEnvelope:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_missing_token_is_rejected(self, client):
        response = client.get(f"{BASE}/my")
        body = response.json()
        assert response.status_code == 401
        assert body["success"] is False
        assert body["status_code"] == 401
        assert body["message"] == "Could not validate credentials"

    def test_bad_token_is_rejected(self, client):
        response = client.get(f"{BASE}/my", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    def test_validation_errors_use_envelope(self, client, customer, service, auth_headers):
        response = client.post(BASE, json=booking_payload(service, services=[]), headers=auth_headers(customer))
        body = response.json()
        assert response.status_code == 400
        assert body["success"] is False
        assert body["data"]["errors"]

    def test_inverted_time_slot_is_rejected(self, client, customer, service, auth_headers):
        payload = booking_payload(service, preferredTimeSlot={"start": "14:00", "end": "09:00"})
        response = client.post(BASE, json=payload, headers=auth_headers(customer))
        assert response.status_code == 400

    def test_not_found_uses_envelope(self, client, customer, auth_headers):
        response = client.get(f"{BASE}/999", headers=auth_headers(customer))
        assert response.status_code == 404
        assert response.json() == {
            "status_code": 404,
            "success": False,
            "message": "Booking not found",
            "data": None,
        }


class TestCreateAndRead:
    def test_create_booking(self, created, customer):
        assert created["status"] == "pending"
        assert created["user_id"] == customer.id
        assert created["final_amount"] == 500.0
        assert created["payment"]["method"] == "upi"
        assert created["latitude"] == BASE_LAT
        assert "location" not in created["address"]
        assert [h["status"] for h in created["status_history"]] == ["pending"]

    def test_address_without_coordinates_is_geocoded(self, client, customer, service, auth_headers, monkeypatch):
        async def fake_geocode(address):
            return (12.95, 77.60)

        monkeypatch.setattr(geocoding_service, "geocode_address", fake_geocode)
        payload = booking_payload(service)
        del payload["address"]["location"]

        response = client.post(BASE, json=payload, headers=auth_headers(customer))

        assert response.status_code == 201
        assert response.json()["data"]["latitude"] == 12.95

    def test_my_bookings(self, client, created, customer, auth_headers):
        response = client.get(f"{BASE}/my", headers=auth_headers(customer))
        data = response.json()["data"]
        assert data["total"] == 1
        assert data["bookings"][0]["id"] == created["id"]

    def test_other_customer_cannot_view(self, client, created, make_user, auth_headers):
        response = client.get(f"{BASE}/{created['id']}", headers=auth_headers(make_user(UserRole.USER)))
        assert response.status_code == 403
        assert response.json()["success"] is False

    def test_listing_all_bookings_needs_staff(self, client, created, customer, admin, make_user, auth_headers):
        assert client.get(BASE, headers=auth_headers(customer)).status_code == 403

        manager = make_user(UserRole.MANAGER)
        response = client.get(BASE, params={"status": "pending"}, headers=auth_headers(manager))
        assert response.status_code == 200
        assert response.json()["data"]["total"] == 1


class TestStatusEndpoints:
    def test_customer_cannot_set_arbitrary_status(self, client, created, customer, auth_headers):
        response = client.patch(
            f"{BASE}/{created['id']}/status", json={"status": "confirmed"}, headers=auth_headers(customer)
        )
        assert response.status_code == 403

    def test_staff_confirms(self, client, created, admin, auth_headers):
        response = client.patch(
            f"{BASE}/{created['id']}/status", json={"status": "confirmed", "note": "Called"}, headers=auth_headers(admin)
        )
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "confirmed"

    def test_invalid_transition_reports_statuses(self, client, created, admin, auth_headers):
        url = f"{BASE}/{created['id']}"
        client.post(f"{url}/cancel", json={"reason": "Duplicate"}, headers=auth_headers(admin))

        response = client.patch(f"{url}/status", json={"status": "confirmed"}, headers=auth_headers(admin))

        assert response.status_code == 400
        assert response.json()["data"] == {"current_status": "cancelled", "requested_status": "confirmed"}

    def test_cancel_requires_reason(self, client, created, customer, auth_headers):
        response = client.post(f"{BASE}/{created['id']}/cancel", json={}, headers=auth_headers(customer))
        assert response.status_code == 400

    def test_reschedule(self, client, created, customer, auth_headers):
        response = client.patch(
            f"{BASE}/{created['id']}/reschedule",
            json={"scheduleDate": "2026-11-05T09:00:00", "preferredTimeSlot": {"start": "15:00", "end": "17:00"}},
            headers=auth_headers(customer)
        )
        data = response.json()["data"]
        assert response.status_code == 200
        assert data["status"] == "pending"
        assert data["preferred_time_slot"] == {"start": "15:00", "end": "17:00"}

    def test_assign_requires_staff(self, client, created, customer, auth_headers):
        response = client.patch(f"{BASE}/{created['id']}/technician/assign", json={}, headers=auth_headers(customer))
        assert response.status_code == 403

    def test_no_technician_available(self, client, created, admin, auth_headers):
        response = client.patch(f"{BASE}/{created['id']}/technician/assign", json={}, headers=auth_headers(admin))
        assert response.status_code == 400
        assert response.json()["message"] == "No available technicians matching the criteria"


class TestJobFlow:
    def test_full_job_lifecycle(self, client, db, created, customer, admin, make_technician, make_part, auth_headers):
        technician = make_technician(latitude=BASE_LAT + 0.01)
        part = make_part(price=50)
        url = f"{BASE}/{created['id']}"
        tech = auth_headers(technician)

        response = client.patch(f"{url}/technician/assign", json={}, headers=auth_headers(admin))
        assert response.status_code == 200
        assigned = response.json()["data"]
        assert assigned["assignment_type"] == "auto"
        assert assigned["technician"]["id"] == technician.id
        assert assigned["booking"]["status"] == "assigned"

        selfie = client.post(
            f"{url}/technician/selfie",
            files={"selfie": ("me.jpg", b"\xff\xd8\xff selfie", "image/jpeg")},
            headers=tech
        )
        assert selfie.status_code == 200
        assert selfie.json()["data"]["selfie_url"].startswith("/static/bookings/")
        assert selfie.json()["data"]["status"] == "assigned"

        assert client.post(f"{url}/technician/reached", headers=tech).json()["data"]["status"] == "reached"

        generated = client.post(f"{url}/otp", headers=tech)
        assert generated.status_code == 200
        assert "otp" not in generated.json()["data"]

        code = client.get(f"{url}/otp", headers=auth_headers(customer)).json()["data"]["otp"]

        wrong = "000000" if code != "000000" else "111111"
        rejected = client.put(f"{url}/otp", json={"otp": wrong}, headers=tech)
        assert rejected.status_code == 400
        assert rejected.json()["data"] == {"remaining_attempts": 2}

        verified = client.put(f"{url}/otp", json={"otp": code}, headers=tech)
        assert verified.status_code == 200
        assert verified.json()["data"]["status"] == "in_progress"

        with_parts = client.post(f"{url}/parts", json={"parts": [{"partId": part.id, "quantity": 2}]}, headers=tech)
        assert with_parts.json()["data"]["final_amount"] == 600.0

        after = client.post(
            f"{url}/after-image",
            files={"afterImage": ("after.png", b"\x89PNG after", "image/png")},
            headers=tech
        )
        assert after.status_code == 200

        completed = client.patch(f"{url}/complete", headers=tech)
        assert completed.status_code == 200
        assert completed.json()["data"]["status"] == "completed"

        reviewed = client.post(f"{url}/review", json={"rating": 5, "review": "Great"}, headers=auth_headers(customer))
        assert reviewed.json()["data"]["rating"] == 5

        history = client.get(url, headers=auth_headers(customer)).json()["data"]["status_history"]
        assert [h["status"] for h in history] == [
            "pending", "assigned", "reached", "otp_pending", "in_progress", "in_progress", "completed"
        ]
        assert [h["sequence"] for h in history] == list(range(1, 8))

    def test_unsupported_upload_type(self, client, db, created, admin, make_technician, auth_headers, hold):
        technician = make_technician()
        hold(BookingLedger(db).get_booking(created["id"]), technician, admin)

        response = client.post(
            f"{BASE}/{created['id']}/technician/selfie",
            files={"selfie": ("me.gif", b"GIF89a", "image/gif")},
            headers=auth_headers(technician)
        )
        assert response.status_code == 400

    def test_customer_cannot_use_technician_endpoints(self, client, created, customer, auth_headers):
        response = client.post(f"{BASE}/{created['id']}/technician/reached", headers=auth_headers(customer))
        assert response.status_code == 403


@pytest.fixture
def rate_limited(monkeypatch):
    monkeypatch.setattr(limiter, "enabled", True)
    limiter.reset()
    yield
    limiter.reset()


class TestRateLimit:
    def test_otp_requests_are_throttled(self, client, created, make_technician, auth_headers, rate_limited):
        headers = auth_headers(make_technician())
        allowed = int(settings.OTP_RATE_LIMIT.split("/")[0])

        for _ in range(allowed):
            assert client.post(f"{BASE}/{created['id']}/otp", headers=headers).status_code != 429

        response = client.post(f"{BASE}/{created['id']}/otp", headers=headers)
        body = response.json()
        assert response.status_code == 429
        assert body["success"] is False
        assert body["status_code"] == 429
        assert body["message"].startswith("Too many requests")
        assert body["data"] is None
